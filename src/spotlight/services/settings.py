"""Settings document, secret vault, and the JSON key/value persistence engine."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SETTINGS_KEYS",
    "JsonDocumentStore",
    "SecretVault",
    "DEFAULT_SETTINGS_PATH",
    "settings_from_document",
    "settings_to_document",
    "apply_overrides",
    "apply_env_overrides",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".spotlight"
DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_API_KEY_CIPHERTEXT = "webSearchApiKeyCiphertext"
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_ENV_OVERRIDES: Mapping[str, str] = {
    "SPOTLIGHT_MODEL": "ollama_model",
    "SPOTLIGHT_OLLAMA_URL": "ollama_base_url",
    "SPOTLIGHT_SEARCH_URL": "web_search_api_url",
    "SPOTLIGHT_SEARCH_KEY": "web_search_api_key",
    "SPOTLIGHT_SECOND_LANGUAGE": "translation_second_language",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "SPOTLIGHT_THINKING": "enable_thinking",
    "SPOTLIGHT_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "SPOTLIGHT_REQUEST_TIMEOUT": "request_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "SPOTLIGHT_MAX_RETRIES": "max_retries",
}


@dataclass(slots=True, frozen=True)
class Settings:
    """User-configurable settings shared by every surface."""

    ollama_model: str = ""
    enable_thinking: bool = True
    web_search_api_url: str = ""
    web_search_api_key: str = ""
    translation_second_language: str = ""
    # Runtime-only values, sourced from the environment or CLI.
    ollama_base_url: str = "http://127.0.0.1:11434"
    request_timeout: float = 30.0
    max_retries: int = 2
    debug_logging: bool = False

    def with_updates(self, partial: Mapping[str, Any]) -> "Settings":
        """Return a copy with ``partial`` merged in; unknown keys raise ``KeyError``."""

        unknown = sorted(set(partial) - set(SETTINGS_KEYS))
        if unknown:
            raise KeyError(f"Unknown settings field(s): {', '.join(unknown)}")
        return replace(self, **dict(partial))

    def redacted(self) -> dict[str, Any]:
        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["web_search_api_key"] = redact_secret(self.web_search_api_key)
        return payload


# Field name -> persisted document key. Only these fields live in the document.
SETTINGS_KEYS: Mapping[str, str] = {
    "ollama_model": "ollamaModel",
    "enable_thinking": "enableThinking",
    "web_search_api_url": "webSearchApiUrl",
    "web_search_api_key": "webSearchApiKey",
    "translation_second_language": "translationSecondLanguage",
}
_FIELD_TYPES: Mapping[str, type] = {
    "ollama_model": str,
    "enable_thinking": bool,
    "web_search_api_url": str,
    "web_search_api_key": str,
    "translation_second_language": str,
}


class SecretVault:
    """Encrypts the search credential with a Fernet key stored beside the document."""

    name = "fernet"

    def __init__(self, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return f"{self.name}:{token.decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if prefix != self.name or not payload:
            raise ValueError(f"Unsupported secret token prefix {prefix!r}")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_name(path.name + ".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class JsonDocumentStore:
    """Key/value document backed by a single JSON file.

    Reads are served from memory; :meth:`save` flushes the whole document with
    an atomic temp-file replace. Not thread-safe: callers serialize writes.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_SETTINGS_PATH
        self._data: Dict[str, Any] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        self._ensure_loaded()
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._ensure_loaded()
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._ensure_loaded()
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        self._ensure_loaded()
        return list(self._data)

    def reload(self) -> None:
        self._data = self._read()
        self._loaded = True

    def save(self) -> Path:
        self._ensure_loaded()
        body = json.dumps(self._data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings document saved to %s (%d keys)", self._path, len(self._data))
        return self._path

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.reload()

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not hold an object; ignoring it", self._path)
            return {}
        return payload


def settings_from_document(document: JsonDocumentStore, vault: SecretVault) -> tuple[Settings, bool]:
    """Build :class:`Settings` from ``document``, filling defaults field by field.

    Returns the settings and whether the document needs a migration write
    (a legacy plaintext credential was found).
    """

    values: Dict[str, Any] = {}
    needs_migration = False
    for field_name, key in SETTINGS_KEYS.items():
        if field_name == "web_search_api_key":
            continue
        raw = document.get(key)
        if raw is None:
            continue
        expected = _FIELD_TYPES[field_name]
        if not isinstance(raw, expected):
            LOGGER.warning("Ignoring settings key %s with unexpected type %s", key, type(raw).__name__)
            continue
        values[field_name] = raw

    ciphertext = document.get(_API_KEY_CIPHERTEXT)
    legacy_plaintext = document.get(SETTINGS_KEYS["web_search_api_key"])
    if isinstance(ciphertext, str) and ciphertext:
        try:
            values["web_search_api_key"] = vault.decrypt(ciphertext)
        except ValueError as exc:
            LOGGER.warning("Unable to decrypt web search credential: %s", exc)
    elif isinstance(legacy_plaintext, str) and legacy_plaintext:
        LOGGER.info("Detected plaintext web search credential; migrating to encrypted storage.")
        values["web_search_api_key"] = legacy_plaintext
        needs_migration = True
    return Settings(**values), needs_migration


def settings_to_document(
    document: JsonDocumentStore,
    settings: Settings,
    keys: Iterable[str],
    vault: SecretVault,
) -> None:
    """Copy the named fields of ``settings`` into ``document`` (no flush)."""

    for field_name in keys:
        value = getattr(settings, field_name)
        if field_name == "web_search_api_key":
            document.delete(SETTINGS_KEYS[field_name])
            if value:
                document.set(_API_KEY_CIPHERTEXT, vault.encrypt(value))
            else:
                document.delete(_API_KEY_CIPHERTEXT)
            continue
        document.set(SETTINGS_KEYS[field_name], value)


def apply_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str = "runtime") -> Settings:
    allowed = {item.name for item in fields(Settings)}
    filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
    if not filtered:
        return settings
    LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
    return replace(settings, **filtered)


def apply_env_overrides(settings: Settings, environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = value
    for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = value.strip().lower() in _TRUE_VALUES
    for env_name, field_name in _INT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = int(value, 10)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
    for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = float(value)
        except ValueError:
            LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
    return apply_overrides(settings, overrides, source="environment")


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
