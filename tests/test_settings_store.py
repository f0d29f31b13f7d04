"""Tests for the debounced settings store."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

from helpers import wait_for
from spotlight.services.settings import JsonDocumentStore, SecretVault, Settings
from spotlight.services.settings_store import SettingsStore
from spotlight.ui.events import EventBus, SettingsCommitted, SettingsSaved, SettingsSaveFailed


class _CountingDocument(JsonDocumentStore):
    def __init__(self, path: Path, *, failures: int = 0) -> None:
        super().__init__(path)
        self.saves = 0
        self.failures = failures

    def save(self) -> Path:
        if self.failures:
            self.failures -= 1
            raise OSError("disk full")
        self.saves += 1
        return super().save()


def _store(
    document: JsonDocumentStore,
    bus: EventBus,
    vault: SecretVault,
    *,
    debounce: float = 0.25,
) -> SettingsStore:
    store = SettingsStore(document, bus, vault=vault, debounce_seconds=debounce)
    store.load()
    return store


def test_load_never_raises_on_unreadable_document(tmp_path: Path, bus: EventBus, vault: SecretVault) -> None:
    directory_instead_of_file = tmp_path / "settings.json"
    directory_instead_of_file.mkdir()

    store = SettingsStore(JsonDocumentStore(directory_instead_of_file), bus, vault=vault)

    assert store.load() == Settings()


def test_load_applies_cli_then_env_overrides(
    settings_path: Path, bus: EventBus, vault: SecretVault, monkeypatch: pytest.MonkeyPatch
) -> None:
    settings_path.write_text(json.dumps({"ollamaModel": "stored"}), encoding="utf-8")
    monkeypatch.setenv("SPOTLIGHT_SECOND_LANGUAGE", "de")

    store = SettingsStore(
        JsonDocumentStore(settings_path),
        bus,
        vault=vault,
        overrides={"ollama_model": "cli", "request_timeout": 5.0},
    )
    settings = store.load()

    assert settings.ollama_model == "cli"
    assert settings.request_timeout == 5.0
    assert settings.translation_second_language == "de"


def test_load_migrates_plaintext_credential(settings_path: Path, bus: EventBus, vault: SecretVault) -> None:
    settings_path.write_text(json.dumps({"webSearchApiKey": "plain-key"}), encoding="utf-8")

    store = SettingsStore(JsonDocumentStore(settings_path), bus, vault=vault)
    settings = store.load()

    assert settings.web_search_api_key == "plain-key"
    payload = json.loads(settings_path.read_text(encoding="utf-8"))
    assert "webSearchApiKey" not in payload
    assert payload["webSearchApiKeyCiphertext"].startswith("fernet:")


@pytest.mark.asyncio
async def test_snapshot_reflects_update_before_debounce_fires(
    settings_path: Path, bus: EventBus, vault: SecretVault
) -> None:
    document = _CountingDocument(settings_path)
    store = _store(document, bus, vault)

    store.update(ollama_model="m")

    assert store.snapshot().ollama_model == "m"
    assert document.saves == 0
    assert store.has_pending_changes
    await store.aclose()


@pytest.mark.asyncio
async def test_updates_inside_quiescence_window_coalesce_into_one_write(
    settings_path: Path, bus: EventBus, vault: SecretVault
) -> None:
    document = _CountingDocument(settings_path)
    store = _store(document, bus, vault, debounce=0.25)
    commits: list[SettingsCommitted] = []
    bus.subscribe(SettingsCommitted, commits.append)

    store.update(ollama_model="m")
    await asyncio.sleep(0.1)
    store.update(enable_thinking=False)
    await asyncio.sleep(0.15)
    assert document.saves == 0

    await wait_for(lambda: document.saves == 1)
    await asyncio.sleep(0.3)

    assert document.saves == 1
    assert len(commits) == 1
    assert set(commits[0].changed_keys) == {"ollama_model", "enable_thinking"}
    payload = json.loads(settings_path.read_text(encoding="utf-8"))
    assert payload["ollamaModel"] == "m"
    assert payload["enableThinking"] is False


@pytest.mark.asyncio
async def test_commit_notifies_other_surfaces_with_keys_only(
    settings_path: Path, bus: EventBus, vault: SecretVault
) -> None:
    store = _store(JsonDocumentStore(settings_path), bus, vault, debounce=0.01)
    other_surface: list[SettingsCommitted] = []
    saved: list[SettingsSaved] = []
    bus.subscribe(SettingsCommitted, other_surface.append)
    bus.subscribe(SettingsSaved, saved.append)

    store.update(web_search_api_key="secret-value")
    assert await store.flush() is True

    assert [event.changed_keys for event in other_surface] == [("web_search_api_key",)]
    assert "secret-value" not in repr(other_surface[0])
    assert len(saved) == 1


@pytest.mark.asyncio
async def test_failed_write_keeps_memory_and_retries_without_further_edits(
    settings_path: Path, bus: EventBus, vault: SecretVault
) -> None:
    document = _CountingDocument(settings_path, failures=1)
    store = _store(document, bus, vault, debounce=0.05)
    failures: list[SettingsSaveFailed] = []
    commits: list[SettingsCommitted] = []
    bus.subscribe(SettingsSaveFailed, failures.append)
    bus.subscribe(SettingsCommitted, commits.append)

    store.update(ollama_model="m")
    await wait_for(lambda: bool(failures))

    assert store.snapshot().ollama_model == "m"
    assert failures[0].keys == ("ollama_model",)
    assert "disk full" in failures[0].message

    await wait_for(lambda: bool(commits))

    assert commits[0].changed_keys == ("ollama_model",)
    assert document.saves == 1
    assert not store.has_pending_changes
    payload = json.loads(settings_path.read_text(encoding="utf-8"))
    assert payload["ollamaModel"] == "m"


@pytest.mark.asyncio
async def test_edit_after_failed_write_is_saved_with_requeued_keys(
    settings_path: Path, bus: EventBus, vault: SecretVault
) -> None:
    document = _CountingDocument(settings_path, failures=1)
    store = _store(document, bus, vault, debounce=0.2)
    commits: list[SettingsCommitted] = []
    bus.subscribe(SettingsCommitted, commits.append)

    store.update(ollama_model="m")
    assert await store.flush() is False
    store.update(enable_thinking=False)
    assert await store.flush() is True

    assert set(commits[0].changed_keys) == {"ollama_model", "enable_thinking"}
    assert document.saves == 1


@pytest.mark.asyncio
async def test_update_with_unknown_key_raises(store: SettingsStore) -> None:
    with pytest.raises(KeyError):
        store.update(theme="dark")
    assert not store.has_pending_changes


@pytest.mark.asyncio
async def test_initialize_selects_first_model_when_unconfigured(
    settings_path: Path, bus: EventBus, vault: SecretVault
) -> None:
    store = _store(JsonDocumentStore(settings_path), bus, vault)

    async def _models() -> list[str]:
        return ["llama3", "qwen3:4b"]

    settings = await store.initialize(_models)

    assert settings.ollama_model == "llama3"
    payload = json.loads(settings_path.read_text(encoding="utf-8"))
    assert payload["ollamaModel"] == "llama3"


@pytest.mark.asyncio
async def test_initialize_keeps_configured_model(store: SettingsStore) -> None:
    store.update(ollama_model="chosen")
    called = False

    async def _models() -> list[str]:
        nonlocal called
        called = True
        return ["other"]

    settings = await store.initialize(_models)

    assert settings.ollama_model == "chosen"
    assert called is False
    await store.aclose()


@pytest.mark.asyncio
async def test_initialize_respects_model_picked_while_listing(
    settings_path: Path, bus: EventBus, vault: SecretVault
) -> None:
    store = _store(JsonDocumentStore(settings_path), bus, vault, debounce=0.01)
    release = asyncio.Event()
    listing = asyncio.Event()

    async def _slow_models() -> list[str]:
        listing.set()
        await release.wait()
        return ["first-model"]

    task = asyncio.create_task(store.initialize(_slow_models))
    await listing.wait()
    store.update(ollama_model="user-pick")
    release.set()
    settings = await task
    await store.flush()

    assert settings.ollama_model == "user-pick"
    assert store.snapshot().ollama_model == "user-pick"
    payload = json.loads(settings_path.read_text(encoding="utf-8"))
    assert payload["ollamaModel"] == "user-pick"


@pytest.mark.asyncio
async def test_initialize_tolerates_unreachable_backend(store: SettingsStore) -> None:
    async def _models() -> list[str]:
        raise ConnectionError("refused")

    settings = await store.initialize(_models)

    assert settings.ollama_model == ""


@pytest.mark.asyncio
async def test_credential_never_logged(
    settings_path: Path, bus: EventBus, vault: SecretVault, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.DEBUG)
    store = _store(JsonDocumentStore(settings_path), bus, vault, debounce=0.01)

    store.update(web_search_api_key="hunter2-credential")
    await store.flush()
    store.load()

    assert "hunter2-credential" not in caplog.text
