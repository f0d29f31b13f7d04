"""Settings store with optimistic in-memory updates and debounced write-back."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ..ai.errors import PersistenceError
from ..ui.events import EventBus, SettingsCommitted, SettingsSaved, SettingsSaveFailed
from .settings import (
    JsonDocumentStore,
    SecretVault,
    Settings,
    apply_env_overrides,
    apply_overrides,
    settings_from_document,
    settings_to_document,
)

__all__ = ["SettingsStore", "DEFAULT_SAVE_DEBOUNCE"]

LOGGER = logging.getLogger(__name__)
DEFAULT_SAVE_DEBOUNCE = 0.25

ModelLister = Callable[[], Awaitable[Sequence[str]]]


class SettingsStore:
    """Single writer for the shared :class:`Settings` document.

    ``update`` merges into memory right away and coalesces persistence: every
    call restarts a quiescence timer, and when it fires the accumulated keys
    are written in one save and announced with :class:`SettingsCommitted`.
    """

    def __init__(
        self,
        document: JsonDocumentStore,
        bus: EventBus,
        *,
        vault: SecretVault | None = None,
        debounce_seconds: float = DEFAULT_SAVE_DEBOUNCE,
        overrides: Mapping[str, Any] | None = None,
    ) -> None:
        self._document = document
        self._bus = bus
        self._vault = vault or SecretVault(document.path.with_suffix(".key"))
        self._debounce = max(0.0, debounce_seconds)
        self._overrides = dict(overrides or {})
        self._settings = Settings()
        self._pending: dict[str, Any] = {}
        self._timer: asyncio.Task[None] | None = None
        self._save_lock = asyncio.Lock()
        self._saving = False
        self._closed = False

    @property
    def document(self) -> JsonDocumentStore:
        return self._document

    @property
    def vault(self) -> SecretVault:
        return self._vault

    @property
    def is_saving(self) -> bool:
        return self._saving

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._pending)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def load(self) -> Settings:
        """Read the persisted document, falling back to defaults on any error."""

        try:
            self._document.reload()
            settings, needs_migration = settings_from_document(self._document, self._vault)
        except Exception as exc:
            LOGGER.warning("Failed to load settings from %s: %s", self._document.path, exc)
            settings, needs_migration = Settings(), False
        if needs_migration:
            try:
                settings_to_document(self._document, settings, ["web_search_api_key"], self._vault)
                self._document.save()
            except Exception as exc:  # pragma: no cover - defensive guard
                LOGGER.warning("Failed to migrate settings document: %s", exc)
        if self._overrides:
            settings = apply_overrides(settings, self._overrides, source="CLI")
        settings = apply_env_overrides(settings)
        self._settings = settings
        LOGGER.debug(
            "Settings loaded from %s (model=%r, thinking=%s, has_search_key=%s)",
            self._document.path,
            settings.ollama_model,
            settings.enable_thinking,
            bool(settings.web_search_api_key),
        )
        return settings

    def snapshot(self) -> Settings:
        """Return the latest in-memory settings, including unsaved edits."""

        return self._settings

    async def initialize(self, model_lister: ModelLister) -> Settings:
        """Select and persist the first available model when none is configured."""

        if self._settings.ollama_model:
            return self._settings
        try:
            models = list(await model_lister())
        except Exception as exc:
            LOGGER.info("No model configured and the model list is unavailable: %s", exc)
            return self._settings
        # The user may have picked a model while the list was loading.
        if self._settings.ollama_model or "ollama_model" in self._pending:
            return self._settings
        first = models[0] if models else ""
        if not first:
            return self._settings
        LOGGER.info("No model configured; defaulting to %s", first)
        self._settings = self._settings.with_updates({"ollama_model": first})
        await self._persist(["ollama_model"])
        return self._settings

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def update(self, **partial: Any) -> Settings:
        return self.update_many(partial)

    def update_many(self, partial: Mapping[str, Any]) -> Settings:
        """Merge ``partial`` immediately and (re)start the write-back timer."""

        if not partial:
            return self._settings
        self._settings = self._settings.with_updates(partial)
        self._pending.update(partial)
        LOGGER.debug("Settings updated in memory: %s", sorted(partial))
        self._restart_timer()
        return self._settings

    async def flush(self) -> bool:
        """Write pending changes now instead of waiting for the timer."""

        self._cancel_timer()
        return await self._commit_pending()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.flush()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _restart_timer(self) -> None:
        self._cancel_timer()
        if self._closed:
            return
        self._timer = asyncio.get_running_loop().create_task(self._timer_fired())

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _timer_fired(self) -> None:
        try:
            await asyncio.sleep(self._debounce)
        except asyncio.CancelledError:
            return
        self._timer = None
        await self._commit_pending()

    async def _commit_pending(self) -> bool:
        if not self._pending:
            return True
        keys = list(self._pending)
        self._pending.clear()
        return await self._persist(keys)

    async def _persist(self, keys: Sequence[str]) -> bool:
        async with self._save_lock:
            self._saving = True
            # The save lock serializes writers; read the snapshot inside it.
            settings = self._settings
            try:
                await asyncio.to_thread(self._write, settings, keys)
            except PersistenceError as exc:
                for key in keys:
                    self._pending.setdefault(key, getattr(self._settings, key))
                LOGGER.warning("Saving settings failed (%s): %s", ", ".join(keys), exc)
                self._bus.publish(SettingsSaveFailed(message=str(exc), keys=tuple(keys)))
                self._restart_timer()
                return False
            finally:
                self._saving = False
        LOGGER.info("Settings committed: %s", ", ".join(keys))
        self._bus.publish(SettingsCommitted(changed_keys=tuple(keys)))
        self._bus.publish(SettingsSaved())
        return True

    def _write(self, settings: Settings, keys: Sequence[str]) -> None:
        try:
            settings_to_document(self._document, settings, keys, self._vault)
            self._document.save()
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Unable to write {self._document.path}: {exc}") from exc
