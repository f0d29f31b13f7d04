"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

# Widgets are created without a display server.
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from spotlight.services.settings import JsonDocumentStore, SecretVault  # noqa: E402
from spotlight.services.settings_store import SettingsStore  # noqa: E402
from spotlight.ui.events import EventBus  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("SPOTLIGHT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SPOTLIGHT_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def settings_path(tmp_path: Path) -> Path:
    return tmp_path / "settings.json"


@pytest.fixture
def vault(tmp_path: Path) -> SecretVault:
    return SecretVault(key_path=tmp_path / "settings.key")


@pytest.fixture
def store(settings_path: Path, bus: EventBus, vault: SecretVault) -> SettingsStore:
    settings_store = SettingsStore(JsonDocumentStore(settings_path), bus, vault=vault, debounce_seconds=0.05)
    settings_store.load()
    return settings_store
