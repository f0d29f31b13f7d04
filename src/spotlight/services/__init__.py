"""Service layer helpers (settings document and store)."""

from .settings import JsonDocumentStore, SecretVault, Settings
from .settings_store import SettingsStore

__all__ = ["JsonDocumentStore", "SecretVault", "Settings", "SettingsStore"]
