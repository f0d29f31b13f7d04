"""Options surface: model selection, thinking mode, web search and translation settings."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Sequence

from PySide6.QtCore import QTimer
from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QDialog,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from ..services.settings import Settings
from ..services.settings_store import SettingsStore
from ..ui.events import EventBus, ModelsRefreshed, SettingsCommitted, SettingsSaved, SettingsSaveFailed
from ..ui.model_catalog import ModelCatalog

__all__ = ["OptionsDialog", "SECOND_LANGUAGES"]

LOGGER = logging.getLogger(__name__)

NO_MODEL_LABEL = "No model selected"
STATUS_CLEAR_MS = 2000

SECOND_LANGUAGES: Sequence[tuple[str, str]] = (
    ("", "None"),
    ("es", "Spanish"),
    ("fr", "French"),
    ("de", "German"),
    ("it", "Italian"),
    ("pt", "Portuguese"),
    ("nl", "Dutch"),
    ("pl", "Polish"),
    ("ru", "Russian"),
    ("uk", "Ukrainian"),
    ("tr", "Turkish"),
    ("ar", "Arabic"),
    ("hi", "Hindi"),
    ("ja", "Japanese"),
    ("ko", "Korean"),
    ("zh-CN", "Chinese (Simplified)"),
    ("vi", "Vietnamese"),
    ("id", "Indonesian"),
)

_HINT_COLORS = {
    "info": "#6a737d",
    "success": "#1a7f37",
    "error": "#d73a49",
}


class OptionsDialog(QDialog):
    """Edits go straight to the settings store; there is no OK/Cancel step."""

    def __init__(
        self,
        *,
        store: SettingsStore,
        catalog: ModelCatalog,
        bus: EventBus,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle("Options")
        self.setObjectName("options_dialog")
        self.setModal(False)
        self._store = store
        self._catalog = catalog
        self._bus = bus
        self._refresh_task: asyncio.Future[Any] | None = None
        self._unsubscribers: list[Callable[[], None]] = []

        self._init_widgets()
        self._build_layout()
        self._status_timer = QTimer(self)
        self._status_timer.setSingleShot(True)
        self._status_timer.setInterval(STATUS_CLEAR_MS)
        self._status_timer.timeout.connect(self._clear_status)

        self._unsubscribers.extend(
            [
                bus.subscribe(SettingsCommitted, self._on_settings_committed),
                bus.subscribe(SettingsSaved, self._on_settings_saved),
                bus.subscribe(SettingsSaveFailed, self._on_settings_save_failed),
                bus.subscribe(ModelsRefreshed, self._on_models_refreshed),
            ]
        )
        self._populate_models(catalog.models)
        self._load_fields(store.snapshot())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def status_text(self) -> str:
        return self._status_label.text()

    async def refresh_models(self, *, announce: bool = True) -> tuple[str, ...]:
        """Reload the model list from the local inference service."""

        self._refresh_button.setEnabled(False)
        self._model_combo.setEnabled(False)
        try:
            models = await self._catalog.refresh(announce=announce)
        finally:
            self._refresh_button.setEnabled(True)
            self._model_combo.setEnabled(True)
        self._populate_models(models)
        self._update_models_hint()
        return models

    def schedule_refresh(self) -> None:
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.ensure_future(self.refresh_models())

    def detach(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    # ------------------------------------------------------------------
    # Widgets
    # ------------------------------------------------------------------
    def _init_widgets(self) -> None:
        self._model_combo = QComboBox()
        self._model_combo.setObjectName("model_combo")
        self._model_combo.currentIndexChanged.connect(self._on_model_changed)

        self._refresh_button = QPushButton("Refresh")
        self._refresh_button.setObjectName("refresh_models_button")
        self._refresh_button.setToolTip("Refresh models list")
        self._refresh_button.clicked.connect(self.schedule_refresh)

        self._models_hint = QLabel()
        self._models_hint.setObjectName("models_hint")
        self._models_hint.setWordWrap(True)

        self._thinking_checkbox = QCheckBox("Enable Thinking")
        self._thinking_checkbox.setObjectName("thinking_checkbox")
        self._thinking_checkbox.setToolTip(
            "Allow the model to think through problems before responding. "
            "May improve answer quality but takes longer."
        )
        self._thinking_checkbox.toggled.connect(self._on_thinking_toggled)

        self._search_url_input = QLineEdit()
        self._search_url_input.setObjectName("search_url_input")
        self._search_url_input.setPlaceholderText("https://search.example.com/search")
        self._search_url_input.textEdited.connect(self._on_search_url_edited)

        self._search_key_input = QLineEdit()
        self._search_key_input.setObjectName("search_key_input")
        self._search_key_input.setEchoMode(QLineEdit.EchoMode.Password)
        self._search_key_input.textEdited.connect(self._on_search_key_edited)

        self._show_key_checkbox = QCheckBox("Show API key")
        self._show_key_checkbox.setObjectName("show_search_key_checkbox")
        self._show_key_checkbox.toggled.connect(self._toggle_key_visibility)

        self._language_combo = QComboBox()
        self._language_combo.setObjectName("language_combo")
        for code, label in SECOND_LANGUAGES:
            self._language_combo.addItem(label, code)
        self._language_combo.currentIndexChanged.connect(self._on_language_changed)

        self._status_label = QLabel()
        self._status_label.setObjectName("status_label")

    def _build_layout(self) -> None:
        model_row = QHBoxLayout()
        model_row.addWidget(self._model_combo, 1)
        model_row.addWidget(self._refresh_button)

        key_container = QWidget()
        key_layout = QVBoxLayout(key_container)
        key_layout.setContentsMargins(0, 0, 0, 0)
        key_layout.addWidget(self._search_key_input)
        key_layout.addWidget(self._show_key_checkbox)

        form = QFormLayout()
        form.addRow("Ollama Model", model_row)
        form.addRow("", self._models_hint)
        form.addRow("", self._thinking_checkbox)
        form.addRow("Search API URL", self._search_url_input)
        form.addRow("Search API key", key_container)
        form.addRow("Second language", self._language_combo)

        layout = QVBoxLayout(self)
        layout.addLayout(form)
        layout.addWidget(self._status_label)

    def _populate_models(self, models: Sequence[str]) -> None:
        current = self._store.snapshot().ollama_model
        combo = self._model_combo
        combo.blockSignals(True)
        try:
            combo.clear()
            combo.addItem(NO_MODEL_LABEL, "")
            for model in models:
                combo.addItem(model, model)
            if current and combo.findData(current) < 0:
                combo.addItem(current, current)
            index = combo.findData(current)
            combo.setCurrentIndex(index if index >= 0 else 0)
        finally:
            combo.blockSignals(False)

    def _load_fields(self, settings: Settings) -> None:
        widgets = (self._model_combo, self._thinking_checkbox, self._language_combo)
        for widget in widgets:
            widget.blockSignals(True)
        try:
            index = self._model_combo.findData(settings.ollama_model)
            if index < 0 and settings.ollama_model:
                self._model_combo.addItem(settings.ollama_model, settings.ollama_model)
                index = self._model_combo.count() - 1
            self._model_combo.setCurrentIndex(max(index, 0))
            self._thinking_checkbox.setChecked(settings.enable_thinking)
            lang_index = self._language_combo.findData(settings.translation_second_language)
            if lang_index < 0:
                self._language_combo.addItem(
                    settings.translation_second_language, settings.translation_second_language
                )
                lang_index = self._language_combo.count() - 1
            self._language_combo.setCurrentIndex(lang_index)
        finally:
            for widget in widgets:
                widget.blockSignals(False)
        # setText moves the cursor, so only touch fields that differ.
        if self._search_url_input.text() != settings.web_search_api_url:
            self._search_url_input.setText(settings.web_search_api_url)
        if self._search_key_input.text() != settings.web_search_api_key:
            self._search_key_input.setText(settings.web_search_api_key)
        self._update_models_hint()

    def _update_models_hint(self) -> None:
        if self._catalog.error:
            self._set_hint(f"Failed to load models: {self._catalog.error}", "error")
        elif not self._catalog.models and not self._catalog.is_loading:
            self._set_hint("No models found. Make sure Ollama is running.", "info")
        elif not self._store.snapshot().ollama_model:
            self._set_hint("Please add a model to Ollama to enable AI responses.", "info")
        else:
            self._set_hint("", "info")

    def _set_hint(self, text: str, level: str) -> None:
        self._models_hint.setText(text)
        self._models_hint.setStyleSheet(f"color: {_HINT_COLORS.get(level, _HINT_COLORS['info'])};")
        self._models_hint.setVisible(bool(text))

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------
    def _update(self, **partial: Any) -> None:
        self._store.update(**partial)
        self._show_status("Saving...", "info", clear=False)

    def _on_model_changed(self, index: int) -> None:
        self._update(ollama_model=str(self._model_combo.itemData(index) or ""))
        self._update_models_hint()

    def _on_thinking_toggled(self, checked: bool) -> None:
        self._update(enable_thinking=bool(checked))

    def _on_search_url_edited(self, text: str) -> None:
        self._update(web_search_api_url=text)

    def _on_search_key_edited(self, text: str) -> None:
        self._update(web_search_api_key=text)

    def _on_language_changed(self, index: int) -> None:
        self._update(translation_second_language=str(self._language_combo.itemData(index) or ""))

    def _toggle_key_visibility(self, checked: bool) -> None:
        mode = QLineEdit.EchoMode.Normal if checked else QLineEdit.EchoMode.Password
        self._search_key_input.setEchoMode(mode)

    # ------------------------------------------------------------------
    # Bus events
    # ------------------------------------------------------------------
    def _on_settings_committed(self, event: SettingsCommitted) -> None:
        self._load_fields(self._store.snapshot())

    def _on_settings_saved(self, event: SettingsSaved) -> None:
        if not self._store.has_pending_changes:
            self._show_status("Settings saved", "success")

    def _on_settings_save_failed(self, event: SettingsSaveFailed) -> None:
        self._show_status(f"Saving failed: {event.message}", "error")

    def _on_models_refreshed(self, event: ModelsRefreshed) -> None:
        self._show_status("Models reloaded", "success")

    def _show_status(self, text: str, level: str, *, clear: bool = True) -> None:
        self._status_label.setText(text)
        self._status_label.setStyleSheet(f"color: {_HINT_COLORS.get(level, _HINT_COLORS['info'])};")
        if clear:
            self._status_timer.start()
        else:
            self._status_timer.stop()

    def _clear_status(self) -> None:
        self._status_label.clear()
