"""The overlay: one input line with translation and quick-answer regions."""

from __future__ import annotations

import logging
from typing import Callable

from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QGuiApplication, QKeyEvent
from PySide6.QtWidgets import QFrame, QLabel, QLineEdit, QPushButton, QVBoxLayout, QWidget

from ..ui.events import EventBus, ToastRequested
from ..ui.geometry import GeometryMetrics, GeometryReactor
from ..ui.query_orchestrator import QueryOrchestrator, QueryPhase, QueryState

__all__ = ["SpotlightWindow"]

LOGGER = logging.getLogger(__name__)

MAX_ANSWER_HEIGHT = 420


class SpotlightWindow(QWidget):
    """Frameless, always-on-top search box driven by two query orchestrators."""

    def __init__(
        self,
        *,
        translation: QueryOrchestrator,
        quick_answer: QueryOrchestrator,
        bus: EventBus | None = None,
        metrics: GeometryMetrics | None = None,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.setObjectName("spotlight_window")
        self.setWindowTitle("AI Spotlight")
        self.setWindowFlags(
            Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnTopHint
            | Qt.WindowType.Tool
        )
        self._translation = translation
        self._quick_answer = quick_answer
        self._bus = bus
        self._geometry = GeometryReactor(self._apply_size, metrics)
        self._detachers: list[Callable[[], None]] = []

        self._init_widgets()
        self._build_layout()
        self._detachers.append(translation.add_listener(self._on_translation_state))
        self._detachers.append(quick_answer.add_listener(self._on_answer_state))
        self._apply_size(self._geometry.metrics.width, self._geometry.height)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def geometry_reactor(self) -> GeometryReactor:
        return self._geometry

    @property
    def input(self) -> QLineEdit:
        return self._input

    def show_overlay(self) -> None:
        self._center_on_screen()
        self.show()
        self.raise_()
        self.activateWindow()
        self._input.setFocus()

    def hide_and_clear(self) -> None:
        """Clear the query, drop pending work, shrink back to the input row, and hide."""

        self._input.blockSignals(True)
        self._input.clear()
        self._input.blockSignals(False)
        self._translation.cancel()
        self._quick_answer.cancel()
        self._geometry.reset()
        self.hide()

    def copy_translation(self) -> bool:
        state = self._translation.state
        text = getattr(state.payload, "text", "") if state.phase is QueryPhase.SETTLED else ""
        if not text:
            return False
        QGuiApplication.clipboard().setText(text)
        LOGGER.debug("Copied translation (%d chars)", len(text))
        if self._bus is not None:
            self._bus.publish(ToastRequested(message="Translation copied"))
        self.hide_and_clear()
        return True

    def detach(self) -> None:
        while self._detachers:
            self._detachers.pop()()

    # ------------------------------------------------------------------
    # Qt overrides
    # ------------------------------------------------------------------
    def keyPressEvent(self, event: QKeyEvent) -> None:  # noqa: N802 - Qt API
        if event.key() == Qt.Key.Key_Escape:
            self.hide_and_clear()
            event.accept()
            return
        super().keyPressEvent(event)

    # ------------------------------------------------------------------
    # Widgets
    # ------------------------------------------------------------------
    def _init_widgets(self) -> None:
        self._input = QLineEdit()
        self._input.setObjectName("spotlight_input")
        self._input.setPlaceholderText("AI Spotlight")
        self._input.setFixedHeight(52)
        self._input.textChanged.connect(self._on_text_changed)

        self._translation_button = QPushButton()
        self._translation_button.setObjectName("translation_button")
        self._translation_button.setFlat(True)
        self._translation_button.setFixedHeight(self._geometry.metrics.dropdown_height)
        self._translation_button.clicked.connect(self.copy_translation)
        self._translation_button.hide()

        self._answer_label = QLabel()
        self._answer_label.setObjectName("answer_label")
        self._answer_label.setWordWrap(True)
        self._answer_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        self._answer_panel = QFrame()
        self._answer_panel.setObjectName("answer_panel")
        panel_layout = QVBoxLayout(self._answer_panel)
        panel_layout.setContentsMargins(12, 8, 12, 8)
        panel_layout.addWidget(self._answer_label)
        self._answer_panel.hide()

    def _build_layout(self) -> None:
        metrics = self._geometry.metrics
        layout = QVBoxLayout(self)
        half = metrics.padding // 2
        layout.setContentsMargins(half, half, half, half)
        layout.setSpacing(metrics.margin)
        layout.addWidget(self._input)
        layout.addWidget(self._translation_button)
        layout.addWidget(self._answer_panel)
        layout.addStretch(1)

    # ------------------------------------------------------------------
    # State rendering
    # ------------------------------------------------------------------
    def _on_text_changed(self, text: str) -> None:
        self._translation.submit(text)
        self._quick_answer.submit(text)

    def _on_translation_state(self, state: QueryState) -> None:
        button = self._translation_button
        if state.is_loading:
            button.setText("Translating...")
            button.setEnabled(False)
        elif state.phase is QueryPhase.FAILED:
            button.setText(f"Translation failed: {state.message}")
            button.setEnabled(False)
        elif state.visible:
            detected = str(getattr(state.payload, "detected_language", "") or "auto").upper()
            button.setText(f"{state.payload.text}\nfrom {detected}")
            button.setEnabled(True)
        else:
            button.setText("")
        button.setVisible(state.visible)
        self._geometry.update_translation(state)

    def _on_answer_state(self, state: QueryState) -> None:
        if state.is_loading:
            self._answer_label.setText("Thinking...")
        elif state.phase is QueryPhase.FAILED:
            self._answer_label.setText(f"Error: {state.message}")
        elif state.visible:
            self._answer_label.setText(str(state.payload))
        else:
            self._answer_label.clear()
        self._answer_panel.setVisible(state.visible)
        self._geometry.update_answer(state)
        if state.visible:
            # The label has its final size only after Qt lays it out.
            QTimer.singleShot(0, self._measure_answer)

    def _measure_answer(self) -> None:
        if not self._geometry.answer_visible:
            return
        margins = self._answer_panel.contentsMargins()
        inner_width = self._geometry.metrics.width - self._geometry.metrics.padding - margins.left() - margins.right()
        label_height = self._answer_label.heightForWidth(inner_width)
        if label_height <= 0:
            label_height = self._answer_label.sizeHint().height()
        height = min(MAX_ANSWER_HEIGHT, label_height + margins.top() + margins.bottom())
        self._geometry.set_measured_answer_height(height)

    def _apply_size(self, width: int, height: int) -> None:
        self.setFixedSize(width, height)

    def _center_on_screen(self) -> None:
        screen = self.screen() or QGuiApplication.primaryScreen()
        if screen is None:  # pragma: no cover - headless without screens
            return
        area = screen.availableGeometry()
        x = area.x() + (area.width() - self.width()) // 2
        y = area.y() + area.height() // 4
        self.move(x, y)
