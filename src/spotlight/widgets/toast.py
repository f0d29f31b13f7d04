"""Transient notification window."""

from __future__ import annotations

import logging

from PySide6.QtCore import Qt, QTimer
from PySide6.QtGui import QGuiApplication
from PySide6.QtWidgets import QHBoxLayout, QLabel, QWidget

from ..ui.events import EventBus, ToastRequested

__all__ = ["ToastWindow"]

LOGGER = logging.getLogger(__name__)

TOAST_WIDTH = 300
TOAST_HEIGHT = 50
TOAST_TOP_OFFSET = 100
TOAST_DURATION_MS = 2000


class ToastWindow(QWidget):
    """Frameless always-on-top label that hides itself after a short delay."""

    def __init__(
        self,
        bus: EventBus | None = None,
        *,
        duration_ms: int = TOAST_DURATION_MS,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.setObjectName("toast_window")
        self.setWindowFlags(
            Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnTopHint
            | Qt.WindowType.Tool
        )
        self.setAttribute(Qt.WidgetAttribute.WA_ShowWithoutActivating)
        self.setFixedSize(TOAST_WIDTH, TOAST_HEIGHT)

        self._label = QLabel("Translation copied")
        self._label.setObjectName("toast_label")
        self._label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        layout = QHBoxLayout(self)
        layout.setContentsMargins(16, 4, 16, 4)
        layout.addWidget(self._label)

        self._hide_timer = QTimer(self)
        self._hide_timer.setSingleShot(True)
        self._hide_timer.setInterval(max(0, duration_ms))
        self._hide_timer.timeout.connect(self.hide)

        self._unsubscribe = bus.subscribe(ToastRequested, self._on_toast_requested) if bus else None

    @property
    def message(self) -> str:
        return self._label.text()

    def show_message(self, message: str) -> None:
        self._label.setText(message)
        self._position_on_screen()
        self.show()
        self.raise_()
        # Restart so the newest message gets the full display time.
        self._hide_timer.start()
        LOGGER.debug("Toast shown: %s", message)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_toast_requested(self, event: ToastRequested) -> None:
        self.show_message(event.message)

    def _position_on_screen(self) -> None:
        screen = self.screen() or QGuiApplication.primaryScreen()
        if screen is None:  # pragma: no cover - headless without screens
            return
        area = screen.availableGeometry()
        x = area.x() + (area.width() - self.width()) // 2
        self.move(x, area.y() + TOAST_TOP_OFFSET)
