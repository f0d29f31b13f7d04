"""UI-side controllers: event bus, query orchestration, and window geometry."""

from .events import EventBus

__all__ = ["EventBus"]
