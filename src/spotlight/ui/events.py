"""Event bus used to relay notifications between the open surfaces.

Event classes double as the well-known event names: a surface subscribes to
``SettingsCommitted`` and is told which keys changed, never their values.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar
from weakref import WeakMethod

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]
Unsubscribe = Callable[[], None]


@dataclass(slots=True)
class Event:
    """Base class for every event published on the bus."""


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Settings events
# =============================================================================


@dataclass(slots=True)
class SettingsCommitted(Event):
    """Emitted after a debounced settings write reached the persistence engine.

    Attributes:
        changed_keys: Names of the settings fields written in this commit.
    """

    changed_keys: tuple[str, ...]


@dataclass(slots=True)
class SettingsSaved(Event):
    """Emitted alongside :class:`SettingsCommitted` to drive the saved indicator."""


@dataclass(slots=True)
class SettingsSaveFailed(Event):
    """Emitted when a debounced write failed; the in-memory document is kept.

    Attributes:
        message: Diagnostic text for the transient "saving failed" indicator.
        keys: Fields that remain pending and will be retried.
    """

    message: str
    keys: tuple[str, ...] = ()


# =============================================================================
# Surface events
# =============================================================================


@dataclass(slots=True)
class ToastRequested(Event):
    """Ask the toast surface to flash a short message (e.g. "Translation copied")."""

    message: str


@dataclass(slots=True)
class ModelsRefreshed(Event):
    """Emitted after the user asked for the model list to be reloaded."""

    models: tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True)
class QueryStateChanged(Event):
    """Emitted whenever an orchestrator exposes a new query state.

    Attributes:
        kind: The orchestrator kind ("quick_answer" or "translation").
        state: The :class:`~spotlight.ui.query_orchestrator.QueryState` now exposed.
    """

    kind: str
    state: Any


_QUIET_EVENT_TYPES.add(QueryStateChanged)


class EventBus(Generic[E]):
    """A typed publish-subscribe bus.

    Handlers run synchronously in subscription order, so events of the same
    type reach each listener in publish order. Bound methods are held weakly;
    plain functions and lambdas are held strongly until unsubscribed. Nothing
    is replayed for late subscribers.

    Thread Safety:
        Not thread-safe. Publish and subscribe from the event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> Unsubscribe:
        """Register ``handler`` for ``event_type`` and return a callable that removes it."""

        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event_type)
            if handlers and handler_ref in handlers:
                handlers.remove(handler_ref)

        return _unsubscribe

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""

        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` to every live handler.

        A handler that raises is logged and the remaining handlers still run.
        """

        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES
        if not handlers:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return
        if not is_quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead: list[_HandlerRef] = []
        # Snapshot so handlers may unsubscribe while we iterate.
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
        for handler_ref in dead:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "Unsubscribe",
    "SettingsCommitted",
    "SettingsSaved",
    "SettingsSaveFailed",
    "ToastRequested",
    "ModelsRefreshed",
    "QueryStateChanged",
]
