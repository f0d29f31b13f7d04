"""Debounced, cancellable orchestration of one kind of backend query.

The overlay runs two instances of :class:`QueryOrchestrator`, one for quick
answers and one for translations. Both follow the same state machine::

    IDLE -> DEBOUNCING -> IN_FLIGHT -> SETTLED | FAILED
      ^________________________________________|   (new input / cancel)

Every submitted input takes a fresh sequence token. Only results whose token
still equals the latest issued token are exposed; anything older is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

from ..ai.backend import OperationKind
from ..ai.errors import ErrorKind, classify_error
from ..services.settings import Settings
from .events import EventBus, QueryStateChanged, SettingsCommitted

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from ..ai.backend import AssistantBackend

__all__ = [
    "QueryPhase",
    "QueryState",
    "QueryRequest",
    "QueryBinding",
    "QueryOrchestrator",
    "quick_answer_binding",
    "translation_binding",
]

LOGGER = logging.getLogger(__name__)

QUICK_ANSWER_DEBOUNCE = 0.5
TRANSLATION_DEBOUNCE = 0.3
DEFAULT_QUERY_TIMEOUT = 30.0

StateListener = Callable[["QueryState"], None]


class SettingsSource(Protocol):
    def snapshot(self) -> Settings:
        ...


class QueryPhase(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    IN_FLIGHT = "in_flight"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class QueryState:
    """State exposed to the surface and to the geometry reactor."""

    phase: QueryPhase = QueryPhase.IDLE
    token: int = 0
    payload: Any = None
    error_kind: ErrorKind | None = None
    message: str = ""

    @property
    def is_loading(self) -> bool:
        return self.phase in (QueryPhase.DEBOUNCING, QueryPhase.IN_FLIGHT)

    @property
    def visible(self) -> bool:
        if self.phase is QueryPhase.IDLE:
            return False
        if self.phase is QueryPhase.SETTLED:
            return not _is_empty_payload(self.payload)
        return True


@dataclass(slots=True, frozen=True)
class QueryRequest:
    text: str
    token: int
    settings: Settings


def _always(_settings: Settings) -> bool:
    return True


def _is_empty_payload(payload: Any) -> bool:
    if payload is None:
        return True
    text = getattr(payload, "text", payload)
    if isinstance(text, str):
        return not text.strip()
    return False


@dataclass(slots=True, frozen=True)
class QueryBinding:
    """Timing constants and backend hooks for one orchestrator instance."""

    kind: str
    invoke: Callable[[str, Settings], Awaitable[Any]]
    debounce_seconds: float
    min_length: int = 1
    precondition: Callable[[Settings], bool] = _always
    cancel_backend: Callable[[], Any] | None = None
    watched_keys: frozenset[str] = field(default_factory=frozenset)
    timeout_seconds: float | None = DEFAULT_QUERY_TIMEOUT


class QueryOrchestrator:
    """Turns rapidly changing input into at most one authoritative backend call."""

    def __init__(
        self,
        binding: QueryBinding,
        settings: SettingsSource,
        bus: EventBus | None = None,
    ) -> None:
        self._binding = binding
        self._settings = settings
        self._bus = bus
        self._token = 0
        self._text = ""
        self._state = QueryState()
        self._task: asyncio.Task[None] | None = None
        self._last_request: QueryRequest | None = None
        self._listeners: list[StateListener] = []
        self._closed = False
        self._unsubscribe = bus.subscribe(SettingsCommitted, self._on_settings_committed) if bus else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def kind(self) -> str:
        return self._binding.kind

    @property
    def state(self) -> QueryState:
        return self._state

    @property
    def text(self) -> str:
        return self._text

    @property
    def latest_token(self) -> int:
        return self._token

    @property
    def last_request(self) -> QueryRequest | None:
        """The most recent request handed to the backend."""

        return self._last_request

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def submit(self, text: str) -> None:
        """Handle an input change."""

        if self._closed:
            return
        self._text = text
        token = self._next_token()
        self._abort_pending("superseded")

        if len(text.strip()) < self._binding.min_length:
            self._expose(QueryState(QueryPhase.IDLE, token))
            return
        if not self._binding.precondition(self._settings.snapshot()):
            LOGGER.debug("[%s] precondition not met; staying idle", self.kind)
            self._expose(QueryState(QueryPhase.IDLE, token))
            return

        self._expose(QueryState(QueryPhase.DEBOUNCING, token))
        self._task = asyncio.get_running_loop().create_task(self._run(text, token))

    def cancel(self) -> None:
        """Drop the pending input; used when the surface hides."""

        self._text = ""
        token = self._next_token()
        self._abort_pending("cancelled")
        self._expose(QueryState(QueryPhase.IDLE, token))

    async def aclose(self) -> None:
        if self._closed:
            return
        task = self._task
        self.cancel()
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _next_token(self) -> int:
        self._token += 1
        return self._token

    def _abort_pending(self, reason: str) -> None:
        task = self._task
        self._task = None
        in_flight = self._state.phase is QueryPhase.IN_FLIGHT
        if task is not None and not task.done():
            LOGGER.debug("[%s] %s (phase=%s)", self.kind, reason, self._state.phase.value)
            task.cancel()
        if in_flight and self._binding.cancel_backend is not None:
            try:
                self._binding.cancel_backend()
            except Exception:  # pragma: no cover - defensive guard
                LOGGER.debug("[%s] backend cancel hook failed", self.kind, exc_info=True)

    async def _run(self, text: str, token: int) -> None:
        try:
            await asyncio.sleep(self._binding.debounce_seconds)
        except asyncio.CancelledError:
            return
        if token != self._token:
            return

        # Read the settings now so edits made while debouncing are honored.
        settings = self._settings.snapshot()
        if not self._binding.precondition(settings):
            self._expose(QueryState(QueryPhase.IDLE, token))
            return

        request = QueryRequest(text=text, token=token, settings=settings)
        self._last_request = request
        self._expose(QueryState(QueryPhase.IN_FLIGHT, token))
        try:
            call = self._binding.invoke(request.text, request.settings)
            timeout = self._binding.timeout_seconds
            if timeout:
                payload = await asyncio.wait_for(call, timeout)
            else:
                payload = await call
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._finish_with_error(token, exc)
        else:
            if token != self._token:
                LOGGER.debug("[%s] discarding stale result for token %d", self.kind, token)
                return
            self._expose(QueryState(QueryPhase.SETTLED, token, payload=payload))
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    def _finish_with_error(self, token: int, exc: Exception) -> None:
        kind, message = classify_error(exc)
        if token != self._token:
            LOGGER.debug("[%s] discarding stale %s for token %d", self.kind, kind.value, token)
            return
        if kind is ErrorKind.NO_OP:
            LOGGER.debug("[%s] nothing to show: %s", self.kind, message)
            self._expose(QueryState(QueryPhase.SETTLED, token))
        elif kind in (ErrorKind.CANCELLED, ErrorKind.UNCONFIGURED):
            LOGGER.debug("[%s] reset to idle: %s", self.kind, message)
            self._expose(QueryState(QueryPhase.IDLE, token))
        else:
            LOGGER.warning("[%s] query failed (%s): %s", self.kind, kind.value, message)
            self._expose(QueryState(QueryPhase.FAILED, token, error_kind=kind, message=message))

    def _expose(self, state: QueryState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:  # pragma: no cover - defensive guard
                LOGGER.exception("[%s] state listener failed", self.kind)
        if self._bus is not None:
            self._bus.publish(QueryStateChanged(kind=self.kind, state=state))

    def _on_settings_committed(self, event: SettingsCommitted) -> None:
        if self._closed or not self._binding.watched_keys.intersection(event.changed_keys):
            return
        if not self._text:
            return
        LOGGER.debug("[%s] settings changed (%s); resubmitting", self.kind, ", ".join(event.changed_keys))
        self.submit(self._text)


# ----------------------------------------------------------------------
# Bindings
# ----------------------------------------------------------------------
def quick_answer_binding(
    backend: "AssistantBackend",
    *,
    debounce_seconds: float = QUICK_ANSWER_DEBOUNCE,
    timeout_seconds: float | None = DEFAULT_QUERY_TIMEOUT,
) -> QueryBinding:
    async def _invoke(text: str, settings: Settings) -> str:
        return await backend.quick_answer(
            text,
            settings.ollama_model,
            settings.enable_thinking,
            settings.web_search_api_url,
            settings.web_search_api_key,
        )

    return QueryBinding(
        kind=OperationKind.QUICK_ANSWER.value,
        invoke=_invoke,
        debounce_seconds=debounce_seconds,
        min_length=2,
        precondition=lambda settings: bool(settings.ollama_model),
        cancel_backend=lambda: backend.cancel(OperationKind.QUICK_ANSWER),
        watched_keys=frozenset(
            {"ollama_model", "enable_thinking", "web_search_api_url", "web_search_api_key"}
        ),
        timeout_seconds=timeout_seconds,
    )


def translation_binding(
    backend: "AssistantBackend",
    *,
    debounce_seconds: float = TRANSLATION_DEBOUNCE,
    timeout_seconds: float | None = DEFAULT_QUERY_TIMEOUT,
) -> QueryBinding:
    async def _invoke(text: str, settings: Settings) -> Any:
        return await backend.translate(text, settings.translation_second_language)

    return QueryBinding(
        kind=OperationKind.TRANSLATION.value,
        invoke=_invoke,
        debounce_seconds=debounce_seconds,
        min_length=1,
        cancel_backend=lambda: backend.cancel(OperationKind.TRANSLATION),
        watched_keys=frozenset({"translation_second_language"}),
        timeout_seconds=timeout_seconds,
    )
