"""Error taxonomy shared by the backend, the orchestrators, and the settings store."""

from __future__ import annotations

import asyncio
from enum import Enum

import httpx
from openai import APIConnectionError, APIError, APITimeoutError

__all__ = [
    "ErrorKind",
    "SpotlightError",
    "OperationCancelled",
    "NoOpCondition",
    "Unconfigured",
    "BackendUnavailable",
    "BackendError",
    "PersistenceError",
    "classify_error",
]


class ErrorKind(str, Enum):
    """How a failure is presented to the user."""

    CANCELLED = "cancelled"
    NO_OP = "no_op"
    UNCONFIGURED = "unconfigured"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_ERROR = "backend_error"
    PERSISTENCE = "persistence"

    @property
    def user_visible(self) -> bool:
        return self in (ErrorKind.BACKEND_UNAVAILABLE, ErrorKind.BACKEND_ERROR)


class SpotlightError(Exception):
    """Base class for every classified failure."""

    kind: ErrorKind = ErrorKind.BACKEND_ERROR


class OperationCancelled(SpotlightError):
    """The backend abandoned the call because a newer one superseded it."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Cancelled") -> None:
        super().__init__(message)


class NoOpCondition(SpotlightError):
    """Nothing to show, e.g. the source language already equals the target."""

    kind = ErrorKind.NO_OP


class Unconfigured(SpotlightError):
    """No model or target is selected yet."""

    kind = ErrorKind.UNCONFIGURED


class BackendUnavailable(SpotlightError):
    """The inference or translation service could not be reached."""

    kind = ErrorKind.BACKEND_UNAVAILABLE


class BackendError(SpotlightError):
    """The service answered, but with an error or an unusable payload."""

    kind = ErrorKind.BACKEND_ERROR


class PersistenceError(SpotlightError):
    """Writing the settings document failed."""

    kind = ErrorKind.PERSISTENCE


def classify_error(exc: BaseException) -> tuple[ErrorKind, str]:
    """Map ``exc`` to an :class:`ErrorKind` and the diagnostic text to display."""

    if isinstance(exc, SpotlightError):
        return exc.kind, str(exc)
    if isinstance(exc, asyncio.CancelledError):
        return ErrorKind.CANCELLED, "Cancelled"
    if isinstance(exc, (asyncio.TimeoutError, APITimeoutError, httpx.TimeoutException)):
        return ErrorKind.BACKEND_UNAVAILABLE, "Request timed out"
    if isinstance(exc, (APIConnectionError, httpx.ConnectError)):
        return (
            ErrorKind.BACKEND_UNAVAILABLE,
            f"Failed to connect to Ollama: {exc}. Make sure Ollama is running.",
        )
    if isinstance(exc, APIError):
        return ErrorKind.BACKEND_ERROR, f"Ollama API error: {exc}"
    return ErrorKind.BACKEND_ERROR, str(exc) or type(exc).__name__
