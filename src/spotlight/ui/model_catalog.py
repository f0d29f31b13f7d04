"""Installed-model list shown by the options surface."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence

from ..ai.errors import classify_error
from .events import EventBus, ModelsRefreshed

__all__ = ["ModelCatalog"]

LOGGER = logging.getLogger(__name__)

ModelLister = Callable[[], Awaitable[Sequence[str]]]


class ModelCatalog:
    """Caches the model identifiers reported by the local inference service."""

    def __init__(self, list_models: ModelLister, bus: EventBus | None = None) -> None:
        self._list_models = list_models
        self._bus = bus
        self._models: tuple[str, ...] = ()
        self._loading = False
        self._error: str | None = None

    @property
    def models(self) -> tuple[str, ...]:
        return self._models

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> str | None:
        return self._error

    async def refresh(self, *, announce: bool = False) -> tuple[str, ...]:
        """Reload the model list.

        With ``announce`` set (a user-triggered reload) a successful refresh
        publishes :class:`ModelsRefreshed`. Failures keep the previous list.
        """

        self._loading = True
        try:
            models = tuple(await self._list_models())
        except Exception as exc:
            _, message = classify_error(exc)
            self._error = message
            LOGGER.warning("Failed to load models: %s", message)
            return self._models
        finally:
            self._loading = False
        self._models = models
        self._error = None
        LOGGER.debug("Loaded %d model(s)", len(models))
        if announce and self._bus is not None:
            self._bus.publish(ModelsRefreshed(models=models))
        return models
