"""Window height derived from which result regions are showing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .query_orchestrator import QueryState

__all__ = ["GeometryMetrics", "GeometryReactor", "compute_window_height"]

LOGGER = logging.getLogger(__name__)

ResizeCallback = Callable[[int, int], None]


@dataclass(slots=True, frozen=True)
class GeometryMetrics:
    base_height: int = 68
    padding: int = 8
    dropdown_height: int = 60
    margin: int = 8
    width: int = 680


def compute_window_height(
    metrics: GeometryMetrics,
    translation_visible: bool,
    answer_visible: bool,
    measured_answer_height: int,
) -> int:
    """Return the overlay height for the given visibility and answer height.

    The answer region only contributes once its content height is known, so
    the first frame after it appears uses the provisional height.
    """

    height = metrics.base_height + metrics.padding
    if translation_visible:
        height += metrics.dropdown_height + metrics.margin
    if answer_visible and measured_answer_height > 0:
        height += measured_answer_height + metrics.margin
    return height


class GeometryReactor:
    """Recomputes the window size whenever a dependency changes.

    ``on_resize(width, height)`` is called only when the computed height
    differs from the last one reported.
    """

    def __init__(self, on_resize: ResizeCallback, metrics: GeometryMetrics | None = None) -> None:
        self._on_resize = on_resize
        self._metrics = metrics or GeometryMetrics()
        self._translation_visible = False
        self._answer_visible = False
        self._answer_height = 0
        self._height = compute_window_height(self._metrics, False, False, 0)

    @property
    def metrics(self) -> GeometryMetrics:
        return self._metrics

    @property
    def height(self) -> int:
        return self._height

    @property
    def answer_visible(self) -> bool:
        return self._answer_visible

    def update_translation(self, state: QueryState) -> int:
        self._translation_visible = state.visible
        return self._recompute()

    def update_answer(self, state: QueryState) -> int:
        self._answer_visible = state.visible
        if not self._answer_visible:
            self._answer_height = 0
        return self._recompute()

    def set_measured_answer_height(self, height: int) -> int:
        self._answer_height = max(0, int(height))
        return self._recompute()

    def reset(self) -> int:
        self._translation_visible = False
        self._answer_visible = False
        self._answer_height = 0
        return self._recompute()

    def _recompute(self) -> int:
        height = compute_window_height(
            self._metrics,
            self._translation_visible,
            self._answer_visible,
            self._answer_height,
        )
        if height != self._height:
            LOGGER.debug("Resizing overlay %d -> %d", self._height, height)
            self._height = height
            self._on_resize(self._metrics.width, height)
        return height
