"""Tests for overlay geometry derivation."""

from __future__ import annotations

from spotlight.ui.geometry import GeometryMetrics, GeometryReactor, compute_window_height
from spotlight.ui.query_orchestrator import QueryPhase, QueryState

METRICS = GeometryMetrics()


def test_both_regions_with_measured_answer() -> None:
    assert compute_window_height(METRICS, True, True, 40) == 68 + 8 + (60 + 8) + (40 + 8) == 192


def test_input_row_only() -> None:
    assert compute_window_height(METRICS, False, False, 0) == 76


def test_translation_only() -> None:
    assert compute_window_height(METRICS, True, False, 0) == 144


def test_answer_without_measurement_uses_provisional_height() -> None:
    assert compute_window_height(METRICS, False, True, 0) == 76


def test_hidden_answer_ignores_stale_measurement() -> None:
    assert compute_window_height(METRICS, True, False, 300) == 144


class TestGeometryReactor:
    def _reactor(self) -> tuple[GeometryReactor, list[tuple[int, int]]]:
        resizes: list[tuple[int, int]] = []
        reactor = GeometryReactor(lambda width, height: resizes.append((width, height)))
        return reactor, resizes

    def test_late_measurement_causes_one_corrective_resize(self) -> None:
        reactor, resizes = self._reactor()

        reactor.update_answer(QueryState(QueryPhase.DEBOUNCING, 1))
        reactor.set_measured_answer_height(40)
        reactor.set_measured_answer_height(40)

        assert resizes == [(680, 124)]

    def test_recomputes_when_translation_appears_and_disappears(self) -> None:
        reactor, resizes = self._reactor()

        reactor.update_translation(QueryState(QueryPhase.IN_FLIGHT, 1))
        reactor.update_translation(QueryState(QueryPhase.IN_FLIGHT, 2))
        reactor.update_translation(QueryState(QueryPhase.IDLE, 3))

        assert [height for _, height in resizes] == [144, 76]

    def test_settled_empty_result_is_not_visible(self) -> None:
        reactor, resizes = self._reactor()

        reactor.update_translation(QueryState(QueryPhase.SETTLED, 1, payload=None))

        assert resizes == []
        assert reactor.height == 76

    def test_full_layout_and_reset(self) -> None:
        reactor, resizes = self._reactor()

        reactor.update_translation(QueryState(QueryPhase.SETTLED, 1, payload="hola"))
        reactor.update_answer(QueryState(QueryPhase.SETTLED, 1, payload="42"))
        reactor.set_measured_answer_height(40)
        assert reactor.height == 192

        reactor.reset()

        assert reactor.height == 76
        assert resizes[-1] == (680, 76)

    def test_hiding_answer_drops_measurement(self) -> None:
        reactor, _ = self._reactor()
        reactor.update_answer(QueryState(QueryPhase.SETTLED, 1, payload="42"))
        reactor.set_measured_answer_height(100)

        reactor.update_answer(QueryState(QueryPhase.IDLE, 2))
        reactor.update_answer(QueryState(QueryPhase.DEBOUNCING, 3))

        assert reactor.height == 76
