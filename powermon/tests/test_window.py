"""
Unit tests for the time-window filter.

Tests verify:
- select_window keeps exactly the readings with start <= ts <= end.
- Readings without a timestamp are excluded.
- The result is sorted by timestamp even when the input is not.
- select_last_hours uses [now - hours, now]; hours <= 0 selects nothing.
- trend_series carries power and month-to-date cost, None when absent.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-004)

TODO:
- None
"""

from datetime import UTC, datetime, timedelta

from powermon.src.models import Reading
from powermon.src.window import select_last_hours, select_window, trend_series

_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _reading(identity: int, minutes_ago: float | None, **fields: float) -> Reading:
    ts = None if minutes_ago is None else _NOW - timedelta(minutes=minutes_ago)
    return Reading(identity=identity, timestamp=ts, **fields)


class TestSelectWindow:
    """Inclusive bounds, timestamp filtering and ordering."""

    def test_bounds_inclusive(self) -> None:
        readings = [
            _reading(1, 61),
            _reading(2, 60),
            _reading(3, 30),
            _reading(4, 0),
            _reading(5, -1),
        ]
        selected = select_window(readings, _NOW - timedelta(hours=1), _NOW)

        assert [r.identity for r in selected] == [2, 3, 4]

    def test_exactly_matching_readings(self) -> None:
        readings = [_reading(i, i * 7) for i in range(20)]
        start = _NOW - timedelta(minutes=50)
        selected = select_window(readings, start, _NOW)

        expected = {r.identity for r in readings if start <= r.timestamp <= _NOW}
        assert {r.identity for r in selected} == expected

    def test_readings_without_timestamp_excluded(self) -> None:
        selected = select_window(
            [_reading(1, None), _reading(2, 5)], _NOW - timedelta(hours=1), _NOW
        )
        assert [r.identity for r in selected] == [2]

    def test_result_sorted_by_timestamp(self) -> None:
        readings = [_reading(1, 5), _reading(2, 50), _reading(3, 20)]
        selected = select_window(readings, _NOW - timedelta(hours=1), _NOW)

        assert [r.identity for r in selected] == [2, 3, 1]


class TestSelectLastHours:
    """Relative window ending at now."""

    def test_last_hours(self) -> None:
        readings = [_reading(1, 200), _reading(2, 119), _reading(3, 1)]
        selected = select_last_hours(readings, 2, _NOW)

        assert [r.identity for r in selected] == [2, 3]

    def test_non_positive_hours(self) -> None:
        assert select_last_hours([_reading(1, 0)], 0, _NOW) == []


class TestTrendSeries:
    """Chart points of the live view."""

    def test_points_carry_power_and_cost(self) -> None:
        readings = [
            _reading(1, 10, power_w=350.0, cost_monthly_rp=12000.0),
            _reading(2, 5),
        ]
        points = trend_series(readings, 1, _NOW)

        assert len(points) == 2
        assert points[0].ts == _NOW - timedelta(minutes=10)
        assert points[0].power_w == 350.0
        assert points[0].cost_monthly_rp == 12000.0
        assert points[1].power_w is None
        assert points[1].cost_monthly_rp is None
