"""
Time-window selection over reading sequences.

Pure functions used by every time-indexed consumer: readings without a
timestamp are excluded, and results are always stably sorted by timestamp
because push order does not imply time order.

CHANGELOG:
- 2026-10-19: Add trend_series for the live power/cost chart (STORY-004)
- 2026-10-19: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from pydantic import BaseModel

from powermon.src.models import Reading


class TrendPoint(BaseModel):
    """One point of the live trend chart.

    Attributes:
        ts: Reading timestamp.
        power_w: Active power, or ``None`` when the reading had none.
        cost_monthly_rp: Month-to-date cost, or ``None``.
    """

    ts: datetime
    power_w: float | None
    cost_monthly_rp: float | None


def select_window(
    readings: Iterable[Reading],
    start: datetime,
    end: datetime,
) -> list[Reading]:
    """Return readings with ``start <= timestamp <= end`` in time order.

    Args:
        readings: Any reading sequence, in any order.
        start: Inclusive lower bound (aware datetime).
        end: Inclusive upper bound (aware datetime).

    Returns:
        Matching readings sorted ascending by timestamp. Readings sharing
        a timestamp keep their input order.
    """
    selected = [
        r for r in readings if r.timestamp is not None and start <= r.timestamp <= end
    ]
    selected.sort(key=lambda r: r.timestamp)
    return selected


def select_last_hours(
    readings: Iterable[Reading],
    hours: float,
    now: datetime,
) -> list[Reading]:
    """Return the readings of the last *hours* hours up to *now*."""
    if hours <= 0:
        return []
    return select_window(readings, now - timedelta(hours=hours), now)


def trend_series(
    readings: Iterable[Reading],
    hours: float,
    now: datetime,
) -> list[TrendPoint]:
    """Build the live-view chart series for the last *hours* hours."""
    return [
        TrendPoint(ts=r.timestamp, power_w=r.power_w, cost_monthly_rp=r.cost_monthly_rp)
        for r in select_last_hours(readings, hours, now)
    ]
