"""
Aggregation reducers folding reading sequences into calendar summaries.

Every reducer is a pure function of a reading sequence and a reference
time/month; they are recomputed on demand from a store snapshot instead of
being maintained incrementally (the store holds at most a few thousand
readings, so an O(n log n) pass per request is cheap).

Reducers:
- compute_weekly: rolling 7-day view, one DayBucket per calendar day.
- compute_monthly: fixed calendar month, DayBuckets grouped into
  week-of-month WeekBuckets.
- last_samples / power_profile: short-horizon power profile.
- available_months / resolve_month: selectable month options.

Cumulative counters (daily energy, daily cost) only increase within a day,
so a day's value is the maximum observed sample. A week's value is the sum
of its days' maxima. Fields that are ``None`` on a reading never take part
in a max or sum; a bucket with no valid sample for a field reports 0 for it.

The weekly view is deliberately not month-bounded while the monthly view
is; the two answer different questions (last seven days vs. a billing
month).

CHANGELOG:
- 2026-10-19: Add power_profile and resolve_month (STORY-005)
- 2026-10-19: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any

from pydantic import BaseModel, ConfigDict, computed_field

from powermon.src.models import Reading

logger = logging.getLogger(__name__)

MONTH_NAMES_ID: tuple[str, ...] = (
    "Januari",
    "Februari",
    "Maret",
    "April",
    "Mei",
    "Juni",
    "Juli",
    "Agustus",
    "September",
    "Oktober",
    "November",
    "Desember",
)
"""Month labels shown to the device owner (Indonesian locale)."""

DEFAULT_LAST_SAMPLES = 12


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class MonthKey(BaseModel):
    """A calendar month present in the reading sequence.

    Attributes:
        year: Four-digit year.
        month: Month number, 1-12.
    """

    model_config = ConfigDict(frozen=True)

    year: int
    month: int

    @computed_field
    @property
    def key(self) -> str:
        """Sortable ``YYYY-MM`` identifier used for persistence."""
        return f"{self.year:04d}-{self.month:02d}"

    @computed_field
    @property
    def label(self) -> str:
        """Display label, e.g. ``Oktober 2026``."""
        return f"{MONTH_NAMES_ID[self.month - 1]} {self.year}"

    @classmethod
    def parse(cls, key: str | None) -> MonthKey | None:
        """Parse a ``YYYY-MM`` key, returning ``None`` when malformed."""
        if not key:
            return None
        year_str, sep, month_str = key.partition("-")
        if not sep:
            return None
        try:
            year = int(year_str)
            month = int(month_str)
        except ValueError:
            return None
        if not 1 <= month <= 12:
            return None
        return cls(year=year, month=month)


class DayBucket(BaseModel):
    """Summary of one calendar day.

    Attributes:
        day: Calendar date in the reporting timezone.
        energy_kwh: Highest daily cumulative energy observed.
        cost_rp: Highest daily cumulative cost observed.
        peak_watts: Highest instantaneous power observed.
        peak_ts: When ``peak_watts`` was first reached, or ``None``.
        reading_count: Readings that fell on this day.
    """

    day: date
    energy_kwh: float = 0.0
    cost_rp: float = 0.0
    peak_watts: float = 0.0
    peak_ts: datetime | None = None
    reading_count: int = 0


class WeekBucket(BaseModel):
    """Summary of one week-of-month (days 1-7, 8-14, ...).

    Attributes:
        index: Week-of-month number starting at 1.
        days: Dates contributing to the week.
        energy_kwh: Sum of the days' energy maxima.
        cost_rp: Sum of the days' cost maxima.
        peak_watts: Highest instantaneous power in the week.
        peak_ts: When ``peak_watts`` was first reached, or ``None``.
    """

    index: int
    days: list[date]
    energy_kwh: float
    cost_rp: float
    peak_watts: float
    peak_ts: datetime | None


class WeeklyReport(BaseModel):
    """Rolling seven-day report."""

    days: list[DayBucket]
    most_wasteful_day: DayBucket
    total_energy_kwh: float
    total_cost_rp: float


class MonthlyReport(BaseModel):
    """Calendar-month report split into weeks."""

    month: MonthKey
    weeks: list[WeekBucket]
    most_wasteful_week: WeekBucket
    total_energy_kwh: float
    total_cost_rp: float


class PowerProfile(BaseModel):
    """Short-horizon power statistics over the last few samples.

    ``max_w`` and ``avg_w`` are ``None`` when none of the samples carried a
    numeric power value.
    """

    count: int
    max_w: float | None
    avg_w: float | None


# ---------------------------------------------------------------------------
# Internal folding helpers
# ---------------------------------------------------------------------------


@dataclass
class _DayAccumulator:
    """Mutable running maxima for one day while folding."""

    day: date
    energy_kwh: float = 0.0
    cost_rp: float = 0.0
    peak_watts: float = 0.0
    peak_ts: datetime | None = None
    reading_count: int = 0

    def add(self, reading: Reading) -> None:
        self.reading_count += 1
        energy = reading.energy_daily_kwh
        if energy is not None and energy > self.energy_kwh:
            self.energy_kwh = energy
        cost = reading.cost_daily_rp
        if cost is not None and cost > self.cost_rp:
            self.cost_rp = cost
        # Strict comparison: the first time the peak is reached wins.
        power = reading.power_w
        if power is not None and power > self.peak_watts:
            self.peak_watts = power
            self.peak_ts = reading.timestamp

    def to_bucket(self) -> DayBucket:
        return DayBucket(
            day=self.day,
            energy_kwh=self.energy_kwh,
            cost_rp=self.cost_rp,
            peak_watts=self.peak_watts,
            peak_ts=self.peak_ts,
            reading_count=self.reading_count,
        )


def _timed(readings: Iterable[Reading]) -> list[Reading]:
    """Readings with a timestamp, stably sorted ascending."""
    timed = [r for r in readings if r.timestamp is not None]
    timed.sort(key=lambda r: r.timestamp)
    return timed


def _fold_days(readings: list[Reading], tz: tzinfo) -> list[DayBucket]:
    """Fold time-ordered readings into ascending DayBuckets."""
    days: dict[date, _DayAccumulator] = {}
    for reading in readings:
        day = reading.timestamp.astimezone(tz).date()
        acc = days.get(day)
        if acc is None:
            acc = days[day] = _DayAccumulator(day=day)
        acc.add(reading)
    return [days[d].to_bucket() for d in sorted(days)]


def _most_energy(buckets: Sequence[Any]) -> Any:
    """First bucket holding the largest energy value."""
    best = buckets[0]
    for bucket in buckets[1:]:
        if bucket.energy_kwh > best.energy_kwh:
            best = bucket
    return best


def _week_bucket(index: int, days: list[DayBucket]) -> WeekBucket:
    """Combine the DayBuckets of one week-of-month."""
    peak_watts = 0.0
    peak_ts: datetime | None = None
    for day in days:
        if day.peak_ts is not None and day.peak_watts > peak_watts:
            peak_watts = day.peak_watts
            peak_ts = day.peak_ts
    return WeekBucket(
        index=index,
        days=[d.day for d in days],
        energy_kwh=sum(d.energy_kwh for d in days),
        cost_rp=sum(d.cost_rp for d in days),
        peak_watts=peak_watts,
        peak_ts=peak_ts,
    )


def start_of_day(moment: datetime, tz: tzinfo = UTC) -> datetime:
    """Return local midnight of *moment*'s calendar day in *tz*."""
    local = moment.astimezone(tz)
    return datetime.combine(local.date(), time.min, tzinfo=tz)


def week_of_month(day: date) -> int:
    """Week-of-month index: days 1-7 are week 1, 8-14 week 2, and so on."""
    return 1 + (day.day - 1) // 7


# ---------------------------------------------------------------------------
# Public reducers
# ---------------------------------------------------------------------------


def compute_weekly(
    readings: Iterable[Reading],
    now: datetime,
    tz: tzinfo = UTC,
) -> WeeklyReport | None:
    """Summarise the rolling week ending at *now*, one bucket per day.

    Includes every reading from local midnight six days before *now*
    onwards, regardless of month boundaries.

    Args:
        readings: Reading sequence in any order.
        now: Reference instant (aware).
        tz: Timezone defining calendar days.

    Returns:
        A :class:`WeeklyReport`, or ``None`` when no reading falls in the
        window.
    """
    start = start_of_day(now - timedelta(days=6), tz)
    week = [r for r in _timed(readings) if r.timestamp >= start]
    if not week:
        return None

    days = _fold_days(week, tz)
    return WeeklyReport(
        days=days,
        most_wasteful_day=_most_energy(days),
        total_energy_kwh=sum(d.energy_kwh for d in days),
        total_cost_rp=sum(d.cost_rp for d in days),
    )


def compute_monthly(
    readings: Iterable[Reading],
    month: MonthKey | str,
    tz: tzinfo = UTC,
) -> MonthlyReport | None:
    """Summarise one calendar month as week-of-month buckets.

    Each day's energy and cost maxima are summed into the week they belong
    to, recovering a week total from cumulative daily counters. Readings
    outside the month are ignored even when adjacent in time.

    Args:
        readings: Reading sequence in any order.
        month: A :class:`MonthKey` or a ``YYYY-MM`` string.
        tz: Timezone defining calendar days and months.

    Returns:
        A :class:`MonthlyReport`, or ``None`` when the key is malformed or
        the month has no readings.
    """
    key = month if isinstance(month, MonthKey) else MonthKey.parse(month)
    if key is None:
        logger.debug("Malformed month key %r", month)
        return None

    in_month = []
    for reading in _timed(readings):
        local = reading.timestamp.astimezone(tz)
        if local.year == key.year and local.month == key.month:
            in_month.append(reading)
    if not in_month:
        return None

    grouped: dict[int, list[DayBucket]] = {}
    for day in _fold_days(in_month, tz):
        grouped.setdefault(week_of_month(day.day), []).append(day)

    weeks = [_week_bucket(index, grouped[index]) for index in sorted(grouped)]
    return MonthlyReport(
        month=key,
        weeks=weeks,
        most_wasteful_week=_most_energy(weeks),
        total_energy_kwh=sum(w.energy_kwh for w in weeks),
        total_cost_rp=sum(w.cost_rp for w in weeks),
    )


def last_samples(
    readings: Sequence[Reading],
    n: int = DEFAULT_LAST_SAMPLES,
) -> list[Reading]:
    """Return the final *n* readings in store order (not time-filtered)."""
    if n <= 0:
        return []
    return list(readings[-n:])


def power_profile(samples: Iterable[Reading]) -> PowerProfile:
    """Max and mean of the numeric power values among *samples*."""
    samples = list(samples)
    values = [r.power_w for r in samples if r.power_w is not None]
    if not values:
        return PowerProfile(count=len(samples), max_w=None, avg_w=None)
    return PowerProfile(
        count=len(samples),
        max_w=max(values),
        avg_w=sum(values) / len(values),
    )


def available_months(
    readings: Iterable[Reading],
    tz: tzinfo = UTC,
) -> list[MonthKey]:
    """Distinct months present in *readings*, oldest first."""
    months = set()
    for reading in readings:
        if reading.timestamp is None:
            continue
        local = reading.timestamp.astimezone(tz)
        months.add((local.year, local.month))
    return [MonthKey(year=y, month=m) for y, m in sorted(months)]


def resolve_month(
    options: Sequence[MonthKey],
    preferred: str | None,
) -> MonthKey | None:
    """Pick the preferred month if still available, else the most recent."""
    if not options:
        return None
    for option in options:
        if option.key == preferred:
            return option
    return options[-1]
