"""
Device session: the single owner of one device's live state.

A DeviceSession ties the pieces together for one device id:

- the ReadingStore, fed by the bulk history load and the push feed;
- the RuleEngine and its last-commanded memory;
- the PreferenceStore holding range, month, budget and rules;
- the command sink used by automation and manual callers.

Lifecycle: start() marks the session alive, launches the push-feed consumer
task and then awaits the bulk history load; both merge into the same store
(see ReadingStore.ingest_initial). close() clears the liveness flag, stops
the feed and cancels outstanding dispatch tasks. Anything that completes
after close (a late bulk load, a late dispatch) is discarded.

Whenever the store's latest reading changes, the current rules are re-read
from the preference store and evaluated; resulting intents are dispatched
as tracked background tasks so ingestion never waits on the network.

Errors never stop the session. Failed bulk loads and failed feed polls are
recorded in ``last_error`` (cleared again by the next success); an
unexpected error while evaluating rules, dispatching a command or ingesting
a pushed batch is logged, recorded and the session carries on.

All store mutations happen on the session's event loop through synchronous
store methods, so they never interleave.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-011)
- 2026-10-19: Surface feed errors, isolate evaluation and dispatch failures (STORY-016)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from datetime import UTC, datetime, tzinfo
from typing import Any

from powermon.src.aggregation import (
    DEFAULT_LAST_SAMPLES,
    MonthKey,
    MonthlyReport,
    PowerProfile,
    WeeklyReport,
    available_months,
    compute_monthly,
    compute_weekly,
    last_samples,
    power_profile,
    resolve_month,
)
from powermon.src.automation import RuleEngine
from powermon.src.commands import CommandSink, RestCommandSink
from powermon.src.config import MonitorSettings
from powermon.src.health import HealthWriter
from powermon.src.models import (
    CHANNEL_COUNT,
    ActuatorIntent,
    AutomationRule,
    Reading,
    ResetCommand,
)
from powermon.src.prefs import PreferenceStore
from powermon.src.projection import (
    CostBreakdown,
    ProjectionReport,
    build_projection,
    cost_breakdown,
)
from powermon.src.source import PollingFeed, ReadingSourceError, RestReadingSource
from powermon.src.store import ReadingStore
from powermon.src.window import TrendPoint, trend_series

logger = logging.getLogger(__name__)

MANUAL_REASON = "web_manual"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class DeviceSession:
    """Live state and report access for one monitored device.

    Args:
        device_id: Device the session serves.
        store: Reading store owned by this session.
        prefs: Opened preference store for the device.
        source: Reading source for the bulk load.
        sink: Command sink for relay and reset commands.
        feed: Push feed; defaults to a PollingFeed over *source* whose
            poll failures are recorded in ``last_error``.
        engine: Rule engine; a fresh one (empty memory) by default.
        health: Optional health file writer.
        tz: Timezone defining calendar days and months.
        history_days: Days covered by the bulk load.
        last_samples_n: Samples in the short-horizon power profile.
        poll_interval_s: Poll interval of the default PollingFeed.
        clock: Returns the current aware time; overridable for tests.

    Usage::

        async with PreferenceStore(path, device_id) as prefs:
            session = DeviceSession.from_settings(settings, prefs)
            await session.start()
            ...
            await session.close()
    """

    def __init__(
        self,
        *,
        device_id: str,
        store: ReadingStore,
        prefs: PreferenceStore,
        source: RestReadingSource,
        sink: CommandSink,
        feed: PollingFeed | None = None,
        engine: RuleEngine | None = None,
        health: HealthWriter | None = None,
        tz: tzinfo = UTC,
        history_days: int = 30,
        last_samples_n: int = DEFAULT_LAST_SAMPLES,
        poll_interval_s: float = 2.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.device_id = device_id
        self.store = store
        self.prefs = prefs
        self.engine = engine or RuleEngine()
        self.tz = tz
        self.last_error: str | None = None
        self._source = source
        self._sink = sink
        self._feed = feed or PollingFeed(
            source, interval_s=poll_interval_s, on_error=self._set_error
        )
        self._health = health
        self._history_days = history_days
        self._last_samples_n = last_samples_n
        self._clock = clock
        self._alive = False
        self._feed_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: MonitorSettings,
        prefs: PreferenceStore,
        health: HealthWriter | None = None,
    ) -> DeviceSession:
        """Build a session wired to the REST source and sink in *settings*."""
        source = RestReadingSource(
            base_url=settings.source_base_url,
            api_key=settings.source_api_key,
            device_id=settings.device_id,
            timeout_s=settings.request_timeout_s,
        )
        sink = RestCommandSink(
            base_url=settings.source_base_url,
            api_key=settings.source_api_key,
            device_id=settings.device_id,
            timeout_s=settings.request_timeout_s,
        )
        return cls(
            device_id=settings.device_id,
            store=ReadingStore(capacity=settings.store_capacity),
            prefs=prefs,
            source=source,
            sink=sink,
            health=health,
            tz=settings.tz,
            history_days=settings.history_days,
            last_samples_n=settings.last_samples,
            poll_interval_s=settings.poll_interval_s,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def pending_dispatches(self) -> int:
        """Number of relay dispatches still in flight."""
        return len(self._tasks)

    def now(self) -> datetime:
        return self._clock()

    async def start(self) -> None:
        """Start the push-feed consumer, then run the bulk history load."""
        if self._alive:
            return
        self._alive = True
        self._feed_task = asyncio.create_task(
            self._consume_feed(), name=f"feed-{self.device_id}"
        )
        await self.load_history()
        logger.info(
            "Session started: device=%s readings=%d",
            self.device_id,
            len(self.store),
        )

    async def close(self) -> None:
        """Stop the feed and cancel in-flight dispatches."""
        if not self._alive and self._feed_task is None:
            return
        self._alive = False
        self._feed.stop()
        pending = list(self._tasks)
        if self._feed_task is not None:
            pending.append(self._feed_task)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._feed_task = None
        self._tasks.clear()
        logger.info("Session closed: device=%s", self.device_id)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def load_history(self) -> int:
        """Fetch the bulk history and merge it into the store.

        A fetch failure is recorded in ``last_error`` and the store keeps
        whatever it already holds.

        Returns:
            Number of readings newly admitted.
        """
        try:
            readings = await self._source.fetch_history(
                self._history_days, now=self.now()
            )
        except ReadingSourceError as exc:
            logger.warning("Bulk history load failed", exc_info=True)
            self._set_error(str(exc))
            return 0

        if not self._alive:
            logger.info("Session closed during bulk load, discarding result")
            return 0

        previous = self.store.latest
        admitted = self.store.ingest_initial(readings)
        self._set_error(None)
        await self._on_latest_changed(previous)
        return admitted

    async def ingest(self, readings: Iterable[Reading]) -> int:
        """Append pushed readings in arrival order.

        Rules are evaluated after every admitted reading that becomes the
        session's current reading.

        Returns:
            Number of readings admitted (duplicates excluded).
        """
        admitted = 0
        for reading in readings:
            if not self._alive:
                break
            previous = self.store.latest
            if self.store.ingest_one(reading):
                admitted += 1
                await self._on_latest_changed(previous)
        return admitted

    async def _consume_feed(self) -> None:
        async for batch in self._feed:
            if not self._alive:
                break
            try:
                await self.ingest(batch)
            except Exception as exc:
                logger.error("Push batch ingest error", exc_info=True)
                self._set_error(_describe(exc))

    async def _on_latest_changed(self, previous: Reading | None) -> None:
        latest = self.store.latest
        if latest is None:
            return
        if previous is not None and previous.identity == latest.identity:
            return
        if self._health is not None:
            self._write_health(self._health.record_ingest, latest.identity)
            self._write_health(self._health.set_store_count, len(self.store))
        try:
            await self._evaluate(latest)
        except Exception as exc:
            logger.error(
                "Rule evaluation error for reading id=%s", latest.identity, exc_info=True
            )
            self._set_error(_describe(exc))

    async def _evaluate(self, reading: Reading) -> None:
        rules = await self.prefs.load_rules()
        for intent in self.engine.plan(reading, rules):
            self._spawn(self._dispatch(intent))

    async def _dispatch(self, intent: ActuatorIntent) -> None:
        # CommandError is handled by the engine; anything else lands here.
        try:
            accepted = await self.engine.dispatch(intent, self._sink)
        except Exception as exc:
            logger.error(
                "Relay dispatch error for channel %d", intent.channel, exc_info=True
            )
            if self._alive:
                self._set_error(_describe(exc))
            return
        if accepted and self._alive and self._health is not None:
            self._write_health(self._health.record_command)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _set_error(self, message: str | None) -> None:
        self.last_error = message
        if self._health is not None:
            self._write_health(self._health.set_error, message)

    def _write_health(self, update: Callable[..., None], *args: Any) -> None:
        try:
            update(*args)
        except OSError:
            logger.warning("Failed to write health file", exc_info=True)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    @property
    def latest(self) -> Reading | None:
        """The session's current reading."""
        return self.store.latest

    async def trend(self, hours: int | None = None) -> list[TrendPoint]:
        """Live chart series over *hours*, or the persisted range."""
        if hours is None:
            hours = await self.prefs.load_range_hours()
        return trend_series(self.store.snapshot(), hours, self.now())

    def weekly(self) -> WeeklyReport | None:
        return compute_weekly(self.store.snapshot(), self.now(), self.tz)

    def months(self) -> list[MonthKey]:
        return available_months(self.store.snapshot(), self.tz)

    async def selected_month(self) -> MonthKey | None:
        """Persisted month when still available, else the most recent one."""
        return resolve_month(self.months(), await self.prefs.load_month_key())

    async def monthly(self, month: str | None = None) -> MonthlyReport | None:
        """Monthly report for *month* (``YYYY-MM``) or the selected month."""
        if month is None:
            selected = await self.selected_month()
            if selected is None:
                return None
            return compute_monthly(self.store.snapshot(), selected, self.tz)
        return compute_monthly(self.store.snapshot(), month, self.tz)

    def power_profile(self) -> PowerProfile:
        samples = last_samples(self.store.snapshot(), self._last_samples_n)
        return power_profile(samples)

    async def projection(self) -> ProjectionReport:
        budget = await self.prefs.load_budget()
        return build_projection(self.latest, budget, self.now(), self.tz)

    def cost_breakdown(self) -> CostBreakdown | None:
        return cost_breakdown(self.latest)

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def set_range_hours(self, hours: int) -> None:
        await self.prefs.save_range_hours(hours)

    async def select_month(self, key: str) -> None:
        await self.prefs.save_month(key)

    async def set_budget(self, target: float) -> None:
        await self.prefs.save_budget(target)

    async def rules(self) -> dict[int, AutomationRule]:
        return await self.prefs.load_rules()

    async def update_rule(self, channel: int, **changes: Any) -> AutomationRule:
        return await self.prefs.update_rule(channel, **changes)

    async def manual_toggle(
        self, channel: int, state: bool, *, client: str | None = None
    ) -> ActuatorIntent:
        """Drive a relay directly, bypassing the rule engine.

        The engine's last-commanded memory is left untouched. *client* names
        the API client asking for the toggle and is only logged.

        Raises:
            ValueError: If *channel* is outside 0-3.
            CommandError: If the sink rejects the command.
        """
        if not 0 <= channel < CHANNEL_COUNT:
            raise ValueError(f"channel must be between 0 and {CHANNEL_COUNT - 1}")
        intent = ActuatorIntent(channel=channel, state=state, reason=MANUAL_REASON)
        await self._sink.set_relay(intent)
        logger.info(
            "Manual relay toggle: channel=%d state=%s client=%s", channel, state, client
        )
        if self._health is not None:
            self._write_health(self._health.record_command)
        return intent

    async def reset_energy(self, *, client: str | None = None) -> ResetCommand:
        """Ask the device to reset its cumulative energy counter.

        The reference energy is the current reading's lifetime energy (0
        when unknown) and the reference time is now in unix seconds.

        Raises:
            CommandError: If the sink rejects the command.
        """
        latest = self.latest
        reference = 0.0
        if latest is not None and latest.energy_total_kwh is not None:
            reference = latest.energy_total_kwh
        command = ResetCommand(
            reference_energy_kwh=reference,
            reference_ts=int(self.now().timestamp()),
        )
        await self._sink.reset_energy(command)
        logger.info(
            "Energy reset requested: reference=%.3f kWh client=%s",
            reference,
            client,
        )
        if self._health is not None:
            self._write_health(self._health.record_command)
        return command

    def status(self) -> dict[str, object]:
        """Short liveness summary for health endpoints."""
        latest = self.latest
        return {
            "device_id": self.device_id,
            "alive": self._alive,
            "store_count": len(self.store),
            "latest_reading_id": latest.identity if latest is not None else None,
            "latest_ts": latest.timestamp.isoformat()
            if latest is not None and latest.timestamp is not None
            else None,
            "last_error": self.last_error,
        }
