"""
Inbound reading source: bulk history load and polling push feed.

Talks to the realtime database's PostgREST endpoint (``/rest/v1``) over
HTTPS with httpx. Two read paths feed the session's ReadingStore:

- RestReadingSource.fetch_history(days): the initial bulk load, the most
  recent *days* of readings for the device in ascending timestamp order.
- PollingFeed: an async iterator yielding batches of newly inserted rows.
  The cursor is the highest row id seen, so the feed relies on ids being
  assigned in increasing order; it does not assume increasing timestamps.

Rows that cannot be turned into a Reading (no ``id``) are skipped with a
warning; rows with unusable timestamps or numeric fields are kept, those
values simply become ``None``.

Transport and HTTP failures raise ReadingSourceError from the source. The
feed catches them, backs off exponentially (1s doubling up to 60s) and
keeps polling; it never ends on its own, only through stop(). An optional
on_error callback is told about every failed poll (with the error text)
and about the recovery (with None), so the owner can surface
feed health without the feed yielding anything.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-008)
- 2026-10-19: Report poll failures and recovery through on_error (STORY-016)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import ValidationError

from powermon.src.models import Reading

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

READINGS_TABLE = "monitoring_log"

BASE_BACKOFF_S: float = 1.0
"""Initial backoff delay in seconds after the first failed poll."""

MAX_BACKOFF_S: float = 60.0
"""Maximum backoff delay in seconds (cap for exponential growth)."""


class ReadingSourceError(Exception):
    """Raised when readings cannot be fetched from the data source."""


def rest_headers(api_key: str) -> dict[str, str]:
    """Authentication headers expected by the PostgREST gateway."""
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
    }


def parse_rows(rows: Any) -> list[Reading]:
    """Convert decoded JSON rows into Readings, skipping unusable rows."""
    if not isinstance(rows, list):
        raise ReadingSourceError(f"Expected a JSON array, got {type(rows).__name__}")
    readings: list[Reading] = []
    for row in rows:
        try:
            readings.append(Reading.model_validate(row))
        except ValidationError:
            logger.warning("Skipping malformed reading row: %r", row)
    return readings


# ---------------------------------------------------------------------------
# REST source
# ---------------------------------------------------------------------------


class RestReadingSource:
    """Reads a device's readings from the ``monitoring_log`` REST table.

    Args:
        base_url: Project base URL (``https://...``), without ``/rest/v1``.
        api_key: API key for the ``apikey`` and bearer headers.
        device_id: Device whose rows are read.
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        device_id: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/rest/v1/{READINGS_TABLE}"
        self._headers = rest_headers(api_key)
        self._device_id = device_id
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def device_id(self) -> str:
        return self._device_id

    async def fetch_history(
        self,
        days: int,
        *,
        now: datetime | None = None,
    ) -> list[Reading]:
        """Fetch the last *days* days of readings, oldest first.

        Raises:
            ReadingSourceError: On network errors or a non-200 response.
        """
        since = (now or datetime.now(tz=UTC)) - timedelta(days=days)
        params = {
            "select": "*",
            "device_id": f"eq.{self._device_id}",
            "ts": f"gte.{since.isoformat()}",
            "order": "ts.asc",
        }
        readings = await self._get(params)
        logger.info(
            "Fetched %d readings (%d days) for device=%s",
            len(readings),
            days,
            self._device_id,
        )
        return readings

    async def fetch_after(
        self,
        after_id: int | str | None,
        *,
        since: datetime | None = None,
    ) -> list[Reading]:
        """Fetch rows inserted after row *after_id*, in id order.

        Without a cursor, rows with ``ts >= since`` are returned instead so
        the first poll only covers what arrived since the feed started.

        Raises:
            ReadingSourceError: On network errors or a non-200 response.
        """
        params = {
            "select": "*",
            "device_id": f"eq.{self._device_id}",
            "order": "id.asc",
        }
        if after_id is not None:
            params["id"] = f"gt.{after_id}"
        elif since is not None:
            params["ts"] = f"gte.{since.isoformat()}"
        return await self._get(params)

    async def _get(self, params: dict[str, str]) -> list[Reading]:
        try:
            async with httpx.AsyncClient(
                verify=True,
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    self._url,
                    params=params,
                    headers=self._headers,
                )
        except httpx.HTTPError as exc:
            raise ReadingSourceError(f"Fetch failed (network error): {exc}") from exc

        if response.status_code != 200:
            raise ReadingSourceError(
                f"Fetch failed (HTTP {response.status_code}): {response.text[:200]}"
            )
        try:
            rows = response.json()
        except ValueError as exc:
            raise ReadingSourceError("Fetch failed: response is not JSON") from exc
        return parse_rows(rows)


# ---------------------------------------------------------------------------
# Push feed
# ---------------------------------------------------------------------------


class PollingFeed:
    """Cancellable push feed built on periodic ``fetch_after`` polls.

    Iterating the feed yields non-empty batches of new readings until
    :meth:`stop` is called. Failed polls are logged and retried after an
    exponentially growing delay that resets on the next success.

    Args:
        source: The REST source to poll.
        interval_s: Delay between successful polls.
        on_error: Called with the error text when a poll fails and with
            ``None`` when a poll succeeds after failures.

    Usage::

        feed = PollingFeed(source, interval_s=2.0)
        async for batch in feed:
            for reading in batch:
                store.ingest_one(reading)
    """

    def __init__(
        self,
        source: RestReadingSource,
        *,
        interval_s: float = 2.0,
        on_error: Callable[[str | None], None] | None = None,
    ) -> None:
        self._source = source
        self._interval_s = interval_s
        self._on_error = on_error
        self._stop_event = asyncio.Event()
        self._cursor: int | str | None = None
        self._started_at = datetime.now(tz=UTC)
        self._consecutive_failures = 0

    @property
    def cursor(self) -> int | str | None:
        """Highest row id yielded so far."""
        return self._cursor

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """End iteration; a pending sleep is interrupted immediately."""
        self._stop_event.set()

    def current_backoff(self) -> float:
        """Delay before the next poll given the consecutive failures."""
        if self._consecutive_failures == 0:
            return self._interval_s
        return min(
            BASE_BACKOFF_S * (2 ** (self._consecutive_failures - 1)),
            MAX_BACKOFF_S,
        )

    async def poll_once(self) -> list[Reading]:
        """Run one poll, advancing the cursor. Returns [] on failure."""
        try:
            batch = await self._source.fetch_after(self._cursor, since=self._started_at)
        except ReadingSourceError as exc:
            self._consecutive_failures += 1
            logger.warning(
                "Push feed poll failed (consecutive failures: %d)",
                self._consecutive_failures,
                exc_info=True,
            )
            self._report(str(exc))
            return []

        if self._consecutive_failures:
            logger.info(
                "Push feed recovered after %d failed poll(s)",
                self._consecutive_failures,
            )
            self._consecutive_failures = 0
            self._report(None)
        if batch:
            self._cursor = batch[-1].identity
        return batch

    def _report(self, message: str | None) -> None:
        if self._on_error is not None:
            self._on_error(message)

    async def __aiter__(self) -> AsyncIterator[list[Reading]]:
        while not self._stop_event.is_set():
            batch = await self.poll_once()
            if batch and not self._stop_event.is_set():
                yield batch
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.current_backoff(),
                )
