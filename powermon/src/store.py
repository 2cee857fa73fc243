"""
Capacity-bounded, de-duplicated in-memory reading store for one device.

Holds the working set every report is computed from. Two feeds merge into
it: the initial bulk history load and the incremental push feed. Both are
deduplicated by reading identity, so a replayed or repeated push never
produces two entries with the same identity, even when it races the bulk
load.

Operations:
- ingest_initial(readings): merge a bulk load, sort by timestamp, trim.
- ingest_one(reading): append a pushed reading unless its identity is known.
- snapshot(): immutable view of the current sequence.
- latest: last reading in store order (the "current" reading).

The store is owned by a single DeviceSession and mutated only from its
event loop; the methods are synchronous so mutations never interleave.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from datetime import UTC, datetime

from powermon.src.models import Reading

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
"""Maximum number of readings kept per device."""

_NO_TIMESTAMP = datetime.min.replace(tzinfo=UTC)


def _sort_key(reading: Reading) -> datetime:
    """Sort key placing readings without a timestamp before all others."""
    return reading.timestamp or _NO_TIMESTAMP


class ReadingStore:
    """Time-ordered, capacity-bounded reading sequence with identity dedup.

    Args:
        capacity: Maximum number of readings retained. The oldest entries
            are evicted first once the capacity is exceeded.

    Usage::

        store = ReadingStore(capacity=1000)
        store.ingest_initial(history)
        store.ingest_one(pushed)
        readings = store.snapshot()
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._readings: deque[Reading] = deque()
        self._identities: set[int | str] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        """Maximum number of readings retained."""
        return self._capacity

    @property
    def latest(self) -> Reading | None:
        """Last reading in store order, or ``None`` when empty."""
        return self._readings[-1] if self._readings else None

    def __len__(self) -> int:
        return len(self._readings)

    def __contains__(self, identity: object) -> bool:
        return identity in self._identities

    def snapshot(self) -> tuple[Reading, ...]:
        """Return the current sequence as an immutable tuple.

        The tuple is a point-in-time copy; later ingests do not change it.
        """
        return tuple(self._readings)

    def ingest_initial(self, readings: Iterable[Reading]) -> int:
        """Merge a bulk history load into the store.

        Readings already present (for example pushes that arrived while the
        load was in flight) are kept; the first occurrence of an identity
        wins. The merged sequence is stably sorted by timestamp, readings
        without a timestamp first, and trimmed to the newest ``capacity``.

        Args:
            readings: Bulk-loaded readings, in any order.

        Returns:
            Number of readings newly admitted by this call.
        """
        merged: list[Reading] = list(self._readings)
        seen: set[int | str] = set(self._identities)
        admitted = 0
        for reading in readings:
            if reading.identity in seen:
                continue
            seen.add(reading.identity)
            merged.append(reading)
            admitted += 1

        merged.sort(key=_sort_key)
        if len(merged) > self._capacity:
            merged = merged[-self._capacity :]

        self._readings = deque(merged)
        self._identities = {r.identity for r in merged}
        logger.info(
            "Initial load merged: admitted=%d size=%d capacity=%d",
            admitted,
            len(self._readings),
            self._capacity,
        )
        return admitted

    def ingest_one(self, reading: Reading) -> bool:
        """Append a pushed reading unless its identity is already stored.

        Push order is not assumed to be time order: the reading is appended
        at the end regardless of its timestamp. Consumers needing time order
        sort the snapshot themselves.

        Args:
            reading: The newly pushed reading.

        Returns:
            True if the reading was appended, False if it was a duplicate.
        """
        if reading.identity in self._identities:
            logger.debug("Duplicate reading id=%s ignored", reading.identity)
            return False

        self._readings.append(reading)
        self._identities.add(reading.identity)
        while len(self._readings) > self._capacity:
            evicted = self._readings.popleft()
            self._identities.discard(evicted.identity)
        return True
