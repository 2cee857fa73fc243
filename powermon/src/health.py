"""
Health file writer for the monitor daemon.

Writes a JSON health file at a configurable path with five fields:
- last_ingest_ts: ISO timestamp of the most recent reading admitted.
- last_command_ts: ISO timestamp of the most recent accepted command.
- store_count: Number of readings held in the session store.
- latest_reading_id: Identity of the session's current reading.
- last_error: Last recoverable error message, or null.

The file is rewritten on every state change, providing a simple liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes session health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_ingest_ts: str | None = None
        self._last_command_ts: str | None = None
        self._store_count: int = 0
        self._latest_reading_id: int | str | None = None
        self._last_error: str | None = None

    def record_ingest(self, reading_id: int | str | None = None) -> None:
        """Record an admitted reading and write health file."""
        self._last_ingest_ts = datetime.now(tz=UTC).isoformat()
        if reading_id is not None:
            self._latest_reading_id = reading_id
        self._write()

    def record_command(self) -> None:
        """Record an accepted command and write health file."""
        self._last_command_ts = datetime.now(tz=UTC).isoformat()
        self._write()

    def set_store_count(self, count: int) -> None:
        """Update the store size and write health file."""
        self._store_count = count
        self._write()

    def set_error(self, message: str | None) -> None:
        """Set or clear the last error and write health file."""
        self._last_error = message
        self._write()

    def snapshot(self) -> dict[str, object]:
        """Current health state as a JSON-serialisable dict."""
        return {
            "last_ingest_ts": self._last_ingest_ts,
            "last_command_ts": self._last_command_ts,
            "store_count": self._store_count,
            "latest_reading_id": self._latest_reading_id,
            "last_error": self._last_error,
        }

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        self.path.write_text(json.dumps(self.snapshot()))
