"""
Persistent per-device session preferences backed by async SQLite.

Stores the small amount of user state a session needs across restarts:
the live-view range, the selected report month, the monthly budget target
and the per-channel automation rules. Values are JSON-encoded in a
key/value table scoped by device id, so several devices can share one file.

Reads never fail on bad data: a missing, unparsable or out-of-range value
falls back to its default (range 1 hour, no month, budget 0, built-in
rules). Writes validate their input and raise ValueError instead.

Operations:
- get(key) / set(key, value): raw JSON key/value access.
- load_session_config(): the full SessionConfig with fallbacks applied.
- save_range_hours / save_month / save_budget: validated writes.
- load_rules(): built-in rules with valid persisted overrides merged on top.
- update_rule(channel, **changes): patch one channel's rule and persist it.

Supports async context manager protocol for clean resource management.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import ValidationError

from powermon.src.aggregation import MonthKey
from powermon.src.automation import DEFAULT_RULES
from powermon.src.models import (
    CHANNEL_COUNT,
    AutomationRule,
    SessionConfig,
    parse_number,
)

logger = logging.getLogger(__name__)

RANGE_HOURS_KEY = "range_hours"
MONTH_KEY = "selected_month"
BUDGET_KEY = "budget_target"
RULES_KEY = "relay_auto_rules"

MIN_RANGE_HOURS = 1
MAX_RANGE_HOURS = 6

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS prefs (
    device_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (device_id, key)
);
"""

_SELECT_SQL = """\
SELECT value FROM prefs WHERE device_id = ? AND key = ?;
"""

_UPSERT_SQL = """\
INSERT INTO prefs (device_id, key, value) VALUES (?, ?, ?)
ON CONFLICT (device_id, key)
DO UPDATE SET value = excluded.value, updated_at = datetime('now');
"""


class PreferenceStore:
    """Async key/value preference store for one device.

    Args:
        path: Filesystem path for the SQLite database file.
              Accepts ``str`` or ``pathlib.Path``.
        device_id: Device the preferences belong to.

    Usage::

        async with PreferenceStore("/data/prefs.db", device_id="dev-1") as prefs:
            await prefs.save_budget(250_000)
            config = await prefs.load_session_config()
    """

    def __init__(self, path: str | Path, device_id: str) -> None:
        self._path = Path(path)
        self._device_id = device_id
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the SQLite connection and initialize the schema."""
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_CREATE_TABLE_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the underlying SQLite connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> PreferenceStore:
        """Enter async context manager: open the database."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager: close the database."""
        await self.close()

    # ------------------------------------------------------------------
    # Raw key/value access
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """Return the decoded value stored under *key*, or ``None``.

        A value that is not valid JSON is treated as absent.
        """
        assert self._db is not None, "PreferenceStore not opened."
        cursor = await self._db.execute(_SELECT_SQL, (self._device_id, key))
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt preference %s=%r", key, row[0])
            return None

    async def set(self, key: str, value: Any) -> None:
        """JSON-encode *value* and store it under *key*."""
        assert self._db is not None, "PreferenceStore not opened."
        await self._db.execute(
            _UPSERT_SQL, (self._device_id, key, json.dumps(value))
        )
        await self._db.commit()

    # ------------------------------------------------------------------
    # Typed preferences
    # ------------------------------------------------------------------

    async def load_range_hours(self) -> int:
        """Live-view range in hours; 1 when absent or outside 1-6."""
        value = parse_number(await self.get(RANGE_HOURS_KEY))
        if value is None or not value.is_integer():
            return MIN_RANGE_HOURS
        hours = int(value)
        if not MIN_RANGE_HOURS <= hours <= MAX_RANGE_HOURS:
            return MIN_RANGE_HOURS
        return hours

    async def save_range_hours(self, hours: int) -> None:
        """Persist the live-view range.

        Raises:
            ValueError: If *hours* is not an integer between 1 and 6.
        """
        if isinstance(hours, bool) or not isinstance(hours, int):
            raise ValueError("range_hours must be an integer")
        if not MIN_RANGE_HOURS <= hours <= MAX_RANGE_HOURS:
            raise ValueError(
                f"range_hours must be between {MIN_RANGE_HOURS} and {MAX_RANGE_HOURS}"
            )
        await self.set(RANGE_HOURS_KEY, hours)

    async def load_month_key(self) -> str | None:
        """Selected ``YYYY-MM`` month, or ``None`` when absent or malformed."""
        value = await self.get(MONTH_KEY)
        if not isinstance(value, str) or MonthKey.parse(value) is None:
            return None
        return value

    async def save_month(self, key: str) -> None:
        """Persist the selected report month.

        Raises:
            ValueError: If *key* is not a ``YYYY-MM`` month key.
        """
        month = MonthKey.parse(key)
        if month is None:
            raise ValueError(f"Malformed month key {key!r}, expected YYYY-MM")
        await self.set(MONTH_KEY, month.key)

    async def load_budget(self) -> float:
        """Monthly budget target; 0 when absent, unparsable or negative."""
        value = parse_number(await self.get(BUDGET_KEY))
        if value is None or value < 0:
            return 0.0
        return value

    async def save_budget(self, target: float) -> None:
        """Persist the monthly budget target.

        Raises:
            ValueError: If *target* is not a finite number >= 0.
        """
        value = parse_number(target)
        if value is None or value < 0:
            raise ValueError("budget_target must be a finite number >= 0")
        await self.set(BUDGET_KEY, value)

    async def load_rules(self) -> dict[int, AutomationRule]:
        """Built-in rules with the persisted per-channel overrides applied.

        Overrides may be partial. An override that does not produce a valid
        rule, or that names an unknown channel, is ignored with a warning.
        """
        rules = dict(DEFAULT_RULES)
        overrides = await self.get(RULES_KEY)
        if not isinstance(overrides, dict):
            return rules

        for raw_channel, override in overrides.items():
            try:
                channel = int(raw_channel)
            except ValueError:
                logger.warning("Ignoring rule for unknown channel %r", raw_channel)
                continue
            if channel not in rules or not isinstance(override, dict):
                logger.warning("Ignoring rule for channel %r", raw_channel)
                continue
            try:
                rules[channel] = AutomationRule.model_validate(
                    {**rules[channel].model_dump(), **override}
                )
            except ValidationError:
                logger.warning(
                    "Ignoring invalid persisted rule for channel %d: %r",
                    channel,
                    override,
                )
        return rules

    async def update_rule(self, channel: int, **changes: Any) -> AutomationRule:
        """Patch the rule of *channel* and persist the result.

        Args:
            channel: Relay channel index (0-3).
            **changes: Rule fields to change (``enabled``, ``source``,
                ``operator``, ``threshold``).

        Returns:
            The resulting rule.

        Raises:
            ValueError: If the channel is out of range, a field is unknown,
                or the patched rule is invalid.
        """
        if not 0 <= channel < CHANNEL_COUNT:
            raise ValueError(f"channel must be between 0 and {CHANNEL_COUNT - 1}")
        unknown = set(changes) - set(AutomationRule.model_fields)
        if unknown:
            raise ValueError(f"Unknown rule fields: {sorted(unknown)}")

        current = (await self.load_rules())[channel]
        try:
            rule = AutomationRule.model_validate({**current.model_dump(), **changes})
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc

        stored = await self.get(RULES_KEY)
        if not isinstance(stored, dict):
            stored = {}
        stored[str(channel)] = rule.model_dump(mode="json")
        await self.set(RULES_KEY, stored)
        logger.info("Rule updated: channel=%d rule=%s", channel, stored[str(channel)])
        return rule

    async def load_session_config(self) -> SessionConfig:
        """Load every preference with its fallback applied."""
        return SessionConfig(
            range_hours=await self.load_range_hours(),
            month_key=await self.load_month_key(),
            budget_target=await self.load_budget(),
            rules=await self.load_rules(),
        )
