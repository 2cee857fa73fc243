"""
Edge-triggered threshold automation for the device's relay channels.

Each of the four relay channels may carry an AutomationRule. Whenever the
session's current reading changes, the engine evaluates every enabled rule
against the rule's sensor value and emits an ActuatorIntent only when the
desired relay state differs from the state it last commanded for that
channel. A condition that keeps holding therefore produces one command, not
one per reading.

Command delivery is at most one attempt per edge: the remembered state is
updated when the intent is planned and is never rolled back when the sink
reports a failure. The memory lives only in the process; after a restart the
first evaluation may repeat the last command once.

Manual toggles go straight to the command sink and never touch this memory.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from operator import attrgetter
from typing import TYPE_CHECKING

from powermon.src.commands import CommandError
from powermon.src.models import (
    CHANNEL_COUNT,
    ActuatorIntent,
    AutomationRule,
    Reading,
    RuleOperator,
    RuleSource,
)

if TYPE_CHECKING:
    from powermon.src.commands import CommandSink

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------

SOURCE_FIELDS: dict[RuleSource, Callable[[Reading], float | None]] = {
    RuleSource.TEMPERATURE: attrgetter("temperature_c"),
    RuleSource.HUMIDITY: attrgetter("humidity_pct"),
    RuleSource.ILLUMINANCE: attrgetter("illuminance_lux"),
}
"""Maps each rule source to the reading field it reads. Must cover RuleSource."""

if set(SOURCE_FIELDS) != set(RuleSource):
    raise RuntimeError("SOURCE_FIELDS must map every RuleSource member")

DEFAULT_RULES: dict[int, AutomationRule] = {
    0: AutomationRule(
        source=RuleSource.TEMPERATURE,
        operator=RuleOperator.GREATER_THAN,
        threshold=30,
    ),
    1: AutomationRule(
        source=RuleSource.HUMIDITY,
        operator=RuleOperator.GREATER_THAN,
        threshold=70,
    ),
    2: AutomationRule(
        source=RuleSource.ILLUMINANCE,
        operator=RuleOperator.LESS_THAN,
        threshold=100,
    ),
    3: AutomationRule(
        source=RuleSource.TEMPERATURE,
        operator=RuleOperator.LESS_THAN,
        threshold=25,
    ),
}
"""Built-in rule per channel; all disabled until the user enables them."""


def sensor_value(reading: Reading, source: RuleSource) -> float | None:
    """Return the value a rule with *source* reads from *reading*."""
    return SOURCE_FIELDS[source](reading)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class RuleEngine:
    """Per-device rule evaluator with last-commanded-state memory.

    The engine does not hold the rules themselves: callers pass the rule set
    read from the preference store for each evaluation, so edits take effect
    on the next reading.
    """

    def __init__(self) -> None:
        self._last_commanded: dict[int, bool] = {}

    def last_commanded(self, channel: int) -> bool | None:
        """Last state the engine commanded for *channel*, or ``None``."""
        return self._last_commanded.get(channel)

    def plan(
        self,
        reading: Reading,
        rules: Mapping[int, AutomationRule],
    ) -> list[ActuatorIntent]:
        """Evaluate *rules* against *reading* and return the state changes.

        Channels whose rule is disabled, missing, or whose sensor value is
        not numeric on this reading are skipped without touching memory.

        Args:
            reading: The session's new current reading.
            rules: Rule per channel index.

        Returns:
            One intent per channel whose desired state changed, in channel
            order. Memory is updated for each returned intent.
        """
        intents: list[ActuatorIntent] = []
        for channel in range(CHANNEL_COUNT):
            rule = rules.get(channel)
            if rule is None or not rule.enabled:
                continue

            value = sensor_value(reading, rule.source)
            if value is None:
                logger.debug(
                    "Channel %d: %s not numeric on reading id=%s, skipping",
                    channel,
                    rule.source,
                    reading.identity,
                )
                continue

            desired = rule.wants_on(value)
            if self._last_commanded.get(channel) == desired:
                continue

            self._last_commanded[channel] = desired
            intents.append(
                ActuatorIntent(
                    channel=channel,
                    state=desired,
                    reason=f"auto_{rule.source}",
                )
            )
            logger.info(
                "Channel %d: %s=%.2f %s %.2f -> %s",
                channel,
                rule.source,
                value,
                rule.operator,
                rule.threshold,
                "ON" if desired else "OFF",
            )
        return intents

    async def dispatch(self, intent: ActuatorIntent, sink: CommandSink) -> bool:
        """Send *intent* to the command sink.

        A sink failure is logged and reported through the return value; the
        remembered state is left as planned.

        Returns:
            True if the sink accepted the command, False otherwise.
        """
        try:
            await sink.set_relay(intent)
        except CommandError:
            logger.error(
                "Auto relay command failed: channel=%d state=%s reason=%s",
                intent.channel,
                intent.state,
                intent.reason,
                exc_info=True,
            )
            return False
        return True
