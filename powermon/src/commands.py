"""
Outbound command sink for relay states and device one-shot commands.

Writes to the same PostgREST endpoint the readings come from:

- set_relay(intent): upsert one row of ``relay_channel`` keyed by
  ``(device_id, channel)``. The device polls this table and drives its relay
  outputs accordingly. ``meta_by`` records who asked (``auto_<source>`` or
  ``web_manual``) and ``meta_ts`` when.
- reset_energy(command): insert a ``reset_kwh`` row into
  ``device_commands`` carrying the lifetime energy and unix time at the
  moment the reset was requested.

Every call is a single attempt. Network errors and non-2xx responses raise
CommandError; retry policy belongs to the caller (the rule engine does not
retry, manual callers see the error).

CHANGELOG:
- 2026-10-19: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from powermon.src.models import ActuatorIntent, ResetCommand
from powermon.src.source import rest_headers

logger = logging.getLogger(__name__)

RELAY_TABLE = "relay_channel"
COMMANDS_TABLE = "device_commands"
RESET_COMMAND_TYPE = "reset_kwh"


class CommandError(Exception):
    """Raised when the command sink rejects or fails to deliver a command."""


class CommandSink(Protocol):
    """Anything able to deliver relay intents and reset commands."""

    async def set_relay(self, intent: ActuatorIntent) -> None: ...

    async def reset_energy(self, command: ResetCommand) -> None: ...


class RestCommandSink:
    """Command sink writing to the ``relay_channel``/``device_commands`` tables.

    Args:
        base_url: Project base URL (``https://...``), without ``/rest/v1``.
        api_key: API key for the ``apikey`` and bearer headers.
        device_id: Device the commands are addressed to.
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).

    Usage::

        sink = RestCommandSink(
            base_url="https://project.example.co",
            api_key="key",
            device_id="ESP32-S3-Monitoring-01",
        )
        await sink.set_relay(ActuatorIntent(channel=0, state=True, reason="web_manual"))
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
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._headers = rest_headers(api_key)
        self._device_id = device_id
        self._timeout_s = timeout_s
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def set_relay(
        self,
        intent: ActuatorIntent,
        *,
        now: datetime | None = None,
    ) -> None:
        """Upsert the desired state of one relay channel.

        Raises:
            CommandError: On network errors or a non-2xx response.
        """
        payload = {
            "device_id": self._device_id,
            "channel": intent.channel,
            "state": intent.state,
            "meta_by": intent.reason,
            "meta_ts": (now or datetime.now(tz=UTC)).isoformat(),
        }
        await self._post(
            RELAY_TABLE,
            payload,
            params={"on_conflict": "device_id,channel"},
            prefer="resolution=merge-duplicates",
        )
        logger.info(
            "Relay command sent: channel=%d state=%s by=%s",
            intent.channel,
            intent.state,
            intent.reason,
        )

    async def reset_energy(self, command: ResetCommand) -> None:
        """Queue a cumulative-energy reset for the device.

        Raises:
            CommandError: On network errors or a non-2xx response.
        """
        payload = {
            "device_id": self._device_id,
            "cmd_type": RESET_COMMAND_TYPE,
            "meter_kwh_ref": command.reference_energy_kwh,
            "meter_ts": command.reference_ts,
        }
        await self._post(COMMANDS_TABLE, payload)
        logger.info(
            "Reset command queued: meter_kwh_ref=%.3f meter_ts=%d",
            command.reference_energy_kwh,
            command.reference_ts,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _post(
        self,
        table: str,
        payload: dict[str, Any],
        *,
        params: dict[str, str] | None = None,
        prefer: str | None = None,
    ) -> None:
        headers = dict(self._headers)
        if prefer is not None:
            headers["Prefer"] = prefer
        try:
            async with httpx.AsyncClient(
                verify=True,
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    f"{self._rest_url}/{table}",
                    json=payload,
                    params=params,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise CommandError(f"{table} write failed (network error): {exc}") from exc

        if not response.is_success:
            raise CommandError(
                f"{table} write failed (HTTP {response.status_code}): "
                f"{response.text[:200]}"
            )
