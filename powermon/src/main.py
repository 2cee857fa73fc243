"""
Power-monitor daemon for one ESP32 monitoring device.

Runs a single DeviceSession for the configured device:

1. **Session**: bulk-loads the recent history, consumes the polling push
   feed, and evaluates the automation rules whenever a new current reading
   arrives.
2. **Health loop**: periodically refreshes the JSON health file with the
   store size and the session's last recoverable error.
3. **Report API** (when API_TOKENS is set): the FastAPI app served by an
   in-process uvicorn server that shares the same session, so there is
   exactly one rule engine per device.

Every loop is resilient: an exception in one iteration is logged and does
not stop the daemon. SIGTERM/SIGINT set a shared asyncio.Event; the API
server is asked to exit and the session is closed before returning.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import uvicorn

from powermon.src.api.app import create_app
from powermon.src.auth.bearer import parse_api_tokens
from powermon.src.health import HealthWriter

if TYPE_CHECKING:
    from powermon.src.config import MonitorSettings
    from powermon.src.session import DeviceSession

logger = logging.getLogger(__name__)

HEALTH_INTERVAL_S = 30.0


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: int = logging.INFO) -> None:
    """Send every log record to stderr as a JSON line."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: MonitorSettings) -> None:
    """Log a config summary at startup without leaking secrets.

    The source API key is logged only as a fingerprint and API tokens only
    as a count.
    """
    logger.info(
        "Power monitor starting with config: "
        "device_id=%s, source_base_url=%s, history_days=%s, "
        "store_capacity=%s, poll_interval_s=%s, request_timeout_s=%s, "
        "prefs_path=%s, health_path=%s, timezone=%s, last_samples=%s, "
        "api=%s:%s, api_tokens=%d, source_api_key_masked=%s",
        settings.device_id,
        settings.source_base_url,
        settings.history_days,
        settings.store_capacity,
        settings.poll_interval_s,
        settings.request_timeout_s,
        settings.prefs_path,
        settings.health_path,
        settings.timezone,
        settings.last_samples,
        settings.api_host,
        settings.api_port,
        len(parse_api_tokens(settings.api_tokens)),
        _masked_token(settings.source_api_key),
    )


# ---------------------------------------------------------------------------
# Health loop
# ---------------------------------------------------------------------------


def _health_once(*, session: DeviceSession, health: HealthWriter) -> None:
    """Refresh the health file from the session state.

    Never raises; a failed write is logged and retried on the next cycle.
    """
    try:
        health.set_store_count(len(session.store))
        health.set_error(session.last_error)
    except OSError:
        logger.warning("Failed to write health file", exc_info=True)


async def _health_loop(
    *,
    session: DeviceSession,
    health: HealthWriter,
    interval_s: float,
    shutdown_event: asyncio.Event,
) -> None:
    """Run _health_once every *interval_s* seconds until shutdown."""
    logger.info("Health loop started (interval=%ss)", interval_s)
    while not shutdown_event.is_set():
        _health_once(session=session, health=health)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_s)
    logger.info("Health loop stopped")


# ---------------------------------------------------------------------------
# Runner with graceful shutdown
# ---------------------------------------------------------------------------


def _build_server(settings: MonitorSettings, session: DeviceSession) -> uvicorn.Server:
    """Wrap the report API for *session* in an uvicorn server."""
    app = create_app(settings, session)
    config = uvicorn.Config(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )
    return uvicorn.Server(config)


async def run_daemon(
    *,
    settings: MonitorSettings,
    session: DeviceSession,
    health: HealthWriter,
    shutdown_event: asyncio.Event,
    health_interval_s: float = HEALTH_INTERVAL_S,
) -> None:
    """Start *session*, serve the API if configured, and run until shutdown.

    The session is always closed before returning, even when startup fails.
    """
    server: uvicorn.Server | None = None
    server_task: asyncio.Task[None] | None = None
    try:
        await session.start()

        if parse_api_tokens(settings.api_tokens):
            server = _build_server(settings, session)
            server_task = asyncio.create_task(server.serve(), name="report-api")
            # The server may handle the signal itself; follow it down.
            server_task.add_done_callback(lambda _: shutdown_event.set())
        else:
            logger.info("API_TOKENS empty, report API disabled")

        await _health_loop(
            session=session,
            health=health,
            interval_s=health_interval_s,
            shutdown_event=shutdown_event,
        )
    finally:
        if server is not None and server_task is not None:
            server.should_exit = True
            with contextlib.suppress(asyncio.CancelledError):
                await server_task
        await session.close()
        logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build the session, run until shutdown.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from powermon.src.config import MonitorSettings
    from powermon.src.prefs import PreferenceStore
    from powermon.src.session import DeviceSession

    settings = MonitorSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    health = HealthWriter(settings.health_path)

    async with PreferenceStore(settings.prefs_path, settings.device_id) as prefs:
        session = DeviceSession.from_settings(settings, prefs, health)
        await run_daemon(
            settings=settings,
            session=session,
            health=health,
            shutdown_event=shutdown_event,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the monitor daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
