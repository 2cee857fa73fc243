"""
FastAPI application factory for the power-monitor report API.

The application serves one DeviceSession. When the daemon (or a test)
already runs a session it passes it in; otherwise the lifespan opens the
preference store, builds the session from MonitorSettings, starts it and
closes it again on shutdown. The BearerAuth built from API_TOKENS is stored
on app.state for route handlers.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)
- 2026-10-19: Build BearerAuth from settings (STORY-017)
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from powermon.src.api.controls import router as controls_router
from powermon.src.api.health import router as health_router
from powermon.src.api.reports import router as reports_router
from powermon.src.auth.bearer import BearerAuth
from powermon.src.config import MonitorSettings
from powermon.src.health import HealthWriter
from powermon.src.prefs import PreferenceStore
from powermon.src.session import DeviceSession

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: auth setup and, if needed, session ownership.

    Raises:
        ValueError: If API_TOKENS holds no valid ``token:client`` entry.
    """
    settings: MonitorSettings = app.state.settings
    app.state.auth = BearerAuth.from_settings(settings)

    if app.state.session is not None:
        logger.info("Report API ready for device=%s", app.state.session.device_id)
        yield
        logger.info("Report API shutting down")
        return

    async with PreferenceStore(settings.prefs_path, settings.device_id) as prefs:
        session = DeviceSession.from_settings(
            settings, prefs, HealthWriter(settings.health_path)
        )
        await session.start()
        app.state.session = session
        logger.info("Report API ready for device=%s", settings.device_id)
        try:
            yield
        finally:
            logger.info("Report API shutting down")
            await session.close()
            app.state.session = None


def create_app(
    settings: MonitorSettings | None = None,
    session: DeviceSession | None = None,
) -> FastAPI:
    """Build the report API.

    Args:
        settings: Configuration; loaded from the environment when omitted.
        session: A session managed by the caller. When omitted the app
            builds, starts and closes its own session.
    """
    app = FastAPI(
        title="Power Monitor API",
        description="Live readings, reports and relay control for one ESP32 power monitor.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings if settings is not None else MonitorSettings()
    app.state.session = session

    app.include_router(health_router)
    app.include_router(reports_router)
    app.include_router(controls_router)
    return app
