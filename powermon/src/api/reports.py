"""
Read-only report endpoints under /v1.

Every report is computed on demand from the session's current store
snapshot. Reports that need data the session does not have answer 404
``"No data"``; this is distinct from a zero-valued report (a projection
without readings is a valid all-zero report).

Routes:
- GET /v1/realtime: the current reading.
- GET /v1/history?hours=: live chart series (persisted range by default).
- GET /v1/weekly: rolling seven-day report.
- GET /v1/months: selectable months and the selected one.
- GET /v1/monthly?month=YYYY-MM: week-of-month report.
- GET /v1/power-profile: max/avg power over the last samples.
- GET /v1/projection: month-end projection and budget use.
- GET /v1/cost-breakdown: today's tariff components.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)

TODO:
- None
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query

from powermon.src.aggregation import MonthlyReport, PowerProfile, WeeklyReport
from powermon.src.api.deps import Client, Session
from powermon.src.projection import CostBreakdown, ProjectionReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["reports"])

MONTH_PATTERN = r"^\d{4}-\d{2}$"


def _no_data() -> HTTPException:
    return HTTPException(status_code=404, detail="No data")


@router.get("/realtime")
async def realtime(session: Session, client: Client) -> dict[str, Any]:
    """Return the session's current reading.

    Raises:
        HTTPException: 404 if the session holds no reading yet.
    """
    latest = session.latest
    if latest is None:
        raise _no_data()
    return latest.model_dump(mode="json")


@router.get("/history")
async def history(
    session: Session,
    client: Client,
    hours: Annotated[int | None, Query(ge=1, le=6)] = None,
) -> dict[str, Any]:
    """Return power and month-to-date cost points of the last *hours* hours.

    Without *hours*, the persisted live-view range is used.
    """
    if hours is None:
        hours = await session.prefs.load_range_hours()
    points = await session.trend(hours)
    return {
        "hours": hours,
        "points": [p.model_dump(mode="json") for p in points],
    }


@router.get("/weekly")
async def weekly(session: Session, client: Client) -> WeeklyReport:
    report = session.weekly()
    if report is None:
        raise _no_data()
    return report


@router.get("/months")
async def months(session: Session, client: Client) -> dict[str, Any]:
    """List the months present in the store, oldest first."""
    options = session.months()
    selected = await session.selected_month()
    return {
        "months": [m.model_dump() for m in options],
        "selected": selected.key if selected is not None else None,
    }


@router.get("/monthly")
async def monthly(
    session: Session,
    client: Client,
    month: Annotated[str | None, Query(pattern=MONTH_PATTERN)] = None,
) -> MonthlyReport:
    """Return the week-of-month report for *month* or the selected month.

    Raises:
        HTTPException: 404 if the month is unknown or has no readings.
    """
    report = await session.monthly(month)
    if report is None:
        raise _no_data()
    return report


@router.get("/power-profile")
async def power_profile(session: Session, client: Client) -> PowerProfile:
    return session.power_profile()


@router.get("/projection")
async def projection(session: Session, client: Client) -> ProjectionReport:
    return await session.projection()


@router.get("/cost-breakdown")
async def cost_breakdown(session: Session, client: Client) -> CostBreakdown:
    breakdown = session.cost_breakdown()
    if breakdown is None:
        raise _no_data()
    return breakdown
