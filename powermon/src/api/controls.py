"""
Preference and command endpoints under /v1.

Routes:
- PUT /v1/range: persist the live-view range (1-6 hours).
- PUT /v1/month: persist the selected report month.
- PUT /v1/budget: persist the monthly budget target.
- GET /v1/rules: current rule per relay channel.
- PATCH /v1/rules/{channel}: change one channel's rule.
- POST /v1/relays/{channel}: manual relay toggle (bypasses automation).
- POST /v1/commands/reset-energy: queue a cumulative-energy reset.

Invalid input answers 422. A command the sink could not deliver answers
502 so the caller can tell it apart from a rejected request.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-014)
- 2026-10-19: Pass the authenticated client to manual commands (STORY-017)

TODO:
- None
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Path
from pydantic import BaseModel, Field

from powermon.src.api.deps import Client, Session
from powermon.src.commands import CommandError
from powermon.src.models import CHANNEL_COUNT, RuleOperator, RuleSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["controls"])

Channel = Annotated[int, Path(ge=0, lt=CHANNEL_COUNT)]


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------


class RangeIn(BaseModel):
    hours: int = Field(ge=1, le=6)


class MonthIn(BaseModel):
    month: str = Field(pattern=r"^\d{4}-\d{2}$")


class BudgetIn(BaseModel):
    target: float = Field(ge=0, allow_inf_nan=False)


class RulePatch(BaseModel):
    """Partial rule update; omitted fields keep their current value."""

    enabled: bool | None = None
    source: RuleSource | None = None
    operator: RuleOperator | None = None
    threshold: float | None = Field(default=None, allow_inf_nan=False)


class RelayIn(BaseModel):
    state: bool


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


@router.put("/range")
async def set_range(body: RangeIn, session: Session, client: Client) -> dict[str, int]:
    await session.set_range_hours(body.hours)
    return {"hours": body.hours}


@router.put("/month")
async def set_month(body: MonthIn, session: Session, client: Client) -> dict[str, str]:
    """Persist the selected month.

    Raises:
        HTTPException: 422 if the month number is not 1-12.
    """
    try:
        await session.select_month(body.month)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {"month": body.month}


@router.put("/budget")
async def set_budget(
    body: BudgetIn, session: Session, client: Client
) -> dict[str, Any]:
    """Persist the budget target and return the refreshed projection."""
    await session.set_budget(body.target)
    report = await session.projection()
    return {"target": body.target, "projection": report.model_dump(mode="json")}


@router.get("/rules")
async def get_rules(session: Session, client: Client) -> dict[str, Any]:
    rules = await session.rules()
    return {
        "rules": {str(ch): rule.model_dump(mode="json") for ch, rule in rules.items()}
    }


@router.patch("/rules/{channel}")
async def patch_rule(
    channel: Channel,
    body: RulePatch,
    session: Session,
    client: Client,
) -> dict[str, Any]:
    """Apply a partial rule update to one channel.

    Raises:
        HTTPException: 422 if the body is empty or the result is invalid.
    """
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=422, detail="No rule fields given.")
    try:
        rule = await session.update_rule(channel, **changes)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    logger.info("Rule for channel %d changed by %s", channel, client)
    return {"channel": channel, "rule": rule.model_dump(mode="json")}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@router.post("/relays/{channel}")
async def toggle_relay(
    channel: Channel,
    body: RelayIn,
    session: Session,
    client: Client,
) -> dict[str, Any]:
    """Switch a relay channel on or off directly.

    Raises:
        HTTPException: 502 if the command could not be delivered.
    """
    try:
        intent = await session.manual_toggle(channel, body.state, client=client)
    except CommandError as exc:
        logger.error("Manual relay command failed for channel %d", channel, exc_info=True)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return intent.model_dump(mode="json")


@router.post("/commands/reset-energy")
async def reset_energy(session: Session, client: Client) -> dict[str, Any]:
    """Queue a reset of the device's cumulative energy counter.

    Raises:
        HTTPException: 502 if the command could not be delivered.
    """
    try:
        command = await session.reset_energy(client=client)
    except CommandError as exc:
        logger.error("Reset command failed", exc_info=True)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return command.model_dump(mode="json")
