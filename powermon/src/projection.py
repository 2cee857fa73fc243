"""
Month-end cost projection and budget consumption.

Projects the month's final bill linearly from the month-to-date cost on the
latest reading, and compares both the running and the projected bill with a
user-set monthly budget.

The budget ratio is kept unclamped for over-budget detection; only the
display percentage is clamped to [0, 200] so a progress bar stays bounded.

CHANGELOG:
- 2026-10-19: Add cost_breakdown for today's tariff components (STORY-006)
- 2026-10-19: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import calendar
from datetime import UTC, datetime, tzinfo

from pydantic import BaseModel

from powermon.src.models import Reading

DISPLAY_CLAMP_PCT = 200.0


class BudgetStatus(BaseModel):
    """Consumption of a monthly budget.

    Attributes:
        ratio_pct: ``amount / target * 100``, or ``None`` when no target is set.
        display_pct: ``ratio_pct`` clamped to [0, 200]; 0 without a target.
        over_budget: True when the unclamped ratio exceeds 100.
    """

    ratio_pct: float | None
    display_pct: float
    over_budget: bool


class ProjectionReport(BaseModel):
    """Month-to-date cost, linear month-end projection and budget use."""

    month_to_date_cost_rp: float
    day_of_month: int
    days_in_month: int
    projected_cost_rp: float
    budget_target_rp: float
    budget: BudgetStatus
    projected_budget: BudgetStatus


class CostBreakdown(BaseModel):
    """Today's cost components and tariff, as reported by the device."""

    tariff_per_kwh_rp: float | None
    tariff_fixed_charge_rp: float | None
    tariff_tax_pct: float | None
    energy_cost_rp: float | None
    fixed_charge_rp: float | None
    lighting_tax_rp: float | None
    service_tax_rp: float | None
    total_rp: float | None


def project_month_end(
    cost_to_date: float,
    day_of_month: int,
    days_in_month: int,
) -> float:
    """Extrapolate the month-to-date cost linearly to the end of the month."""
    if day_of_month <= 0:
        return 0.0
    return cost_to_date / day_of_month * days_in_month


def budget_status(amount: float, target: float) -> BudgetStatus:
    """Compare *amount* with a monthly budget *target*."""
    if target <= 0:
        return BudgetStatus(ratio_pct=None, display_pct=0.0, over_budget=False)
    ratio = amount / target * 100
    return BudgetStatus(
        ratio_pct=ratio,
        display_pct=max(0.0, min(ratio, DISPLAY_CLAMP_PCT)),
        over_budget=ratio > 100,
    )


def build_projection(
    latest: Reading | None,
    budget_target: float,
    now: datetime,
    tz: tzinfo = UTC,
) -> ProjectionReport:
    """Build the projection report from the latest reading.

    A missing reading or a non-numeric month-to-date cost counts as 0.

    Args:
        latest: The session's current reading, or ``None``.
        budget_target: Monthly budget; values <= 0 mean "not set".
        now: Reference instant defining the current day and month.
        tz: Timezone defining the calendar.
    """
    local = now.astimezone(tz)
    days_in_month = calendar.monthrange(local.year, local.month)[1]
    cost = 0.0
    if latest is not None and latest.cost_monthly_rp is not None:
        cost = latest.cost_monthly_rp
    projected = project_month_end(cost, local.day, days_in_month)
    return ProjectionReport(
        month_to_date_cost_rp=cost,
        day_of_month=local.day,
        days_in_month=days_in_month,
        projected_cost_rp=projected,
        budget_target_rp=budget_target,
        budget=budget_status(cost, budget_target),
        projected_budget=budget_status(projected, budget_target),
    )


def cost_breakdown(latest: Reading | None) -> CostBreakdown | None:
    """Today's tariff breakdown from the latest reading, or ``None``."""
    if latest is None:
        return None
    return CostBreakdown(
        tariff_per_kwh_rp=latest.tariff_per_kwh_rp,
        tariff_fixed_charge_rp=latest.tariff_fixed_charge_rp,
        tariff_tax_pct=latest.tariff_tax_pct,
        energy_cost_rp=latest.energy_cost_daily_rp,
        fixed_charge_rp=latest.fixed_charge_daily_rp,
        lighting_tax_rp=latest.lighting_tax_daily_rp,
        service_tax_rp=latest.service_tax_daily_rp,
        total_rp=latest.cost_daily_rp,
    )
