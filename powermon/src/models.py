"""
Pydantic models for monitor readings, automation rules and commands.

Defines the Reading model that represents one telemetry row of the ESP32
power/environment monitor, the per-channel AutomationRule, and the intents
sent to the command sink.

Wire rows use the device's column names (``daya_aktif_w``, ``suhu_c``, ...);
the model exposes them under English attribute names via aliases. Every
numeric column is optional: values that are missing, non-numeric, NaN or
infinite become ``None`` instead of raising, and an unparsable ``ts``
becomes a ``None`` timestamp.

CHANGELOG:
- 2026-10-19: Add SessionConfig (STORY-009)
- 2026-10-19: Initial creation (STORY-002)
- 2026-10-19: Normalise integer-valued identities to int (STORY-018)

TODO:
- None
"""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

CHANNEL_COUNT = 4
"""Number of relay channels on the device (indices 0-3)."""


# ---------------------------------------------------------------------------
# Lenient parsing helpers
# ---------------------------------------------------------------------------


def parse_number(value: Any) -> float | None:
    """Convert a wire value into a finite float, or ``None``.

    Numbers and numeric strings are accepted. Booleans, blanks, free text
    (``"N/A"``), NaN and infinities all map to ``None``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def parse_timestamp(value: Any) -> datetime | None:
    """Convert a wire timestamp into an aware datetime, or ``None``.

    Accepts datetimes and ISO 8601 strings. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str) and value.strip():
        try:
            ts = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


_INT_ID = re.compile(r"[+-]?[0-9]+")


def parse_identity(value: Any) -> Any:
    """Normalise a wire row id so that 5, 5.0 and "5" are the same identity.

    Integer-valued floats and (optionally signed) digit strings become
    ``int``. Any other string is kept as a stripped opaque key. Other
    values are returned unchanged for the field validation to judge.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if _INT_ID.fullmatch(text):
            return int(text)
        return text
    return value


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


NUMERIC_FIELDS: tuple[str, ...] = (
    "power_w",
    "current_a",
    "voltage_v",
    "power_factor",
    "apparent_power_va",
    "reactive_power_var",
    "frequency_hz",
    "energy_total_kwh",
    "energy_daily_kwh",
    "energy_monthly_kwh",
    "cost_daily_rp",
    "cost_monthly_rp",
    "tariff_per_kwh_rp",
    "tariff_fixed_charge_rp",
    "tariff_tax_pct",
    "energy_cost_daily_rp",
    "fixed_charge_daily_rp",
    "lighting_tax_daily_rp",
    "service_tax_daily_rp",
    "temperature_c",
    "humidity_pct",
    "illuminance_lux",
    "pressure_hpa",
    "altitude_m",
    "wifi_rssi_dbm",
)


class Reading(BaseModel):
    """A single telemetry row from the monitor.

    Readings are immutable once built. ``identity`` is the origin store's
    row id and is the only deduplication key (numeric ids are normalised to
    ``int`` so ``5`` and ``"5"`` are one identity); ``timestamp`` orders the
    readings but may be ``None`` when the row carried no usable ``ts``.

    Attributes:
        identity: Unique row identifier (wire name ``id``).
        device_id: Device that produced the row.
        timestamp: Measurement instant (wire name ``ts``), or ``None``.
        power_w: Active power in watts.
        current_a: RMS current in amperes.
        voltage_v: RMS voltage in volts.
        power_factor: Power factor (0-1).
        apparent_power_va: Apparent power in volt-amperes.
        reactive_power_var: Reactive power in VAR.
        frequency_hz: Mains frequency in hertz.
        energy_total_kwh: Lifetime cumulative energy.
        energy_daily_kwh: Cumulative energy since local midnight.
        energy_monthly_kwh: Cumulative energy since the start of the month.
        cost_daily_rp: Cumulative cost today, in rupiah.
        cost_monthly_rp: Cumulative cost this month, in rupiah.
        tariff_per_kwh_rp: Energy tariff per kWh.
        tariff_fixed_charge_rp: Monthly fixed charge of the tariff.
        tariff_tax_pct: Tax percentage applied by the tariff.
        energy_cost_daily_rp: Energy component of today's cost.
        fixed_charge_daily_rp: Fixed-charge component of today's cost.
        lighting_tax_daily_rp: Street-lighting tax component (PPJ).
        service_tax_daily_rp: Regional service tax component (PBJT).
        temperature_c: Ambient temperature.
        humidity_pct: Relative humidity.
        illuminance_lux: Ambient light level.
        pressure_hpa: Barometric pressure.
        altitude_m: Altitude derived from pressure.
        wifi_rssi_dbm: WiFi signal strength.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    identity: int | str = Field(alias="id")
    device_id: str | None = None
    timestamp: datetime | None = Field(default=None, alias="ts")

    power_w: float | None = Field(default=None, alias="daya_aktif_w")
    current_a: float | None = Field(default=None, alias="arus_a")
    voltage_v: float | None = Field(default=None, alias="tegangan_v")
    power_factor: float | None = Field(default=None, alias="faktor_daya")
    apparent_power_va: float | None = Field(default=None, alias="daya_semu_va")
    reactive_power_var: float | None = Field(default=None, alias="daya_reaktif_var")
    frequency_hz: float | None = Field(default=None, alias="frekuensi_hz")

    energy_total_kwh: float | None = Field(default=None, alias="energi_total_kwh")
    energy_daily_kwh: float | None = Field(default=None, alias="energi_harian_kwh")
    energy_monthly_kwh: float | None = Field(default=None, alias="energi_bulanan_kwh")

    cost_daily_rp: float | None = Field(default=None, alias="total_harian_rp")
    cost_monthly_rp: float | None = Field(default=None, alias="total_bulanan_rp")
    tariff_per_kwh_rp: float | None = Field(default=None, alias="tarif_harga_per_kwh")
    tariff_fixed_charge_rp: float | None = Field(default=None, alias="tarif_biaya_beban")
    tariff_tax_pct: float | None = Field(default=None, alias="tarif_pajak_persen")
    energy_cost_daily_rp: float | None = Field(
        default=None, alias="biaya_energi_harian_rp"
    )
    fixed_charge_daily_rp: float | None = Field(default=None, alias="beban_harian_rp")
    lighting_tax_daily_rp: float | None = Field(default=None, alias="ppj_harian_rp")
    service_tax_daily_rp: float | None = Field(default=None, alias="pbjt_harian_rp")

    temperature_c: float | None = Field(default=None, alias="suhu_c")
    humidity_pct: float | None = Field(default=None, alias="kelembapan_rh")
    illuminance_lux: float | None = Field(default=None, alias="light_level_lux")
    pressure_hpa: float | None = Field(default=None, alias="tekanan_hpa")
    altitude_m: float | None = Field(default=None, alias="altitude_m")
    wifi_rssi_dbm: float | None = Field(default=None, alias="wifi_rssi")

    @field_validator("identity", mode="before")
    @classmethod
    def _normalise_identity(cls, v: Any) -> Any:
        return parse_identity(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _lenient_timestamp(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator(*NUMERIC_FIELDS, mode="before")
    @classmethod
    def _lenient_number(cls, v: Any) -> float | None:
        return parse_number(v)


# ---------------------------------------------------------------------------
# Automation rules and intents
# ---------------------------------------------------------------------------


class RuleSource(StrEnum):
    """Sensor a rule reads its value from."""

    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    ILLUMINANCE = "illuminance"

    @classmethod
    def _missing_(cls, value: object) -> RuleSource | None:
        # Rules persisted by older dashboards used "lux".
        if value == "lux":
            return cls.ILLUMINANCE
        return None


class RuleOperator(StrEnum):
    """Comparison applied between the sensor value and the threshold."""

    GREATER_THAN = ">"
    LESS_THAN = "<"


class AutomationRule(BaseModel):
    """Threshold rule driving one relay channel.

    Attributes:
        enabled: Whether the rule is evaluated at all.
        source: Sensor the value is read from.
        operator: ``>`` switches on above the threshold, ``<`` below it.
        threshold: Comparison threshold in the sensor's unit.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    source: RuleSource
    operator: RuleOperator
    threshold: float

    def wants_on(self, value: float) -> bool:
        """Return the relay state this rule asks for at *value*."""
        if self.operator is RuleOperator.GREATER_THAN:
            return value > self.threshold
        return value < self.threshold


class ActuatorIntent(BaseModel):
    """Request to drive a relay channel to a given state.

    Attributes:
        channel: Relay channel index (0-3).
        state: Desired relay state (True = on).
        reason: Origin of the request, ``auto_<source>`` or ``web_manual``.
    """

    model_config = ConfigDict(frozen=True)

    channel: int = Field(ge=0, lt=CHANNEL_COUNT)
    state: bool
    reason: str


class ResetCommand(BaseModel):
    """One-shot request to reset the device's cumulative energy counter.

    Attributes:
        reference_energy_kwh: Lifetime energy shown when the reset was asked.
        reference_ts: Unix seconds of the request.
    """

    model_config = ConfigDict(frozen=True)

    reference_energy_kwh: float
    reference_ts: int


# ---------------------------------------------------------------------------
# Session preferences
# ---------------------------------------------------------------------------


class SessionConfig(BaseModel):
    """User preferences of a device session, loaded once at startup.

    Attributes:
        range_hours: Live-view window in hours (1-6).
        month_key: Selected ``YYYY-MM`` month, or ``None`` for the latest.
        budget_target: Monthly cost target; 0 means unset.
        rules: Automation rule per relay channel.
    """

    range_hours: int = Field(default=1, ge=1, le=6)
    month_key: str | None = None
    budget_target: float = Field(default=0.0, ge=0)
    rules: dict[int, AutomationRule] = Field(default_factory=dict)
