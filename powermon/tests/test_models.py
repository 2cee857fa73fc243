"""
Unit tests for the reading, rule and command models.

Tests verify:
- Reading maps the device's wire column names onto English attributes.
- Non-numeric, NaN, infinite and boolean values become None.
- Unparsable or missing timestamps become None; naive ones are UTC.
- Readings are immutable and require an id.
- Integer-valued ids are normalised to int; other strings stay opaque.
- RuleSource accepts the legacy "lux" value.
- AutomationRule.wants_on follows the operator.
- ActuatorIntent and SessionConfig reject out-of-range values.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-002)
- 2026-10-19: Cover identity normalisation (STORY-018)

TODO:
- None
"""

import math
from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from powermon.src.models import (
    ActuatorIntent,
    AutomationRule,
    Reading,
    RuleOperator,
    RuleSource,
    SessionConfig,
    parse_identity,
    parse_number,
    parse_timestamp,
)

_WIRE_ROW = {
    "id": 101,
    "device_id": "ESP32-S3-Monitoring-01",
    "ts": "2026-10-19T08:30:00+00:00",
    "daya_aktif_w": 412.5,
    "tegangan_v": "221.4",
    "arus_a": 1.9,
    "energi_harian_kwh": 3.25,
    "total_harian_rp": 4800,
    "total_bulanan_rp": 95000,
    "suhu_c": 29.1,
    "kelembapan_rh": 64,
    "light_level_lux": 350,
    "tarif_harga_per_kwh": 1444.7,
    "wifi_rssi": -61,
}


class TestParseNumber:
    """parse_number accepts numbers and numeric strings only."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(5, 5.0), (2.5, 2.5), ("3.75", 3.75), (" 12 ", 12.0), ("-4", -4.0)],
    )
    def test_numeric_values(self, value: object, expected: float) -> None:
        assert parse_number(value) == expected

    @pytest.mark.parametrize(
        "value",
        [None, "", "N/A", "abc", True, False, math.nan, math.inf, "inf", "nan", [1]],
    )
    def test_non_numeric_values(self, value: object) -> None:
        assert parse_number(value) is None


class TestParseTimestamp:
    """parse_timestamp returns aware datetimes or None."""

    def test_iso_string_with_offset(self) -> None:
        ts = parse_timestamp("2026-10-19T15:30:00+07:00")
        assert ts == datetime(2026, 10, 19, 8, 30, tzinfo=UTC)

    def test_naive_string_is_utc(self) -> None:
        ts = parse_timestamp("2026-10-19T08:30:00")
        assert ts is not None
        assert ts.utcoffset() == timedelta(0)

    def test_datetime_passthrough(self) -> None:
        moment = datetime(2026, 1, 1, tzinfo=timezone(timedelta(hours=7)))
        assert parse_timestamp(moment) is moment

    @pytest.mark.parametrize("value", [None, "", "yesterday", 1700000000, "2026-13-01"])
    def test_unusable_values(self, value: object) -> None:
        assert parse_timestamp(value) is None


class TestParseIdentity:
    """parse_identity folds numeric ids onto int."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (5, 5),
            ("5", 5),
            (" 42 ", 42),
            ("-3", -3),
            (7.0, 7),
            ("row-9", "row-9"),
            (" abc ", "abc"),
        ],
    )
    def test_values(self, value: object, expected: object) -> None:
        assert parse_identity(value) == expected
        assert type(parse_identity(value)) is type(expected)

    def test_fractional_float_left_for_validation(self) -> None:
        assert parse_identity(7.5) == 7.5


class TestReading:
    """Reading parses wire rows leniently."""

    def test_wire_names_mapped(self) -> None:
        reading = Reading.model_validate(_WIRE_ROW)

        assert reading.identity == 101
        assert reading.timestamp == datetime(2026, 10, 19, 8, 30, tzinfo=UTC)
        assert reading.power_w == 412.5
        assert reading.voltage_v == 221.4
        assert reading.energy_daily_kwh == 3.25
        assert reading.cost_daily_rp == 4800.0
        assert reading.cost_monthly_rp == 95000.0
        assert reading.temperature_c == 29.1
        assert reading.humidity_pct == 64.0
        assert reading.illuminance_lux == 350.0
        assert reading.wifi_rssi_dbm == -61.0

    def test_missing_fields_are_none(self) -> None:
        reading = Reading.model_validate({"id": 1})

        assert reading.timestamp is None
        assert reading.power_w is None
        assert reading.temperature_c is None

    def test_garbage_values_become_none(self) -> None:
        reading = Reading.model_validate(
            {"id": 2, "ts": "not-a-date", "daya_aktif_w": "N/A", "suhu_c": "NaN"}
        )

        assert reading.timestamp is None
        assert reading.power_w is None
        assert reading.temperature_c is None

    def test_unknown_columns_ignored(self) -> None:
        reading = Reading.model_validate({"id": 3, "firmware": "1.2.0"})
        assert not hasattr(reading, "firmware")

    def test_populate_by_attribute_name(self) -> None:
        reading = Reading(identity="abc", power_w=10)
        assert reading.identity == "abc"
        assert reading.power_w == 10.0

    def test_numeric_string_id_is_int(self) -> None:
        from_text = Reading.model_validate({"id": "5"})
        from_int = Reading.model_validate({"id": 5})

        assert from_text.identity == 5
        assert isinstance(from_text.identity, int)
        assert from_text.identity == from_int.identity

    def test_id_required(self) -> None:
        with pytest.raises(ValidationError):
            Reading.model_validate({"daya_aktif_w": 10})

    def test_frozen(self) -> None:
        reading = Reading.model_validate(_WIRE_ROW)
        with pytest.raises(ValidationError):
            reading.power_w = 1.0  # type: ignore[misc]


class TestRules:
    """Rule enums and evaluation."""

    def test_legacy_lux_source(self) -> None:
        assert RuleSource("lux") is RuleSource.ILLUMINANCE

    def test_unknown_source_rejected(self) -> None:
        with pytest.raises(ValueError):
            RuleSource("pressure")

    def test_greater_than(self) -> None:
        rule = AutomationRule(
            enabled=True,
            source=RuleSource.TEMPERATURE,
            operator=RuleOperator.GREATER_THAN,
            threshold=30,
        )
        assert rule.wants_on(30.5) is True
        assert rule.wants_on(30) is False

    def test_less_than(self) -> None:
        rule = AutomationRule(
            source=RuleSource.ILLUMINANCE,
            operator=RuleOperator.LESS_THAN,
            threshold=100,
        )
        assert rule.enabled is False
        assert rule.wants_on(99) is True
        assert rule.wants_on(100) is False

    def test_rule_from_json_values(self) -> None:
        rule = AutomationRule.model_validate(
            {"enabled": True, "source": "lux", "operator": "<", "threshold": "50"}
        )
        assert rule.source is RuleSource.ILLUMINANCE
        assert rule.operator is RuleOperator.LESS_THAN
        assert rule.threshold == 50.0


class TestIntentsAndConfig:
    """Range validation of intents and session preferences."""

    @pytest.mark.parametrize("channel", [-1, 4])
    def test_intent_channel_out_of_range(self, channel: int) -> None:
        with pytest.raises(ValidationError):
            ActuatorIntent(channel=channel, state=True, reason="web_manual")

    def test_session_config_defaults(self) -> None:
        config = SessionConfig()
        assert config.range_hours == 1
        assert config.month_key is None
        assert config.budget_target == 0.0
        assert config.rules == {}

    @pytest.mark.parametrize("hours", [0, 7])
    def test_session_config_range_bounds(self, hours: int) -> None:
        with pytest.raises(ValidationError):
            SessionConfig(range_hours=hours)

    def test_session_config_negative_budget(self) -> None:
        with pytest.raises(ValidationError):
            SessionConfig(budget_target=-1)
