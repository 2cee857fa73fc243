"""
Unit tests for monitor configuration (MonitorSettings).

Tests verify:
- Config loads from environment variables with correct defaults.
- Config validation rejects missing required variables.
- SOURCE_BASE_URL must be HTTPS and loses its trailing slash.
- Numeric constraints are enforced (history, capacity, intervals, port).
- TIMEZONE must be a known IANA zone and resolves through .tz.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from powermon.src.config import MonitorSettings


class TestMonitorSettingsLoadsFromEnv:
    """Config loads all values from environment variables."""

    def test_loads_all_env_vars(self, env_vars_full: dict[str, str]) -> None:
        settings = MonitorSettings()

        assert settings.device_id == "ESP32-test"
        assert settings.source_base_url == "https://project.example.co"
        assert settings.source_api_key == env_vars_full["SOURCE_API_KEY"]
        assert settings.history_days == 14
        assert settings.store_capacity == 500
        assert settings.poll_interval_s == 1.5
        assert settings.request_timeout_s == 5.0
        assert settings.prefs_path == env_vars_full["PREFS_PATH"]
        assert settings.health_path == env_vars_full["HEALTH_PATH"]
        assert settings.timezone == "Asia/Jakarta"
        assert settings.last_samples == 20
        assert settings.api_tokens == "tok-1:dashboard"
        assert settings.api_host == "127.0.0.1"
        assert settings.api_port == 9000

    def test_defaults_applied_when_optional_vars_missing(
        self, env_vars_required_only: dict[str, str]
    ) -> None:
        settings = MonitorSettings()

        assert settings.device_id == "ESP32-S3-Monitoring-01"
        assert settings.history_days == 30
        assert settings.store_capacity == 1000
        assert settings.poll_interval_s == 2.0
        assert settings.request_timeout_s == 10.0
        assert settings.prefs_path == "/data/prefs.db"
        assert settings.health_path == "/data/health.json"
        assert settings.timezone == "UTC"
        assert settings.last_samples == 12
        assert settings.api_tokens == ""
        assert settings.api_port == 8000


class TestMonitorSettingsRequiredVars:
    """Config validation rejects missing required variables."""

    def test_missing_base_url_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOURCE_API_KEY", "key")

        with pytest.raises(ValidationError) as exc_info:
            MonitorSettings()
        assert "source_base_url" in str(exc_info.value).lower()

    def test_missing_api_key_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOURCE_BASE_URL", "https://project.example.co")

        with pytest.raises(ValidationError) as exc_info:
            MonitorSettings()
        assert "source_api_key" in str(exc_info.value).lower()


class TestMonitorSettingsValidation:
    """Field validators reject unusable values."""

    def test_http_base_url_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SOURCE_BASE_URL", "http://project.example.co")

        with pytest.raises(ValidationError, match="HTTPS"):
            MonitorSettings()

    def test_blank_device_id_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DEVICE_ID", "   ")

        with pytest.raises(ValidationError, match="DEVICE_ID"):
            MonitorSettings()

    @pytest.mark.parametrize(
        ("var", "value"),
        [
            ("HISTORY_DAYS", "0"),
            ("STORE_CAPACITY", "0"),
            ("STORE_CAPACITY", "100001"),
            ("POLL_INTERVAL_S", "0"),
            ("REQUEST_TIMEOUT_S", "-1"),
            ("LAST_SAMPLES", "0"),
            ("API_PORT", "70000"),
        ],
    )
    def test_out_of_range_numbers_rejected(
        self,
        env_vars_required_only: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
        var: str,
        value: str,
    ) -> None:
        monkeypatch.setenv(var, value)

        with pytest.raises(ValidationError):
            MonitorSettings()

    def test_unknown_timezone_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TIMEZONE", "Mars/Olympus_Mons")

        with pytest.raises(ValidationError, match="TIMEZONE"):
            MonitorSettings()

    def test_tz_property_resolves_zone(
        self, env_vars_full: dict[str, str]
    ) -> None:
        assert MonitorSettings().tz == ZoneInfo("Asia/Jakarta")
