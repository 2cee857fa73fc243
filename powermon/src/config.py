"""
Monitor daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded URLs or credentials.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings


class MonitorSettings(BaseSettings):
    """Power-monitor session configuration.

    All values are loaded from environment variables. Required variables
    must be set; optional variables have sensible defaults.

    Attributes:
        device_id: Identifier of the monitored device (one session per device).
        source_base_url: Base URL of the realtime database REST endpoint
            (must be HTTPS).
        source_api_key: API key sent as ``apikey`` and bearer token.
        history_days: Days of history fetched by the initial bulk load.
        store_capacity: Maximum number of readings kept in memory.
        poll_interval_s: Seconds between push-feed polls.
        request_timeout_s: Timeout for every outbound HTTP request.
        prefs_path: SQLite file holding the persisted session preferences.
        health_path: JSON health file path.
        timezone: IANA zone used for calendar day/week/month keys.
        last_samples: Number of samples in the short-horizon power profile.
        api_tokens: ``token:client`` pairs accepted by the report API.
        api_host: Interface the report API binds to.
        api_port: TCP port of the report API.
    """

    device_id: str = "ESP32-S3-Monitoring-01"
    source_base_url: str
    source_api_key: str
    history_days: int = 30
    store_capacity: int = 1000
    poll_interval_s: float = 2.0
    request_timeout_s: float = 10.0
    prefs_path: str = "/data/prefs.db"
    health_path: str = "/data/health.json"
    timezone: str = "UTC"
    last_samples: int = 12
    api_tokens: str = ""
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @field_validator("source_base_url")
    @classmethod
    def source_base_url_must_be_https(cls, v: str) -> str:
        """Reject plain-HTTP source URLs; the API key travels in headers."""
        if not v.lower().startswith("https://"):
            raise ValueError(
                "SOURCE_BASE_URL must use HTTPS (got: "
                f"'{v[:20]}...')."
            )
        return v.rstrip("/")

    @field_validator("device_id")
    @classmethod
    def device_id_must_not_be_blank(cls, v: str) -> str:
        """Validate the device identifier is not blank."""
        if not v.strip():
            raise ValueError("DEVICE_ID must not be blank")
        return v.strip()

    @field_validator("history_days")
    @classmethod
    def history_days_must_be_positive(cls, v: int) -> int:
        """Validate the bulk-load window covers at least one day."""
        if v < 1:
            raise ValueError("HISTORY_DAYS must be >= 1")
        return v

    @field_validator("store_capacity")
    @classmethod
    def store_capacity_must_be_valid(cls, v: int) -> int:
        """Validate store capacity is between 1 and 100000."""
        if v < 1 or v > 100_000:
            raise ValueError("STORE_CAPACITY must be >= 1 and <= 100000")
        return v

    @field_validator("poll_interval_s", "request_timeout_s")
    @classmethod
    def intervals_must_be_positive(cls, v: float) -> float:
        """Validate intervals and timeouts are strictly positive."""
        if v <= 0:
            raise ValueError("POLL_INTERVAL_S and REQUEST_TIMEOUT_S must be > 0")
        return v

    @field_validator("api_port")
    @classmethod
    def api_port_must_be_valid(cls, v: int) -> int:
        """Validate the API port is a usable TCP port."""
        if v < 1 or v > 65535:
            raise ValueError("API_PORT must be between 1 and 65535")
        return v

    @field_validator("last_samples")
    @classmethod
    def last_samples_must_be_positive(cls, v: int) -> int:
        """Validate the power profile keeps at least one sample."""
        if v < 1:
            raise ValueError("LAST_SAMPLES must be >= 1")
        return v

    @field_validator("timezone")
    @classmethod
    def timezone_must_exist(cls, v: str) -> str:
        """Validate the timezone name resolves to an IANA zone."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"TIMEZONE '{v}' is not a known IANA zone") from exc
        return v

    @property
    def tz(self) -> ZoneInfo:
        """Resolved timezone for calendar bucketing."""
        return ZoneInfo(self.timezone)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
