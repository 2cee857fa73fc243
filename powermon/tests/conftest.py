"""
Shared test fixtures for the power-monitor tests.

Provides environment variable fixtures for MonitorSettings configuration
tests. All monitor env vars are cleaned before each test to ensure
isolation.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import pytest

# All MonitorSettings environment variable names, used for cleanup.
_ALL_MONITOR_ENV_VARS = (
    "DEVICE_ID",
    "SOURCE_BASE_URL",
    "SOURCE_API_KEY",
    "HISTORY_DAYS",
    "STORE_CAPACITY",
    "POLL_INTERVAL_S",
    "REQUEST_TIMEOUT_S",
    "PREFS_PATH",
    "HEALTH_PATH",
    "TIMEZONE",
    "LAST_SAMPLES",
    "API_TOKENS",
    "API_HOST",
    "API_PORT",
)


@pytest.fixture(autouse=True)
def _clean_monitor_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all monitor env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_MONITOR_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for MonitorSettings."""
    env = {
        "DEVICE_ID": "ESP32-test",
        "SOURCE_BASE_URL": "https://project.example.co/",
        "SOURCE_API_KEY": "anon-key-123",
        "HISTORY_DAYS": "14",
        "STORE_CAPACITY": "500",
        "POLL_INTERVAL_S": "1.5",
        "REQUEST_TIMEOUT_S": "5",
        "PREFS_PATH": "/tmp/test-prefs.db",
        "HEALTH_PATH": "/tmp/test-health.json",
        "TIMEZONE": "Asia/Jakarta",
        "LAST_SAMPLES": "20",
        "API_TOKENS": "tok-1:dashboard",
        "API_HOST": "127.0.0.1",
        "API_PORT": "9000",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones)."""
    env = {
        "SOURCE_BASE_URL": "https://project.example.co",
        "SOURCE_API_KEY": "anon-key-xyz",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
