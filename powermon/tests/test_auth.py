"""
Tests for Bearer token authentication of the report API.

Validates that API_TOKENS is parsed into token -> client pairs, that
BearerAuth keeps only token digests and compares every one of them in
constant time, that it is built from MonitorSettings (refusing an empty
token list), and that the dependency answers 401 for missing or unknown
tokens and exposes the client on request.state.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)
- 2026-10-19: Cover digest lookup and from_settings (STORY-017)

TODO:
- None
"""

from unittest.mock import patch

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from powermon.src.auth import BearerAuth, parse_api_tokens
from powermon.src.config import MonitorSettings

VALID_TOKENS = "tokenA:dashboard,tokenB:phone"


def _make_test_app(auth: BearerAuth) -> FastAPI:
    """Create a minimal FastAPI app with a protected test endpoint."""
    test_app = FastAPI()

    @test_app.get("/protected")
    async def protected(request: Request, client: str = Depends(auth.verify)) -> dict:
        return {"client": client, "state_client": request.state.client}

    return test_app


def _settings(api_tokens: str) -> MonitorSettings:
    return MonitorSettings(
        source_base_url="https://project.example.co",
        source_api_key="anon-key",
        api_tokens=api_tokens,
    )


# ---------------------------------------------------------------------------
# Tests for parse_api_tokens()
# ---------------------------------------------------------------------------


class TestParseApiTokens:
    """Tests for the API_TOKENS parser."""

    def test_multiple_tokens(self) -> None:
        assert parse_api_tokens(VALID_TOKENS) == {
            "tokenA": "dashboard",
            "tokenB": "phone",
        }

    def test_whitespace_and_blank_entries(self) -> None:
        assert parse_api_tokens(" tok : dashboard , ,") == {"tok": "dashboard"}

    def test_empty_string_returns_empty_dict(self) -> None:
        assert parse_api_tokens("") == {}
        assert parse_api_tokens("   ") == {}

    def test_malformed_entries_skipped_without_leaking(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        result = parse_api_tokens("secret-no-colon,tok:client,:orphan,lonely:")

        assert result == {"tok": "client"}
        assert "position 0" in caplog.text
        assert "secret-no-colon" not in caplog.text

    def test_colon_in_client_kept(self) -> None:
        assert parse_api_tokens("tok:client:extra") == {"tok": "client:extra"}


# ---------------------------------------------------------------------------
# Tests for BearerAuth construction and lookup
# ---------------------------------------------------------------------------


class TestBearerAuthLookup:
    """Digest-based token lookup."""

    def test_lookup_known_and_unknown(self) -> None:
        auth = BearerAuth(parse_api_tokens(VALID_TOKENS))

        assert auth.lookup("tokenB") == "phone"
        assert auth.lookup("tokenC") is None
        assert auth.lookup("") is None

    def test_plain_tokens_not_retained(self) -> None:
        auth = BearerAuth(parse_api_tokens(VALID_TOKENS))

        assert "tokenA" not in repr(vars(auth))
        assert auth.clients == ["dashboard", "phone"]

    def test_every_digest_compared(self) -> None:
        auth = BearerAuth(parse_api_tokens(VALID_TOKENS))

        with patch(
            "powermon.src.auth.bearer.secrets.compare_digest", return_value=True
        ) as compare:
            client = auth.lookup("tokenA")

        assert compare.call_count == 2
        assert client == "dashboard"
        candidate, _ = compare.call_args.args
        assert isinstance(candidate, bytes)
        assert len(candidate) == 32

    def test_from_settings(self) -> None:
        auth = BearerAuth.from_settings(_settings(VALID_TOKENS))

        assert auth.lookup("tokenA") == "dashboard"

    def test_from_settings_without_tokens(self) -> None:
        with pytest.raises(ValueError, match="API_TOKENS"):
            BearerAuth.from_settings(_settings("garbage"))


# ---------------------------------------------------------------------------
# Tests for the BearerAuth dependency
# ---------------------------------------------------------------------------


class TestBearerAuthDependency:
    """HTTP behaviour of the dependency."""

    def test_valid_token_returns_client(self) -> None:
        client = TestClient(_make_test_app(BearerAuth(parse_api_tokens(VALID_TOKENS))))

        response = client.get("/protected", headers={"Authorization": "Bearer tokenA"})

        assert response.status_code == 200
        assert response.json() == {"client": "dashboard", "state_client": "dashboard"}

    def test_missing_header_401(self) -> None:
        client = TestClient(_make_test_app(BearerAuth(parse_api_tokens(VALID_TOKENS))))

        response = client.get("/protected")

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing authorization credentials."
        assert response.headers["www-authenticate"] == "Bearer"

    def test_invalid_token_401(self) -> None:
        client = TestClient(_make_test_app(BearerAuth(parse_api_tokens(VALID_TOKENS))))

        response = client.get("/protected", headers={"Authorization": "Bearer wrong"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token."
