"""
Health check endpoint for the report API.

Provides GET /health returning ``{"status": "ok"}`` plus the session's
liveness summary (store size, current reading, last recoverable error).
No authentication is required; this is intended for Docker HEALTHCHECK and
internal monitoring only.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)

TODO:
- None
"""

from fastapi import APIRouter

from powermon.src.api.deps import Session

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(session: Session) -> dict[str, object]:
    """Return the service status and the session summary."""
    return {"status": "ok", **session.status()}
