"""
FastAPI dependency injection providers.

Provides the authenticated client name and the running DeviceSession for
use with FastAPI's Depends() mechanism. Both live on ``app.state``, set up
by the application lifespan.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)
"""

from typing import Annotated

from fastapi import Depends, Request

from powermon.src.session import DeviceSession


async def get_client(request: Request) -> str:
    """Extract the authenticated client name via BearerAuth on app.state.

    This thin wrapper exists so that FastAPI's Depends() mechanism
    can call the BearerAuth.verify method stored on app.state.auth.
    """
    return await request.app.state.auth.verify(request)


def get_session(request: Request) -> DeviceSession:
    """Return the device session owned by the application."""
    return request.app.state.session


# Usage in route handlers:
#   async def my_route(session: Session, client: Client):
#       report = session.weekly()
Client = Annotated[str, Depends(get_client)]
Session = Annotated[DeviceSession, Depends(get_session)]
