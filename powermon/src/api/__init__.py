"""
HTTP report API package.

Exports the application factory used by the daemon and by tests.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)

TODO:
- None
"""

from powermon.src.api.app import create_app

__all__ = ["create_app"]
