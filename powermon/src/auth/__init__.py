"""
Authentication package.

Exports the BearerAuth dependency and the API_TOKENS parser.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)

TODO:
- None
"""

from powermon.src.auth.bearer import BearerAuth, parse_api_tokens

__all__ = ["BearerAuth", "parse_api_tokens"]
