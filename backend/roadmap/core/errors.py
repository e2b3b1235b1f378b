"""
Error taxonomy for the roadmap API.
Every error carries the HTTP status it maps to and a message that is safe to show
to a visitor; handlers in roadmap.main turn them into {"error": message} bodies.
"""

from __future__ import annotations


class RoadmapError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, status_code: int | None = None, headers: dict[str, str] | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers
        super().__init__(self.message)


class ValidationError(RoadmapError):
    """Missing or empty required input."""

    status_code = 400
    default_message = "Missing required fields"


class ConfigurationError(RoadmapError):
    """Server secrets (Google client id/secret, spreadsheet id) are not configured."""

    status_code = 500
    default_message = "Server configuration error"


class AuthenticationError(RoadmapError):
    """Access token could not be obtained or refreshed."""

    status_code = 401
    default_message = "Failed to authenticate with Google Sheets API"


class RefreshTokenRejected(AuthenticationError):
    """Google answered invalid_grant: the stored refresh token is revoked or expired."""

    default_message = "Refresh token rejected by Google"


class AuthorizationFlowError(RoadmapError):
    """OAuth callback failed: provider error, missing code, missing or mismatched state."""

    status_code = 400
    default_message = "OAuth authorization failed"


class AuthorizationTimeoutError(RoadmapError):
    """Nobody completed the consent flow while the request was polling for a token."""

    status_code = 504
    default_message = "Authorization required: an administrator must complete the Google consent flow, then retry"


class PersistenceError(RoadmapError):
    status_code = 500
    default_message = "Failed to write to the backing store"


class DuplicateVoteError(RoadmapError):
    status_code = 409
    default_message = "You have already voted for this feature."


class CacheUnavailableError(RoadmapError):
    status_code = 503
    default_message = "Cache unavailable"


class RateLimitError(RoadmapError):
    status_code = 429
    default_message = "Daily feature request limit reached. Please try again tomorrow."
