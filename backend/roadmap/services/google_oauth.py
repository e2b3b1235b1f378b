"""
Google OAuth client: consent URL, authorization code exchange, access token refresh.
Credentials are passed in by the caller (the token manager) rather than read from settings.
"""
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from roadmap.config import settings
from roadmap.core.errors import AuthenticationError, AuthorizationFlowError, RefreshTokenRejected
from roadmap.services.http_client import get_http_client, log_response_error

logger = logging.getLogger(__name__)


def build_authorization_url(client_id: str, state: str) -> str:
    """Consent URL. access_type=offline + prompt=consent so Google always returns a refresh token."""
    query = urlencode(
        {
            "client_id": client_id,
            "redirect_uri": settings.oauth_redirect_uri,
            "response_type": "code",
            "scope": settings.oauth_scope,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
    )
    return f"{settings.google_auth_url}?{query}"


def _error_description(response: httpx.Response) -> tuple[str, str]:
    """Return (error code, human-readable description) from a token endpoint error body."""
    try:
        body = response.json()
    except ValueError:
        return "", response.reason_phrase or ""
    if not isinstance(body, dict):
        return "", str(body)
    return str(body.get("error") or ""), str(body.get("error_description") or body.get("error") or body)


async def _post_token_endpoint(data: dict[str, str]) -> httpx.Response:
    client = get_http_client()
    try:
        return await client.post(
            settings.google_token_url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.HTTPError as e:
        logger.error("Google token endpoint unreachable (%s): %s", data.get("grant_type"), e)
        raise AuthenticationError("Authorization server unreachable") from e


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise AuthorizationFlowError("Invalid token data received from Google.", status_code=500) from e
    if not isinstance(body, dict):
        raise AuthorizationFlowError("Invalid token data received from Google.", status_code=500)
    return body


async def exchange_code(code: str, client_id: str, client_secret: str) -> dict[str, Any]:
    """Exchange authorization code for tokens. Returns the token endpoint JSON (access_token, expires_in, refresh_token?)."""
    r = await _post_token_endpoint(
        {
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": settings.oauth_redirect_uri,
            "grant_type": "authorization_code",
        }
    )
    if r.status_code >= 400:
        log_response_error("Google token", "POST", settings.google_token_url, r)
        _, description = _error_description(r)
        raise AuthorizationFlowError(
            f"Failed to exchange authorization code for token: {description}",
            status_code=400,
        )
    return _json_body(r)


async def refresh_access_token(refresh_token: str, client_id: str, client_secret: str) -> dict[str, Any]:
    """Refresh access token. invalid_grant means the refresh token is dead and consent must be repeated."""
    r = await _post_token_endpoint(
        {
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "refresh_token",
        }
    )
    if r.status_code >= 400:
        log_response_error("Google token", "POST", settings.google_token_url, r)
        error, description = _error_description(r)
        if error == "invalid_grant":
            raise RefreshTokenRejected()
        raise AuthenticationError(f"Failed to refresh access token: {description}")
    body = _json_body(r)
    if not body.get("access_token"):
        raise AuthenticationError("Refresh response did not contain an access token")
    return body
