"""
Google access token lifecycle for writes to the backing store.

    NO_TOKEN -> HAVE_VALID_ACCESS -> ACCESS_EXPIRED -> HAVE_VALID_REFRESH
             -> REFRESH_EXPIRED -> AWAITING_AUTHORIZATION -> HAVE_VALID_ACCESS | TIMED_OUT

The manager keeps nothing in process: every state lives in the cache handle passed in,
so concurrent requests (and other workers) share tokens through Redis. When no refresh
token is usable a consent URL is published and the request polls the cache until an
administrator completes /oauth/callback or the poll budget runs out.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from roadmap.config import settings
from roadmap.core.errors import (
    AuthenticationError,
    AuthorizationFlowError,
    AuthorizationTimeoutError,
    ConfigurationError,
    RefreshTokenRejected,
)
from roadmap.core.metrics import AUTHORIZATION_REQUESTS, TOKEN_REFRESHES
from roadmap.services import google_oauth, token_cache

logger = logging.getLogger(__name__)

AuthorizationCallback = Callable[[str], Awaitable[None] | None]


class TokenState(str, Enum):
    NO_TOKEN = "no_token"
    HAVE_VALID_ACCESS = "have_valid_access"
    ACCESS_EXPIRED = "access_expired"
    HAVE_VALID_REFRESH = "have_valid_refresh"
    REFRESH_EXPIRED = "refresh_expired"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    TIMED_OUT = "timed_out"


def _transition(state: TokenState) -> TokenState:
    logger.debug("Token manager state: %s", state.value)
    return state


def _require_credentials(client_id: str | None, client_secret: str | None) -> None:
    if not client_id or not client_secret:
        logger.error("GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET is not defined in environment variables.")
        raise ConfigurationError("Server configuration error: API key not found")


def _lifetime_ttl(expires_at: int, now: int) -> int:
    """Remaining lifetime in seconds, floored when the reported expiry is already past."""
    remaining = int(expires_at - now)
    if remaining <= 0:
        return settings.refreshed_token_min_ttl_seconds
    return remaining


async def _refresh(cache: Any, refresh_value: str, client_id: str, client_secret: str) -> str:
    try:
        data = await google_oauth.refresh_access_token(refresh_value, client_id, client_secret)
    except RefreshTokenRejected:
        TOKEN_REFRESHES.labels(outcome="rejected").inc()
        raise
    except Exception:
        TOKEN_REFRESHES.labels(outcome="error").inc()
        raise
    now = int(time.time())
    try:
        expires_in = int(data.get("expires_in") or 0)
    except (TypeError, ValueError) as e:
        TOKEN_REFRESHES.labels(outcome="error").inc()
        logger.error("Non-numeric expires_in in Google's refresh response: %r", data.get("expires_in"))
        raise AuthenticationError("Invalid token data received from Google.") from e
    expires_at = now + expires_in
    ttl = _lifetime_ttl(expires_at, now)
    # Floored TTL: the encoded expiry must follow it or the next read evicts the token
    if expires_at <= now:
        expires_at = now + ttl
    await token_cache.put_access_token(cache, data["access_token"], expires_at, ttl)
    if data.get("refresh_token"):
        await token_cache.put_refresh_token(cache, data["refresh_token"])
    TOKEN_REFRESHES.labels(outcome="ok").inc()
    logger.info("Google access token refreshed (expires in %ss)", expires_in)
    return data["access_token"]


async def request_authorization(cache: Any, client_id: str) -> str:
    """Cache a fresh anti-forgery nonce and return the consent URL bound to it."""
    state = secrets.token_urlsafe(32)
    await token_cache.put_csrf_token(cache, state)
    return google_oauth.build_authorization_url(client_id, state)


async def _notify(url: str, on_authorization_required: AuthorizationCallback | None) -> None:
    logger.warning("Google authorization required; open this URL to grant Sheets access: %s", url)
    if on_authorization_required is None:
        return
    result = on_authorization_required(url)
    if inspect.isawaitable(result):
        await result


async def _poll_for_access_token(cache: Any) -> str | None:
    interval = settings.authorization_poll_interval_seconds
    attempts = settings.authorization_poll_attempts
    deadline = time.monotonic() + interval * attempts
    for attempt in range(1, attempts + 1):
        await asyncio.sleep(interval)
        token = await token_cache.get_access_token(cache)
        if token is not None and not token.is_expired():
            logger.info("Google access token appeared after %d poll(s)", attempt)
            return token.value
        logger.debug(
            "No access token yet (poll %d/%d, %.1fs left)",
            attempt,
            attempts,
            max(0.0, deadline - time.monotonic()),
        )
    return None


async def acquire_access_token(
    client_id: str | None,
    client_secret: str | None,
    cache: Any,
    on_authorization_required: AuthorizationCallback | None = None,
) -> str:
    """
    Return a usable Google access token.
    Cached access token first, then one refresh with the cached refresh token, then a new
    consent flow with a bounded poll for its completion.
    Raises ConfigurationError, AuthenticationError, AuthorizationTimeoutError, CacheUnavailableError.
    """
    _require_credentials(client_id, client_secret)

    access = await token_cache.get_access_token(cache)
    if access is not None:
        if not access.is_expired():
            _transition(TokenState.HAVE_VALID_ACCESS)
            return access.value
        _transition(TokenState.ACCESS_EXPIRED)
        await token_cache.evict_access_token(cache)
    else:
        _transition(TokenState.NO_TOKEN)

    refresh = await token_cache.get_refresh_token(cache)
    if refresh is not None and not refresh.is_expired():
        _transition(TokenState.HAVE_VALID_REFRESH)
        try:
            token = await _refresh(cache, refresh.value, client_id, client_secret)
            _transition(TokenState.HAVE_VALID_ACCESS)
            return token
        except RefreshTokenRejected:
            logger.warning("Stored refresh token was rejected by Google; a new consent is required")
            await token_cache.evict_refresh_token(cache)
    _transition(TokenState.REFRESH_EXPIRED)

    url = await request_authorization(cache, client_id)
    _transition(TokenState.AWAITING_AUTHORIZATION)
    await _notify(url, on_authorization_required)

    token_value = await _poll_for_access_token(cache)
    if token_value is not None:
        AUTHORIZATION_REQUESTS.labels(outcome="completed").inc()
        _transition(TokenState.HAVE_VALID_ACCESS)
        return token_value
    AUTHORIZATION_REQUESTS.labels(outcome="timed_out").inc()
    _transition(TokenState.TIMED_OUT)
    raise AuthorizationTimeoutError()


async def complete_authorization(
    code: str | None,
    state: str | None,
    client_id: str | None,
    client_secret: str | None,
    cache: Any,
) -> None:
    """
    Finish the consent flow started by acquire_access_token.
    The state nonce is checked before the code is exchanged, so a forged callback never
    reaches Google and never writes a token.
    """
    if not code:
        raise AuthorizationFlowError("Authorization code is missing in the request.", status_code=400)
    _require_credentials(client_id, client_secret)

    expected = await token_cache.get_csrf_token(cache)
    if not expected:
        logger.error("CSRF token not found in cache.")
        raise AuthorizationFlowError("CSRF token not found. Please try again.", status_code=400)
    if not state or not secrets.compare_digest(expected, state):
        logger.error("CSRF token mismatch. Possible CSRF attack.")
        raise AuthorizationFlowError("CSRF token mismatch. Please try again.", status_code=403)
    await token_cache.consume_csrf_token(cache)

    data = await google_oauth.exchange_code(code, client_id, client_secret)
    access_token = data.get("access_token")
    expires_in = data.get("expires_in")
    if not access_token or expires_in is None:
        logger.error("Access token or expires_in missing in Google's response (keys: %s)", sorted(data))
        raise AuthorizationFlowError("Invalid token data received from Google.", status_code=500)
    try:
        expires_in = int(expires_in)
    except (TypeError, ValueError) as e:
        raise AuthorizationFlowError("Invalid token data received from Google.", status_code=500) from e

    expires_at = int(time.time()) + expires_in
    await token_cache.put_access_token(cache, access_token, expires_at, expires_in)
    refresh_token = data.get("refresh_token")
    if refresh_token:
        await token_cache.put_refresh_token(cache, refresh_token)
        logger.info("Refresh token stored successfully.")
    logger.info("Google authorization completed; access token cached for %ss", expires_in)
