"""Tests for the Google token lifecycle: cache hit, refresh, consent flow with polling, callback."""

import json
import time
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from cryptography.fernet import Fernet

from roadmap.config import settings
from roadmap.core.errors import (
    AuthenticationError,
    AuthorizationFlowError,
    AuthorizationTimeoutError,
    ConfigurationError,
    RefreshTokenRejected,
)
from roadmap.services import token_cache
from roadmap.services.token_manager import acquire_access_token, complete_authorization

CLIENT_ID = "client-id"
CLIENT_SECRET = "client-secret"


def _put_expired_access(cache, value: str = "stale-token") -> None:
    # Redis TTL still running, but the encoded expiry is in the past
    cache.store[token_cache.ACCESS_TOKEN_KEY] = json.dumps(
        {"value": value, "kind": "access", "expires_at": int(time.time()) - 10}
    )


@pytest.mark.asyncio
async def test_cached_access_token_returned_without_authorization_server(fake_cache, valid_token):
    with patch("roadmap.services.google_oauth.refresh_access_token", new_callable=AsyncMock) as refresh, patch(
        "roadmap.services.google_oauth.exchange_code", new_callable=AsyncMock
    ) as exchange:
        token = await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert token == valid_token
    refresh.assert_not_awaited()
    exchange.assert_not_awaited()


@pytest.mark.asyncio
async def test_expired_access_token_refreshed_once_and_cached_with_lifetime_ttl(fake_cache):
    _put_expired_access(fake_cache)
    await token_cache.put_refresh_token(fake_cache, "refresh-1")
    with patch(
        "roadmap.services.google_oauth.refresh_access_token",
        new_callable=AsyncMock,
        return_value={"access_token": "fresh-token", "expires_in": 3599},
    ) as refresh:
        token = await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert token == "fresh-token"
    refresh.assert_awaited_once_with("refresh-1", CLIENT_ID, CLIENT_SECRET)
    assert fake_cache.ttls[token_cache.ACCESS_TOKEN_KEY] == 3599
    cached = await token_cache.get_access_token(fake_cache)
    assert cached.value == "fresh-token"
    assert not cached.is_expired()
    # Refresh token survives access-token eviction
    assert (await token_cache.get_refresh_token(fake_cache)).value == "refresh-1"


@pytest.mark.asyncio
async def test_refresh_with_past_expiry_gets_one_hour_floor(fake_cache):
    await token_cache.put_refresh_token(fake_cache, "refresh-1")
    with patch(
        "roadmap.services.google_oauth.refresh_access_token",
        new_callable=AsyncMock,
        return_value={"access_token": "fresh-token", "expires_in": -30},
    ):
        await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert fake_cache.ttls[token_cache.ACCESS_TOKEN_KEY] == 3600


@pytest.mark.parametrize("response", [{"expires_in": -30}, {}])
@pytest.mark.asyncio
async def test_floored_refresh_token_reused_until_floor_expires(fake_cache, response):
    await token_cache.put_refresh_token(fake_cache, "refresh-1")
    with patch(
        "roadmap.services.google_oauth.refresh_access_token",
        new_callable=AsyncMock,
        return_value={"access_token": "fresh-token", **response},
    ) as refresh:
        first = await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
        second = await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert first == second == "fresh-token"
    assert refresh.await_count == 1
    cached = await token_cache.get_access_token(fake_cache)
    assert not cached.is_expired()
    assert cached.expires_at >= int(time.time()) + 3600 - 5


@pytest.mark.asyncio
async def test_refresh_with_non_numeric_expiry_is_authentication_error(fake_cache):
    await token_cache.put_refresh_token(fake_cache, "refresh-1")
    with patch(
        "roadmap.services.google_oauth.refresh_access_token",
        new_callable=AsyncMock,
        return_value={"access_token": "fresh-token", "expires_in": "soon"},
    ):
        with pytest.raises(AuthenticationError) as exc_info:
            await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert exc_info.value.status_code == 401
    assert await token_cache.get_access_token(fake_cache) is None


@pytest.mark.asyncio
async def test_refresh_supersedes_refresh_token_when_rotated(fake_cache):
    await token_cache.put_refresh_token(fake_cache, "refresh-old")
    with patch(
        "roadmap.services.google_oauth.refresh_access_token",
        new_callable=AsyncMock,
        return_value={"access_token": "t", "expires_in": 3600, "refresh_token": "refresh-new"},
    ):
        await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert (await token_cache.get_refresh_token(fake_cache)).value == "refresh-new"


@pytest.mark.asyncio
async def test_refresh_network_failure_surfaces_without_retry(fake_cache):
    await token_cache.put_refresh_token(fake_cache, "refresh-1")
    with patch(
        "roadmap.services.google_oauth.refresh_access_token",
        new_callable=AsyncMock,
        side_effect=AuthenticationError("Authorization server unreachable"),
    ) as refresh:
        with pytest.raises(AuthenticationError):
            await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert refresh.await_count == 1
    assert await token_cache.get_csrf_token(fake_cache) is None


@pytest.mark.asyncio
async def test_no_token_starts_authorization_and_picks_up_callback_token(fake_cache):
    urls: list[str] = []

    async def admin_completes_consent(url: str) -> None:
        urls.append(url)
        await token_cache.put_access_token(fake_cache, "consented-token", int(time.time()) + 3600, 3600)

    token = await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache, admin_completes_consent)
    assert token == "consented-token"
    assert len(urls) == 1
    query = parse_qs(urlparse(urls[0]).query)
    assert query["client_id"] == [CLIENT_ID]
    assert query["redirect_uri"] == [settings.oauth_redirect_uri]
    assert query["scope"] == [settings.oauth_scope]
    assert query["state"] == [await token_cache.get_csrf_token(fake_cache)]
    assert fake_cache.ttls[token_cache.CSRF_KEY] >= 60


@pytest.mark.asyncio
async def test_authorization_poll_times_out_after_bounded_attempts(fake_cache):
    with patch("roadmap.services.token_manager.asyncio.sleep", new_callable=AsyncMock) as sleep, patch.object(
        settings, "authorization_poll_interval_seconds", 3.0
    ), patch.object(settings, "authorization_poll_attempts", 5):
        with pytest.raises(AuthorizationTimeoutError):
            await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert sleep.await_count == 5
    sleep.assert_awaited_with(3.0)


@pytest.mark.asyncio
async def test_rejected_refresh_token_evicted_and_consent_requested(fake_cache):
    await token_cache.put_refresh_token(fake_cache, "revoked")
    notified = []
    with patch(
        "roadmap.services.google_oauth.refresh_access_token",
        new_callable=AsyncMock,
        side_effect=RefreshTokenRejected(),
    ):
        with pytest.raises(AuthorizationTimeoutError):
            await acquire_access_token(CLIENT_ID, CLIENT_SECRET, fake_cache, notified.append)
    assert await token_cache.get_refresh_token(fake_cache) is None
    assert len(notified) == 1


@pytest.mark.asyncio
async def test_missing_credentials_is_configuration_error(fake_cache):
    with pytest.raises(ConfigurationError):
        await acquire_access_token("", CLIENT_SECRET, fake_cache)


@pytest.mark.asyncio
async def test_complete_authorization_state_mismatch_caches_nothing(fake_cache):
    await token_cache.put_csrf_token(fake_cache, "expected-state")
    with patch("roadmap.services.google_oauth.exchange_code", new_callable=AsyncMock) as exchange:
        with pytest.raises(AuthorizationFlowError) as exc_info:
            await complete_authorization("code", "forged-state", CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert exc_info.value.status_code == 403
    exchange.assert_not_awaited()
    assert await token_cache.get_access_token(fake_cache) is None
    assert await token_cache.get_refresh_token(fake_cache) is None


@pytest.mark.asyncio
async def test_complete_authorization_without_cached_state_fails_closed(fake_cache):
    with patch("roadmap.services.google_oauth.exchange_code", new_callable=AsyncMock) as exchange:
        with pytest.raises(AuthorizationFlowError) as exc_info:
            await complete_authorization("code", "any-state", CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert exc_info.value.status_code == 400
    exchange.assert_not_awaited()
    assert await token_cache.get_access_token(fake_cache) is None


@pytest.mark.asyncio
async def test_complete_authorization_caches_access_and_refresh(fake_cache):
    await token_cache.put_csrf_token(fake_cache, "s1")
    with patch(
        "roadmap.services.google_oauth.exchange_code",
        new_callable=AsyncMock,
        return_value={"access_token": "a1", "expires_in": 3599, "refresh_token": "r1"},
    ) as exchange:
        await complete_authorization("code-1", "s1", CLIENT_ID, CLIENT_SECRET, fake_cache)
    exchange.assert_awaited_once_with("code-1", CLIENT_ID, CLIENT_SECRET)
    assert (await token_cache.get_access_token(fake_cache)).value == "a1"
    assert fake_cache.ttls[token_cache.ACCESS_TOKEN_KEY] == 3599
    assert (await token_cache.get_refresh_token(fake_cache)).value == "r1"
    assert token_cache.REFRESH_TOKEN_KEY not in fake_cache.expires
    # Nonce is single use
    assert await token_cache.get_csrf_token(fake_cache) is None


@pytest.mark.asyncio
async def test_complete_authorization_malformed_response(fake_cache):
    await token_cache.put_csrf_token(fake_cache, "s1")
    with patch(
        "roadmap.services.google_oauth.exchange_code",
        new_callable=AsyncMock,
        return_value={"token_type": "Bearer"},
    ):
        with pytest.raises(AuthorizationFlowError) as exc_info:
            await complete_authorization("code-1", "s1", CLIENT_ID, CLIENT_SECRET, fake_cache)
    assert exc_info.value.status_code == 500
    assert await token_cache.get_access_token(fake_cache) is None


@pytest.mark.asyncio
async def test_refresh_token_encrypted_at_rest(fake_cache):
    key = Fernet.generate_key().decode()
    with patch.object(settings, "encryption_key", key):
        await token_cache.put_refresh_token(fake_cache, "secret-refresh")
        stored = json.loads(fake_cache.store[token_cache.REFRESH_TOKEN_KEY])
        assert stored["value"] != "secret-refresh"
        assert (await token_cache.get_refresh_token(fake_cache)).value == "secret-refresh"
