"""
Token cache: Google OAuth access/refresh tokens and the anti-forgery nonce, kept in Redis.

Access tokens carry their expiry inside the cached JSON and a matching Redis TTL.
The refresh token has no TTL and survives access-token eviction; its value is
Fernet-encrypted when ENCRYPTION_KEY is set.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Literal

from cryptography.fernet import Fernet, InvalidToken

from roadmap.config import settings
from roadmap.services.cache import cache_call

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "google_access_token"
REFRESH_TOKEN_KEY = "google_refresh_token"
CSRF_KEY = "google_oauth_csrf"
MIN_CSRF_TTL_SECONDS = 60


@dataclass(frozen=True)
class Token:
    value: str
    kind: Literal["access", "refresh"]
    expires_at: int | None = None  # epoch seconds; access tokens only

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (time.time() if now is None else now)


@lru_cache(maxsize=4)
def _fernet(key: str) -> Fernet:
    return Fernet(key.encode())


def _seal(value: str) -> str:
    if not settings.encryption_key:
        return value  # dev: no key, store plaintext
    return _fernet(settings.encryption_key).encrypt(value.encode()).decode()


def _unseal(stored: str) -> str:
    if not settings.encryption_key:
        return stored
    try:
        return _fernet(settings.encryption_key).decrypt(stored.encode()).decode()
    except InvalidToken:
        logger.warning("Token cache: refresh token cannot be decrypted (ENCRYPTION_KEY changed?); ignoring it")
        return ""


def _decode(raw: str | None, kind: str) -> Token | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        # Bare token string written by an older deployment
        return Token(value=raw, kind=kind)
    if not isinstance(data, dict) or not data.get("value"):
        return None
    expires_at = data.get("expires_at")
    return Token(value=data["value"], kind=kind, expires_at=int(expires_at) if expires_at is not None else None)


async def get_access_token(cache: Any) -> Token | None:
    return _decode(await cache_call(cache.get(ACCESS_TOKEN_KEY), "get access token"), "access")


async def put_access_token(cache: Any, value: str, expires_at: int, ttl: int) -> Token:
    token = Token(value=value, kind="access", expires_at=expires_at)
    payload = json.dumps({"value": value, "kind": "access", "expires_at": expires_at})
    await cache_call(cache.set(ACCESS_TOKEN_KEY, payload, ex=max(1, ttl)), "put access token")
    return token


async def evict_access_token(cache: Any) -> None:
    await cache_call(cache.delete(ACCESS_TOKEN_KEY), "evict access token")


async def get_refresh_token(cache: Any) -> Token | None:
    token = _decode(await cache_call(cache.get(REFRESH_TOKEN_KEY), "get refresh token"), "refresh")
    if token is None:
        return None
    value = _unseal(token.value)
    if not value:
        return None
    return Token(value=value, kind="refresh", expires_at=token.expires_at)


async def put_refresh_token(cache: Any, value: str) -> Token:
    """Store the refresh token without TTL, superseding any previous one."""
    payload = json.dumps({"value": _seal(value), "kind": "refresh", "expires_at": None})
    await cache_call(cache.set(REFRESH_TOKEN_KEY, payload), "put refresh token")
    return Token(value=value, kind="refresh")


async def evict_refresh_token(cache: Any) -> None:
    await cache_call(cache.delete(REFRESH_TOKEN_KEY), "evict refresh token")


async def put_csrf_token(cache: Any, state: str, ttl: int | None = None) -> None:
    ttl = max(MIN_CSRF_TTL_SECONDS, ttl if ttl is not None else settings.csrf_ttl_seconds)
    await cache_call(cache.set(CSRF_KEY, state, ex=ttl), "put csrf token")


async def get_csrf_token(cache: Any) -> str | None:
    return await cache_call(cache.get(CSRF_KEY), "get csrf token")


async def consume_csrf_token(cache: Any) -> None:
    await cache_call(cache.delete(CSRF_KEY), "consume csrf token")
