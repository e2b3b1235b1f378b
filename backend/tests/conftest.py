"""Pytest configuration and shared fixtures: in-memory Redis, fake Google Sheets, API client."""

import fnmatch
import os
import time
from unittest.mock import patch

import pytest
import pytest_asyncio
import httpx
from httpx import ASGITransport, AsyncClient

# Set test config before app imports so settings pick it up
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("SPREADSHEET_ID", "test-sheet")
os.environ.setdefault("DEFAULT_RATE_LIMIT", "10000/minute")
os.environ.setdefault("AUTHORIZATION_POLL_INTERVAL_SECONDS", "0")

from roadmap.core.errors import PersistenceError
from roadmap.main import app
from roadmap.schemas.roadmap import Feature, Vote
from roadmap.services import http_client
from roadmap.services.cache import get_cache
from roadmap.services.token_cache import put_access_token


class FakeRedisPipeline:
    """Queues INCR/TTL and runs them on execute(), like a Redis MULTI pipeline."""

    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._ops: list[tuple[str, str]] = []

    def incr(self, key: str):
        self._ops.append(("incr", key))
        return self

    def ttl(self, key: str):
        self._ops.append(("ttl", key))
        return self

    async def execute(self):
        out = []
        for op, key in self._ops:
            out.append(await getattr(self._redis, op)(key))
        self._ops = []
        return out


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (decode_responses=True) covering the calls the app makes."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.expires: dict[str, float] = {}
        self.ttls: dict[str, int] = {}  # last TTL requested per key, for assertions

    def _purge(self, key: str) -> None:
        if key in self.expires and self.expires[key] <= time.time():
            self.store.pop(key, None)
            self.expires.pop(key, None)

    async def get(self, key: str):
        self._purge(key)
        return self.store.get(key)

    async def set(self, key: str, value, ex: int | None = None, keepttl: bool = False):
        self.store[key] = str(value)
        if ex is not None:
            self.expires[key] = time.time() + ex
            self.ttls[key] = ex
        elif not keepttl:
            self.expires.pop(key, None)
            self.ttls.pop(key, None)
        return True

    async def delete(self, *keys: str):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.expires.pop(key, None)
        return removed

    async def exists(self, *keys: str):
        count = 0
        for key in keys:
            self._purge(key)
            count += key in self.store
        return count

    async def mget(self, keys):
        return [await self.get(k) for k in keys]

    async def scan_iter(self, match: str | None = None):
        for key in list(self.store):
            self._purge(key)
            if key in self.store and (match is None or fnmatch.fnmatchcase(key, match)):
                yield key

    async def incr(self, key: str):
        self._purge(key)
        value = int(self.store.get(key, "0")) + 1
        self.store[key] = str(value)
        return value

    async def ttl(self, key: str):
        self._purge(key)
        if key not in self.store:
            return -2
        if key not in self.expires:
            return -1
        return int(self.expires[key] - time.time())

    async def expire(self, key: str, ttl: int):
        if key not in self.store:
            return False
        self.expires[key] = time.time() + ttl
        self.ttls[key] = ttl
        return True

    def pipeline(self):
        return FakeRedisPipeline(self)

    async def aclose(self):
        pass


class FakeSheets:
    """Records appended rows and serves them back, standing in for the Features/Votes tabs."""

    def __init__(self):
        self.features: list[Feature] = []
        self.votes: list[Vote] = []
        self.tokens: list[str] = []
        self.fail_votes = False

    async def append_feature(self, feature: Feature, access_token: str) -> None:
        self.tokens.append(access_token)
        self.features.append(feature)

    async def append_vote(self, vote: Vote, access_token: str) -> None:
        if self.fail_votes:
            raise PersistenceError()
        self.tokens.append(access_token)
        self.votes.append(vote)

    async def fetch_features(self) -> list[Feature]:
        return list(self.features)

    async def fetch_votes(self) -> list[Vote]:
        return list(self.votes)


@pytest.fixture
def fake_cache() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_sheets():
    """Patch the sheets client so services read and write an in-memory spreadsheet."""
    sheets = FakeSheets()
    with patch("roadmap.services.sheets_client.append_feature", sheets.append_feature), patch(
        "roadmap.services.sheets_client.append_vote", sheets.append_vote
    ), patch("roadmap.services.sheets_client.fetch_features", sheets.fetch_features), patch(
        "roadmap.services.sheets_client.fetch_votes", sheets.fetch_votes
    ):
        yield sheets


@pytest_asyncio.fixture
async def valid_token(fake_cache) -> str:
    """Cache an access token valid for an hour so writes skip the OAuth flow."""
    await put_access_token(fake_cache, "cached-access-token", int(time.time()) + 3600, 3600)
    return "cached-access-token"


@pytest_asyncio.fixture
async def mock_transport():
    """Install the shared HTTP client on top of a MockTransport; tests set .handler to answer requests."""

    class Router:
        handler = None

        def __call__(self, request):
            return self.handler(request)

    router = Router()

    await http_client.close_http_client()
    http_client.init_http_client(transport=httpx.MockTransport(router))
    yield router
    await http_client.close_http_client()


@pytest_asyncio.fixture
async def client(fake_cache):
    """AsyncClient over the app with the cache dependency pointed at the in-memory Redis."""
    app.dependency_overrides[get_cache] = lambda: fake_cache
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
