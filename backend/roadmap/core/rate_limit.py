"""
Per-identity daily limit on feature submissions.
Uses Redis counters keyed by identity hash and UTC day; votes are not limited here
(one vote per feature per identity already bounds them).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any

from roadmap.config import settings
from roadmap.core.errors import RateLimitError
from roadmap.services.cache import cache_call

logger = logging.getLogger(__name__)

# TTL for daily key: 26 hours so keys expire after the day window
FEATURE_KEY_TTL_SECONDS = 26 * 3600


def _redis_key_feature(identity: str, day: date) -> str:
    return f"rate_limit:feature:{identity}:{day.isoformat()}"


def _seconds_until_utc_midnight() -> int:
    now = datetime.now(timezone.utc)
    next_midnight = now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    return max(1, int((next_midnight - now).total_seconds()))


async def check_and_consume_feature_limit(cache: Any, identity: str) -> None:
    """
    Increment today's submission counter for the identity and raise RateLimitError
    (429 with Retry-After) once it exceeds daily_feature_limit. 0 disables the limit.
    """
    limit = settings.daily_feature_limit
    if limit <= 0:
        return

    key = _redis_key_feature(identity, datetime.now(timezone.utc).date())
    pipe = cache.pipeline()
    pipe.incr(key)
    pipe.ttl(key)
    results = await cache_call(pipe.execute(), "feature rate limit")
    new_count = int(results[0])
    ttl = int(results[1])

    if ttl == -1:
        await cache_call(cache.expire(key, FEATURE_KEY_TTL_SECONDS), "feature rate limit expire")

    if new_count > limit:
        logger.info("Feature submission limit reached for identity %s...", identity[:12])
        raise RateLimitError(headers={"Retry-After": str(_seconds_until_utc_midnight())})
