"""
Vote recording: one vote per (identity hash, feature) checked against the Redis mirror,
then appended to the Votes sheet and mirrored back into Redis.

The duplicate check is check-then-act without a lock. Two identical submissions racing
each other can both pass it and both land in the sheet; readers collapse such pairs.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from roadmap.config import settings
from roadmap.core.errors import DuplicateVoteError, ValidationError
from roadmap.core.identity import identity_hash
from roadmap.core.metrics import VOTES_RECORDED, VOTES_REJECTED
from roadmap.schemas.roadmap import Vote
from roadmap.services import sheets_client, token_manager
from roadmap.services.cache import cache_call, scan_keys
from roadmap.services.token_manager import AuthorizationCallback

logger = logging.getLogger(__name__)

VOTE_KEY_PREFIX = "vote:"


def vote_key(identity: str, feature_uuid: str) -> str:
    return f"{VOTE_KEY_PREFIX}{identity}:{feature_uuid}"


def build_vote(feature_uuid: str, origin: str, agent: str, comment: str | None = None, timestamp: int | None = None) -> Vote:
    return Vote(
        identity_hash=identity_hash(origin, agent),
        feature_uuid=feature_uuid,
        timestamp=int(time.time()) if timestamp is None else timestamp,
        comment=(comment or "").strip(),
    )


async def has_cached_vote(cache: Any, identity: str, feature_uuid: str) -> bool:
    return bool(await cache_call(cache.exists(vote_key(identity, feature_uuid)), "check vote"))


async def mirror_vote(cache: Any, vote: Vote) -> None:
    payload = vote.model_dump_json(by_alias=True)
    await cache_call(
        cache.set(vote_key(vote.identity_hash, vote.feature_uuid), payload, ex=settings.vote_cache_ttl_seconds),
        "mirror vote",
    )


async def list_cached_votes(cache: Any) -> list[Vote]:
    keys = await scan_keys(cache, f"{VOTE_KEY_PREFIX}*")
    if not keys:
        return []
    values = await cache_call(cache.mget(keys), "read votes")
    votes: list[Vote] = []
    for key, raw in zip(keys, values):
        if not raw:
            continue  # expired between scan and mget
        try:
            votes.append(Vote.model_validate(json.loads(raw)))
        except ValueError as e:
            logger.warning("Skipping unreadable cached vote %s: %s", key, e)
    return votes


async def persist_vote(
    vote: Vote,
    cache: Any,
    client_id: str | None = None,
    client_secret: str | None = None,
    on_authorization_required: AuthorizationCallback | None = None,
) -> None:
    """Append to the Votes sheet, then mirror. A vote that failed to reach the sheet is never mirrored."""
    access_token = await token_manager.acquire_access_token(
        client_id if client_id is not None else settings.google_client_id,
        client_secret if client_secret is not None else settings.google_client_secret,
        cache,
        on_authorization_required,
    )
    await sheets_client.append_vote(vote, access_token)
    await mirror_vote(cache, vote)
    VOTES_RECORDED.inc()


async def record_vote(
    feature_uuid: str,
    origin: str,
    agent: str,
    comment: str | None = None,
    *,
    cache: Any,
    client_id: str | None = None,
    client_secret: str | None = None,
    on_authorization_required: AuthorizationCallback | None = None,
) -> Vote:
    """Validate, deduplicate and persist one vote. Raises DuplicateVoteError on a repeat vote."""
    feature_uuid = (feature_uuid or "").strip()
    if not feature_uuid:
        raise ValidationError("Missing feature id")
    vote = build_vote(feature_uuid, origin, agent, comment)
    if await has_cached_vote(cache, vote.identity_hash, feature_uuid):
        VOTES_REJECTED.inc()
        logger.info("Duplicate vote for feature %s rejected", feature_uuid)
        raise DuplicateVoteError()
    await persist_vote(vote, cache, client_id, client_secret, on_authorization_required)
    logger.info("Vote recorded for feature %s", feature_uuid)
    return vote
