"""Feature submission and the cached feature list."""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

from roadmap.config import settings
from roadmap.core.errors import ValidationError
from roadmap.core.identity import identity_hash
from roadmap.core.metrics import FEATURES_SUBMITTED
from roadmap.core.rate_limit import check_and_consume_feature_limit
from roadmap.schemas.roadmap import Feature
from roadmap.services import sheets_client, token_manager
from roadmap.services.cache import cache_call
from roadmap.services.token_manager import AuthorizationCallback
from roadmap.services.votes import build_vote, persist_vote

logger = logging.getLogger(__name__)

FEATURES_KEY = "features"


def new_feature(title: str, description: str, timestamp: int | None = None) -> Feature:
    """Fresh UUID; always starts in needs-feedback regardless of what the caller sent."""
    return Feature(
        uuid=str(uuid.uuid4()),
        title=title,
        description=description,
        timestamp=int(time.time()) if timestamp is None else timestamp,
        is_complete=False,
        needs_feedback=True,
        in_progress=False,
    )


async def list_cached_features(cache: Any) -> list[Feature]:
    raw = await cache_call(cache.get(FEATURES_KEY), "read features")
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except ValueError:
        logger.warning("Cached feature list is not valid JSON; ignoring it")
        return []
    return [Feature.model_validate(item) for item in items if isinstance(item, dict)]


async def cache_features(cache: Any, features: list[Feature], ttl: int | None = None) -> None:
    payload = json.dumps([f.model_dump(by_alias=True) for f in features])
    await cache_call(cache.set(FEATURES_KEY, payload, ex=ttl or settings.features_cache_ttl_seconds), "cache features")


async def _append_to_cached_list(cache: Any, feature: Feature) -> None:
    """Add the new feature to the cached list without touching its TTL; no-op when nothing is cached."""
    raw = await cache_call(cache.get(FEATURES_KEY), "read features")
    if not raw:
        return
    try:
        items = json.loads(raw)
    except ValueError:
        return
    items.append(feature.model_dump(by_alias=True))
    await cache_call(cache.set(FEATURES_KEY, json.dumps(items), keepttl=True), "update features")


async def submit_feature(
    title: str | None,
    description: str | None,
    comment: str | None,
    origin: str,
    agent: str,
    timestamp: int | None = None,
    *,
    cache: Any,
    client_id: str | None = None,
    client_secret: str | None = None,
    on_authorization_required: AuthorizationCallback | None = None,
) -> Feature:
    """
    Persist a new feature request and the submitter's own vote for it.
    Feature is written before the vote; if the vote write fails the feature stays
    (without its originating vote) and the error propagates.
    """
    title = (title or "").strip()
    description = (description or "").strip()
    if not title or not description:
        raise ValidationError("Missing required fields")

    identity = identity_hash(origin, agent)
    await check_and_consume_feature_limit(cache, identity)

    client_id = client_id if client_id is not None else settings.google_client_id
    client_secret = client_secret if client_secret is not None else settings.google_client_secret
    feature = new_feature(title, description, timestamp)
    vote = build_vote(feature.uuid, origin, agent, comment, timestamp=feature.timestamp)

    access_token = await token_manager.acquire_access_token(client_id, client_secret, cache, on_authorization_required)
    await sheets_client.append_feature(feature, access_token)
    FEATURES_SUBMITTED.inc()
    logger.info("Feature %s submitted", feature.uuid)
    await _append_to_cached_list(cache, feature)

    try:
        await persist_vote(vote, cache, client_id, client_secret, on_authorization_required)
    except Exception:
        logger.exception("Feature %s saved but its originating vote was not", feature.uuid)
        raise
    return feature
