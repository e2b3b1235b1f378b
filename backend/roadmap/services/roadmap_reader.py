"""
Public roadmap read: features cache-first (sheet on miss), votes from the sheet merged with
the Redis mirror so a just-recorded vote shows up before the CSV export catches up.
"""

import logging
from typing import Any

from roadmap.schemas.roadmap import Feature, FeatureStatus, Roadmap
from roadmap.services import sheets_client
from roadmap.services.features import cache_features, list_cached_features
from roadmap.services.queries import dedupe_votes, filter_features
from roadmap.services.votes import list_cached_votes

logger = logging.getLogger(__name__)


async def load_features(cache: Any) -> list[Feature]:
    features = await list_cached_features(cache)
    if features:
        return features
    features = await sheets_client.fetch_features()
    if features:
        await cache_features(cache, features)
    return features


async def list_roadmap(cache: Any, status: FeatureStatus | None = None) -> Roadmap:
    features = await load_features(cache)
    sheet_votes = await sheets_client.fetch_votes()
    cached_votes = await list_cached_votes(cache)
    votes = dedupe_votes(sheet_votes + cached_votes)
    logger.debug("Roadmap: %d features, %d votes (%d mirrored)", len(features), len(votes), len(cached_votes))
    return Roadmap(features=filter_features(features, status), votes=votes)
