"""Public roadmap: all features and votes, optionally filtered by status."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from roadmap.schemas.roadmap import FeatureStatus
from roadmap.services.cache import get_cache
from roadmap.services.roadmap_reader import list_roadmap

router = APIRouter(prefix="/roadmap", tags=["roadmap"])

# Mounted under /api; CORS for this path is answered by main.PublicRoadmapCorsMiddleware
ROADMAP_PATH = "/api/roadmap"
PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}


@router.get("")
async def get_roadmap(
    cache: Annotated[Any, Depends(get_cache)],
    filter: FeatureStatus | None = None,
) -> dict:
    """Return {features, votes}. No authentication."""
    roadmap = await list_roadmap(cache, filter)
    return roadmap.model_dump(by_alias=True)
