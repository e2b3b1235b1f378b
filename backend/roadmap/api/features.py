"""Features: submit a feature request, list cached features, vote on a feature."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder

from roadmap.core.identity import client_agent, client_origin
from roadmap.schemas.roadmap import FeatureSubmitBody, FeatureSubmitResponse, VoteBody, VoteResponse
from roadmap.services.cache import get_cache
from roadmap.services.features import list_cached_features, submit_feature
from roadmap.services.votes import record_vote

router = APIRouter(prefix="/feature", tags=["features"])


@router.post(
    "",
    summary="Submit a feature request",
    responses={
        400: {"description": "Missing required fields"},
        429: {"description": "Daily submission limit reached"},
        500: {"description": "Server misconfiguration or backing store failure"},
    },
)
async def post_feature(
    request: Request,
    body: FeatureSubmitBody,
    cache: Annotated[Any, Depends(get_cache)],
) -> dict:
    """Store the feature (needs feedback) and the submitter's own vote for it."""
    feature = await submit_feature(
        body.title,
        body.description,
        body.comment,
        client_origin(request),
        client_agent(request),
        body.timestamp,
        cache=cache,
    )
    response = FeatureSubmitResponse(message="Feature request processed successfully", feature=feature)
    return jsonable_encoder(response, by_alias=True)


@router.get("", summary="List cached features")
async def get_features(cache: Annotated[Any, Depends(get_cache)]) -> list[dict]:
    """Feature list as last cached by the roadmap read; empty until the first read."""
    features = await list_cached_features(cache)
    return [f.model_dump(by_alias=True) for f in features]


@router.post(
    "/{feature_uuid}/vote",
    summary="Vote for a feature",
    responses={409: {"description": "Already voted"}, 500: {"description": "Failed to process vote"}},
)
async def post_vote(
    feature_uuid: str,
    request: Request,
    cache: Annotated[Any, Depends(get_cache)],
    body: VoteBody | None = None,
) -> dict:
    vote = await record_vote(
        feature_uuid,
        client_origin(request),
        client_agent(request),
        body.comment if body else None,
        cache=cache,
    )
    return jsonable_encoder(VoteResponse(vote=vote), by_alias=True)
