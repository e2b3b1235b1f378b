"""Pydantic schemas for features, votes and the roadmap API (camelCase on the wire)."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Feature(CamelModel):
    """Feature request row. New submissions start in needs-feedback; a curator moves them on."""

    uuid: str
    title: str
    description: str
    timestamp: int | None = None  # epoch seconds
    is_complete: bool = False
    needs_feedback: bool = True
    in_progress: bool = False
    target_release: str | None = None


class Vote(CamelModel):
    identity_hash: str
    feature_uuid: str
    timestamp: int
    comment: str = ""


class Roadmap(BaseModel):
    features: list[Feature] = Field(default_factory=list)
    votes: list[Vote] = Field(default_factory=list)


class FeatureSubmitBody(BaseModel):
    """Body for POST /api/feature. Fields are optional here so missing ones map to 400, not 422."""

    title: str | None = None
    description: str | None = None
    comment: str | None = None
    timestamp: int | None = None


class VoteBody(BaseModel):
    comment: str | None = None


class FeatureSubmitResponse(BaseModel):
    message: str
    feature: Feature


class VoteResponse(BaseModel):
    vote: Vote


FeatureStatus = Literal["inProgress", "isComplete", "needsFeedback"]
