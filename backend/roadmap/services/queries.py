"""Roadmap views as pure functions over (features, votes); nothing here is cached."""

from collections import Counter

from roadmap.schemas.roadmap import Feature, FeatureStatus, Vote


def feature_requests(features: list[Feature]) -> list[Feature]:
    """Features still gathering feedback."""
    return [f for f in features if f.needs_feedback]


def roadmap_features(features: list[Feature]) -> list[Feature]:
    """Features accepted onto the roadmap (past the feedback stage)."""
    return [f for f in features if not f.needs_feedback]


def completed_features(features: list[Feature]) -> list[Feature]:
    return [f for f in features if not f.needs_feedback and f.is_complete]


def in_progress_features(features: list[Feature]) -> list[Feature]:
    return [f for f in features if not f.needs_feedback and f.in_progress]


def filter_features(features: list[Feature], status: FeatureStatus | None) -> list[Feature]:
    if status is None:
        return list(features)
    if status == "needsFeedback":
        return feature_requests(features)
    if status == "inProgress":
        return in_progress_features(features)
    return completed_features(features)


def votes_for_feature(votes: list[Vote], feature_uuid: str) -> list[Vote]:
    return [v for v in votes if v.feature_uuid == feature_uuid]


def vote_count(votes: list[Vote], feature_uuid: str) -> int:
    return len(votes_for_feature(votes, feature_uuid))


def most_voted_features(features: list[Feature], votes: list[Vote]) -> list[Feature]:
    """Roadmap features by vote count, highest first; ties keep their original order."""
    counts = Counter(v.feature_uuid for v in votes)
    return sorted(roadmap_features(features), key=lambda f: counts[f.uuid], reverse=True)


def has_voted(votes: list[Vote], feature_uuid: str, identity: str) -> bool:
    return any(v.feature_uuid == feature_uuid and v.identity_hash == identity for v in votes)


def dedupe_votes(votes: list[Vote]) -> list[Vote]:
    """Keep the earliest vote per (identity hash, feature); duplicates come from racing submissions."""
    seen: dict[tuple[str, str], Vote] = {}
    for v in sorted(votes, key=lambda v: v.timestamp):
        seen.setdefault((v.identity_hash, v.feature_uuid), v)
    return list(seen.values())
