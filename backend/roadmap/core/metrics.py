"""Prometheus counters exposed on /metrics."""

from prometheus_client import Counter

VOTES_RECORDED = Counter("roadmap_votes_recorded_total", "Votes written to the backing store")
VOTES_REJECTED = Counter("roadmap_votes_rejected_total", "Votes rejected as duplicates")
FEATURES_SUBMITTED = Counter("roadmap_features_submitted_total", "Feature requests written to the backing store")
TOKEN_REFRESHES = Counter("roadmap_token_refreshes_total", "Google access token refreshes", ["outcome"])
AUTHORIZATION_REQUESTS = Counter("roadmap_authorization_requests_total", "Google consent flows started", ["outcome"])
