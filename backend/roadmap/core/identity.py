"""
Pseudonymous visitor identity for vote deduplication.

The hash is stable per (network origin, user agent) pair, not per person: visitors
behind the same NAT or proxy with the same browser build share one identity and can
only vote once between them.
"""

import hashlib

from fastapi import Request

from roadmap.config import settings

UNKNOWN_ORIGIN = "unknown-ip"
UNKNOWN_AGENT = "unknown-user-agent"


def identity_hash(origin: str, agent: str, namespace: str | None = None) -> str:
    """SHA-256 hex digest of "{namespace}:{origin}:{agent}" (64 chars)."""
    salt = settings.hash_namespace if namespace is None else namespace
    return hashlib.sha256(f"{salt}:{origin}:{agent}".encode("utf-8")).hexdigest()


def client_origin(request: Request) -> str:
    """Cloudflare's CF-Connecting-IP, then the first X-Forwarded-For hop, then the socket peer."""
    ip = request.headers.get("CF-Connecting-IP")
    if ip:
        return ip.strip()
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_ORIGIN


def client_agent(request: Request) -> str:
    return request.headers.get("User-Agent") or UNKNOWN_AGENT
