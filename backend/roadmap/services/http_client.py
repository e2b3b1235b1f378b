"""
Shared long-lived httpx.AsyncClient for Google OAuth and Google Sheets.
Initialized in app lifespan to avoid creating a new client per request.
"""
from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared async HTTP client. Must be initialized via init_http_client() first."""
    if _http_client is None:
        raise RuntimeError("HTTP client not initialized; ensure app lifespan has run init_http_client().")
    return _http_client


def init_http_client(timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Create and store the shared client. Tests pass an httpx.MockTransport in place of the network."""
    global _http_client
    if _http_client is not None:
        return _http_client
    _http_client = httpx.AsyncClient(timeout=timeout, transport=transport)
    return _http_client


async def close_http_client() -> None:
    """Close the shared client. Call from app lifespan shutdown."""
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None


def log_response_error(service: str, method: str, url: str, response: httpx.Response) -> None:
    """Log HTTP error without query string (may carry tokens); body truncated."""
    body = (response.text or "")[:500]
    logger.warning(
        "%s %s %s -> %s body=%s",
        service,
        method,
        url.split("?", 1)[0],
        response.status_code,
        body,
    )
