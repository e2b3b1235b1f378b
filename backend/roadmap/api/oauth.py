"""Google OAuth callback: finishes the consent flow started when no token was usable."""

import html
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from roadmap.config import settings
from roadmap.core.errors import RoadmapError
from roadmap.services.cache import get_cache
from roadmap.services.token_manager import complete_authorization

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/oauth", tags=["oauth"])


def _page(title: str, message: str, status_code: int) -> HTMLResponse:
    page = (
        "<!DOCTYPE html><html><head><meta charset='utf-8'>"
        f"<title>{html.escape(title)}</title></head><body>"
        f"<p>{html.escape(message)}</p>"
        "</body></html>"
    )
    return HTMLResponse(content=page, status_code=status_code)


@router.get("/callback")
async def oauth_callback(
    cache: Annotated[Any, Depends(get_cache)],
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> HTMLResponse:
    """Exchange code for tokens after verifying state; answers in HTML since a browser lands here."""
    if error:
        logger.error("OAuth error received from Google: %s", error)
        return _page("Authorization failed", f"OAuth Error: {error}. Please try again or contact support.", 400)
    try:
        await complete_authorization(
            code,
            state,
            settings.google_client_id,
            settings.google_client_secret,
            cache,
        )
    except RoadmapError as e:
        logger.warning("OAuth callback failed (%s): %s", e.status_code, e.message)
        return _page("Authorization failed", e.message, e.status_code)
    return _page(
        "Authorization complete",
        "Authentication successful! Access token has been stored. You can now close this page.",
        200,
    )
