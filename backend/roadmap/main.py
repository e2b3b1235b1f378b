import logging
import sys
from contextlib import asynccontextmanager

from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from roadmap.api import features, oauth
from roadmap.api import roadmap as roadmap_api
from roadmap.api.roadmap import PREFLIGHT_HEADERS, ROADMAP_PATH

# Ensure app loggers (token manager, sheets, etc.) print to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logging.getLogger("roadmap").setLevel(logging.DEBUG)
from roadmap.config import settings
from roadmap.core.errors import RoadmapError
from roadmap.services.cache import close_redis
from roadmap.services.http_client import close_http_client, init_http_client
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_production_config()
    if not settings.has_google_credentials:
        logger.warning("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set; feature and vote writes will fail")
    init_http_client(timeout=settings.http_timeout_seconds)
    yield
    await close_http_client()
    await close_redis()


limiter = Limiter(key_func=get_remote_address, default_limits=[settings.default_rate_limit])

app = FastAPI(
    title="Feature Roadmap API",
    description="Public feature roadmap: feature requests, anonymous votes, Google Sheets storage",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.exception_handler(RoadmapError)
async def roadmap_error_handler(request: Request, exc: RoadmapError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc.__cause__)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("%s %s invalid request: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if getattr(settings, "enable_hsts", False):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class PublicRoadmapCorsMiddleware(BaseHTTPMiddleware):
    """/api/roadmap is readable from any origin, whatever CORS_ORIGINS restricts the rest of the API to."""

    async def dispatch(self, request, call_next):
        if request.url.path.rstrip("/") != ROADMAP_PATH:
            return await call_next(request)
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=PREFLIGHT_HEADERS)
        response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response


def install_cors(target: FastAPI, origins: list[str]) -> None:
    # Public API without cookies: no credentials, so a wildcard answers with a literal "*"
    target.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    # Added last so it runs before CORSMiddleware can reject the preflight
    target.add_middleware(PublicRoadmapCorsMiddleware)


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
install_cors(app, _origins)
app.include_router(features.router, prefix="/api")
app.include_router(roadmap_api.router, prefix="/api")
app.include_router(oauth.router)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
