"""Main FastAPI application for the Skills Studio ambassador API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from skillstudio import __version__
from skillstudio.api.rate_limit import limiter
from skillstudio.api.v1.ambassador import admin_router, debug_router
from skillstudio.api.v1.ambassador import router as ambassador_router
from skillstudio.api.v1.auth import router as auth_router
from skillstudio.api.v1.webhooks import router as webhooks_router
from skillstudio.errors import StudioError
from skillstudio.logging_config import configure_logging, get_logger
from skillstudio.referral.attribution import tag_visit
from skillstudio.settings import settings
from skillstudio.storage.db import db

logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # Prevent clickjacking - don't allow embedding in iframes
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Referrer Policy - don't leak URLs to other sites
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response


class ReferralMarkerMiddleware(BaseHTTPMiddleware):
    """Leave the attribution cookie on any request carrying ``?ref=CODE``.

    The code is not looked up here; unknown codes are inert until the
    visitor signs in.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        code = request.query_params.get("ref")
        if code and tag_visit(response, code):
            logger.debug("referral_marker_set", path=request.url.path)

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    configure_logging()
    logger.info("app_starting", env=settings.env)

    # Initialize database tables
    db.create_tables()

    yield

    # Shutdown
    logger.info("app_shutting_down")


def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI app
    """
    # Hide API docs in production
    is_production = settings.is_production

    app = FastAPI(
        title="Skills Studio API",
        description="Ambassador referral program API",
        version=__version__,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(ReferralMarkerMiddleware)

    # Security Headers middleware (must be added before CORS)
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware - SECURITY: Never allow wildcard in production
    allowed_origins = [
        origin.strip()
        for origin in settings.allowed_origins.split(",")
        if origin.strip()
    ]

    if is_production and "*" in allowed_origins:
        logger.error("cors_wildcard_blocked", message="Wildcard CORS not allowed in production")
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        max_age=3600,
    )

    # Rate limiting (shared instance from rate_limit module)
    app.state.limiter = limiter

    # ==================== ERROR RENDERING ====================

    @app.exception_handler(StudioError)
    async def studio_error_handler(request: Request, exc: StudioError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        return _error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail), "http_error")

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return _error_response(400, message, "validation_error")

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return _error_response(429, "Too many requests. Please try again later.", "rate_limited")

    # Include v1 API routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(ambassador_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")

    if settings.debug_routes_enabled:
        logger.warning("debug_routes_enabled")
        app.include_router(debug_router, prefix="/api/v1")

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "env": settings.env,
        }

    return app


# Create app instance
app = create_app()
