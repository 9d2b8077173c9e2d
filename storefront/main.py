"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.api.v1.router import api_router
from storefront.core.config import settings
from storefront.core.database import create_engine, create_session_factory
from storefront.core.errors import ErrorKind, RateLimitedError, StorefrontError
from storefront.core.logging_config import (
    generate_request_id,
    request_id_var,
    setup_logging,
    subject_var,
)
from storefront.core.rate_limit import ClientRateLimiter, limiter
from storefront.schemas.common import ErrorResponse
from storefront.services.discount_service import DiscountEngine
from storefront.services.email_service import EmailService
from storefront.services.record_store import RecordStore
from storefront.services.reminder_service import ReminderScheduler
from storefront.services.review_service import ReviewService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the shared clients on startup and release them on shutdown."""
    setup_logging(debug=settings.debug)
    logger.info("Starting %s v%s", settings.project_name, settings.version)
    logger.info("Environment: %s", settings.environment)

    engine = create_engine(settings.database_url)
    http_client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))

    store = RecordStore(create_session_factory(engine))
    notifier = EmailService(http_client, settings)
    discounts = DiscountEngine(store, settings)

    app.state.record_store = store
    app.state.discount_engine = discounts
    app.state.reminder_scheduler = ReminderScheduler.from_settings(store, notifier, settings)
    app.state.review_service = ReviewService(store, discounts, notifier, settings)
    app.state.cart_rate_limiter = ClientRateLimiter(
        settings.cart_rate_limit_requests,
        settings.cart_rate_limit_window_seconds,
        storage_uri=settings.rate_limit_storage_uri,
    )

    yield

    logger.info("Shutting down...")
    await http_client.aclose()
    await engine.dispose()


def _error_body(message: str, kind: str) -> dict[str, Any]:
    return ErrorResponse(error=message, code=kind).model_dump(exclude_none=True)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    # Sentry/GlitchTip init (before middleware)
    if settings.sentry_dsn:
        import sentry_sdk

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
        )

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next: Any) -> Response:
        rid = request.headers.get("X-Request-ID") or generate_request_id()
        request_id_var.set(rid)
        subject_var.set("")
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response

    # Include API routes
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.exception_handler(StorefrontError)
    async def storefront_error_handler(_request: Request, exc: StorefrontError) -> JSONResponse:
        """Render a domain failure as ``{"error", "code"}`` with its mapped status."""
        log = logger.error if exc.status_code >= 500 else logger.info
        log("%s (%s) subject=%s", exc.message, exc.kind.value, exc.subject)

        headers = None
        if isinstance(exc, RateLimitedError):
            headers = {"X-RateLimit-Reset": str(int(exc.reset_at))}
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, exc.kind.value),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        message = str(errors[0].get("msg", "Invalid request")) if errors else "Invalid request"
        message = message.removeprefix("Value error, ")
        return JSONResponse(
            status_code=400,
            content=_error_body(message, ErrorKind.VALIDATION_ERROR.value),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=exc.headers,
        )

    # Global exception handler to ensure CORS headers are present on 500 errors
    @app.exception_handler(Exception)
    async def global_exception_handler(_request: Request, exc: Exception) -> JSONResponse:
        """Handle unhandled exceptions with proper JSON response."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

    # Redirect /docs to versioned docs URL
    @app.get("/docs", include_in_schema=False)
    async def docs_redirect() -> RedirectResponse:
        return RedirectResponse(url=f"{settings.api_v1_prefix}/docs")

    # Root endpoint
    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "name": settings.project_name,
            "version": settings.version,
            "docs": f"{settings.api_v1_prefix}/docs",
            "health": f"{settings.api_v1_prefix}/health",
        }

    return app


app = create_app()
