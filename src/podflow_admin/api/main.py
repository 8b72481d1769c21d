"""FastAPI application entry point."""

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..audit.middleware import AuditMiddleware
from ..audit.service import get_audit_service
from .config import get_settings
from .middleware import MetricsMiddleware, RateLimitMiddleware, RequestLoggingMiddleware
from .routes import (
    api_keys,
    audit,
    auth,
    backups,
    billing,
    health,
    org_settings,
    preferences,
    security,
    webhooks,
    workflow,
)

logger = logging.getLogger(__name__)


def init_sentry() -> None:
    """Initialize Sentry error tracking."""
    settings = get_settings()
    sentry_dsn = os.getenv("SENTRY_DSN")

    if sentry_dsn and settings.is_production:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=settings.environment,
            release=settings.app_version,
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=0.1,
        )
        logger.info("Sentry initialized")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    init_sentry()

    from .deps import init_db, init_redis

    await init_db()
    await init_redis()

    audit_service = get_audit_service()
    audit_service.start()

    logger.info("Application started successfully")
    yield

    # Drain the audit buffer while the database is still reachable
    await audit_service.stop()

    from .deps import close_db, close_redis

    await close_db()
    await close_redis()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Administration API for organization settings, API keys, "
        "webhooks, backups and the audit trail",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # Add middleware (order matters - last added is outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag"],
    )

    app.add_middleware(RateLimitMiddleware)
    # Outside the rate limiter so rejected requests are audited too
    app.add_middleware(AuditMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: object, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception")

        # Report to Sentry in production
        if settings.is_production:
            import sentry_sdk

            sentry_sdk.capture_exception(exc)

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    # Prometheus metrics endpoint
    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_latest(REGISTRY),
            media_type=CONTENT_TYPE_LATEST,
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    app.include_router(
        api_keys.router, prefix="/api/settings/security/api-keys", tags=["API Keys"]
    )
    app.include_router(security.router, prefix="/api/settings/security", tags=["Security"])
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["Webhooks"])
    app.include_router(org_settings.router, prefix="/api", tags=["Organization Settings"])
    app.include_router(backups.router, prefix="/api", tags=["Backups"])
    app.include_router(
        workflow.router,
        prefix="/api/organization/workflow-automation",
        tags=["Workflow Automation"],
    )
    app.include_router(billing.router, prefix="/api/billing", tags=["Billing"])
    app.include_router(preferences.router, prefix="/api/user", tags=["Preferences"])
    app.include_router(audit.router, prefix="/api/audit", tags=["Audit"])

    return app


# Create the app instance
app = create_app()
