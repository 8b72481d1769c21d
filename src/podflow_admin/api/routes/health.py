"""Health check endpoints."""

import time
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ..config import APISettings, get_settings
from ..schemas import ComponentHealth, HealthStatus

router = APIRouter()


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


async def check_database() -> ComponentHealth:
    """Check database connectivity."""
    from sqlalchemy import text

    from ..deps import get_session_factory

    start = time.perf_counter()
    try:
        # Round trip through the pool
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        return ComponentHealth(status="healthy", latency_ms=_elapsed_ms(start), message=None)
    except Exception as e:
        return ComponentHealth(status="unhealthy", latency_ms=_elapsed_ms(start), message=str(e))


async def check_redis() -> ComponentHealth:
    """Check Redis connectivity."""
    from ..deps import get_redis

    start = time.perf_counter()
    try:
        redis = await get_redis()
        await redis.ping()
        return ComponentHealth(status="healthy", latency_ms=_elapsed_ms(start), message=None)
    except Exception as e:
        return ComponentHealth(status="unhealthy", latency_ms=_elapsed_ms(start), message=str(e))


def check_audit_pipeline() -> ComponentHealth:
    """Report the audit flush timer and how many entries are waiting."""
    from ...audit.service import get_audit_service

    # Degraded while the flush timer is not running
    audit = get_audit_service()
    pending = len(audit.buffer)
    return ComponentHealth(
        status="healthy" if audit.is_running else "degraded",
        latency_ms=None,
        message=f"{pending} entries buffered",
    )


@router.get("/health", response_model=HealthStatus)
async def health_check(
    settings: Annotated[APISettings, Depends(get_settings)],
) -> HealthStatus:
    """
    Health check endpoint for load balancers and monitoring.

    Returns the status of all system components.
    """
    checks = {
        "database": await check_database(),
        "redis": await check_redis(),
        "audit": check_audit_pipeline(),
    }

    # Determine overall status
    statuses = [c.status for c in checks.values()]
    if all(s == "healthy" for s in statuses):
        overall = "healthy"
    elif checks["database"].status == "unhealthy":
        overall = "unhealthy"
    else:
        overall = "degraded"

    return HealthStatus(
        status=overall,
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness() -> dict[str, str]:
    """
    Kubernetes liveness probe.

    Returns 200 if the application is running.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness() -> JSONResponse:
    """
    Kubernetes readiness probe.

    503 until the database answers. Redis only backs the rate limiter and
    settings cache, so its absence does not block traffic.
    """
    # Only the database is critical
    db_health = await check_database()

    if db_health.status == "unhealthy":
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "reason": "database_unavailable"},
        )

    return JSONResponse(content={"status": "ready"})
