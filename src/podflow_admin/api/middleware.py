"""API middleware for rate limiting, logging, and metrics."""

import logging
import re
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, cast

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .config import get_settings

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")

# Paths that are never rate limited
EXEMPT_PREFIXES = ("/health", "/metrics")


def client_ip(request: Request) -> str:
    """Client address, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def token_subject(request: Request) -> str | None:
    """Subject of a valid bearer token on the request, if any."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    from .routes.auth import verify_token

    try:
        payload = verify_token(auth_header.split(" ", 1)[1], get_settings())
    except HTTPException:
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rate limiting middleware using Redis sliding window.

    Limits requests per user (authenticated) or IP (anonymous).
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        settings = get_settings()

        # Skip rate limiting for health checks and metrics
        if request.url.path.startswith(EXEMPT_PREFIXES):
            return cast(Response, await call_next(request))

        # Identify by token subject, else client IP
        subject = token_subject(request)
        identifier = f"user:{subject}" if subject else f"ip:{client_ip(request)}"

        # Check rate limit
        is_allowed, remaining, reset_at = await self._check_rate_limit(
            identifier,
            settings.rate_limit_requests,
            settings.rate_limit_window,
        )

        if not is_allowed:
            logger.warning(f"Rate limit exceeded for {identifier} on {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Too many requests. Please try again later.",
                    "retry_after": reset_at,
                },
                headers={
                    "X-RateLimit-Limit": str(settings.rate_limit_requests),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_at),
                    "Retry-After": str(max(0, reset_at - int(time.time()))),
                },
            )

        # Process request
        response = cast(Response, await call_next(request))

        # Add rate limit headers
        response.headers["X-RateLimit-Limit"] = str(settings.rate_limit_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_at)

        return response

    async def _check_rate_limit(
        self,
        identifier: str,
        max_requests: int,
        window_seconds: int,
    ) -> tuple[bool, int, int]:
        """
        Check rate limit using Redis sliding window.

        Returns: (is_allowed, remaining_requests, reset_timestamp)
        """
        try:
            from .deps import get_redis

            redis = await get_redis()
            key = f"ratelimit:{identifier}"
            now = time.time()
            window_start = now - window_seconds

            # Redis pipeline for atomic operations
            pipe = redis.pipeline()
            # Drop entries outside the window
            pipe.zremrangebyscore(key, 0, window_start)
            # Count current entries
            pipe.zcard(key)
            # Unique member so requests within the same second are all counted
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            # Set expiry
            pipe.expire(key, window_seconds)

            results = await pipe.execute()
            current_count = results[1]

            remaining = max(0, max_requests - current_count - 1)
            reset_at = int(now) + window_seconds

            return current_count < max_requests, remaining, reset_at

        except Exception as e:
            logger.warning(f"Rate limit check failed: {e}")
            # Allow request on Redis failure
            return True, max_requests, int(time.time()) + window_seconds


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging requests and responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        start_time = time.perf_counter()

        # Log request
        logger.info(
            f"Request: {request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "query": str(request.query_params),
                "client_ip": client_ip(request),
            },
        )

        # Process request
        response = cast(Response, await call_next(request))

        duration = time.perf_counter() - start_time

        # Log response
        logger.info(
            f"Response: {request.method} {request.url.path} "
            f"{response.status_code} ({duration:.3f}s)",
            extra={
                "status_code": response.status_code,
                "duration_ms": round(duration * 1000, 2),
            },
        )

        # Add timing header
        response.headers["X-Response-Time"] = f"{duration:.3f}s"

        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware for Prometheus metrics collection."""

    def __init__(self, app: Any, registry: Any = None) -> None:
        super().__init__(app)
        from prometheus_client import REGISTRY, Counter, Gauge, Histogram

        self.registry = registry or REGISTRY

        # Request counter
        self.request_counter = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
            registry=self.registry,
        )

        # Request duration histogram
        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "path"],
            registry=self.registry,
        )

        # Active requests gauge
        self.active_requests = Gauge(
            "http_requests_active",
            "Active HTTP requests",
            registry=self.registry,
        )

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        # Normalize path so ids do not explode label cardinality
        path = normalize_path(request.url.path)

        self.active_requests.inc()
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            duration = time.perf_counter() - start_time
            self.active_requests.dec()

            # Record metrics
            self.request_counter.labels(
                method=request.method,
                path=path,
                status=status_code,
            ).inc()

            self.request_duration.labels(
                method=request.method,
                path=path,
            ).observe(duration)

        return cast(Response, response)


def normalize_path(path: str) -> str:
    """Collapse ids in a path so metric labels stay low-cardinality."""
    # Replace UUIDs with placeholder
    path = UUID_PATTERN.sub("{id}", path)
    # Replace numeric IDs
    return re.sub(r"/\d+(/|$)", "/{id}\\1", path)
