"""Short-lived Redis cache for per-organization settings documents."""

import json
import logging
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


class SettingsCache:
    """
    JSON cache keyed by settings area and organization.

    Redis errors are logged and treated as a miss, so callers always fall
    back to the database.
    """

    def __init__(self, redis: Any, ttl_seconds: int = 60, prefix: str = "settings"):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, area: str, organization_id: UUID) -> str:
        return f"{self.prefix}:{area}:{organization_id}"

    async def get(self, area: str, organization_id: UUID) -> dict[str, Any] | None:
        """Cached document or None."""
        try:
            raw = await self.redis.get(self._key(area, organization_id))
        except Exception as e:
            logger.warning(f"Settings cache read failed: {e}")
            return None
        if raw is None:
            return None
        try:
            value: dict[str, Any] = json.loads(raw)
        except (TypeError, ValueError):
            return None
        return value

    async def set(self, area: str, organization_id: UUID, value: dict[str, Any]) -> None:
        """Store a document with the cache TTL."""
        try:
            await self.redis.set(
                self._key(area, organization_id),
                json.dumps(value, default=str),
                ex=self.ttl_seconds,
            )
        except Exception as e:
            logger.warning(f"Settings cache write failed: {e}")

    async def invalidate(self, area: str, organization_id: UUID) -> None:
        """Drop a cached document."""
        try:
            await self.redis.delete(self._key(area, organization_id))
        except Exception as e:
            logger.warning(f"Settings cache invalidation failed: {e}")


async def get_settings_cache() -> SettingsCache | None:
    """Cache over the shared Redis client, or None when Redis is not initialized."""
    from ..api.config import get_settings
    from ..api.deps import get_redis

    try:
        redis = await get_redis()
    except RuntimeError:
        return None
    return SettingsCache(redis, ttl_seconds=get_settings().settings_cache_ttl)
