"""
Redis caching layer for the Membership service.
"""

from typing import Optional

import redis.asyncio as redis
from pydantic import ValidationError
from shared.logging import get_logger
from shared.errors import DependencyError
from shared.metrics import MetricsCollector
from ..membership.models import UserView
from .base import ViewCache, user_info_key


REVOKED_TOKEN_PREFIX = "revoked-token:"


class RedisUserCache(ViewCache):
    """Redis cache of user views and revoked token ids."""

    def __init__(self, redis_url: str, metrics: Optional[MetricsCollector] = None):
        self.redis_url = redis_url
        self.metrics = metrics
        self.logger = get_logger("membership.cache.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Redis cache started")

        except redis.RedisError as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise DependencyError("redis", str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis cache stopped")

    async def get(self, user_id: int) -> Optional[UserView]:
        """Get a cached user view."""
        cache_key = user_info_key(user_id)
        try:
            cached_data = await self.redis.get(cache_key)
        except redis.RedisError as e:
            self.logger.warning("Error reading cached user view", cache_key=cache_key, error=str(e))
            self._record("get", "error")
            return None

        if not cached_data:
            self._record("get", "miss")
            return None

        try:
            view = UserView.model_validate_json(cached_data)
        except ValidationError as e:
            # Unreadable entries are dropped so the next read repopulates them
            self.logger.warning("Discarding malformed cached user view", cache_key=cache_key, error=str(e))
            self._record("get", "error")
            await self.invalidate(user_id)
            return None

        self.logger.debug("Cache hit for user view", cache_key=cache_key)
        self._record("get", "hit")
        return view

    async def put(self, user_id: int, view: UserView, ttl_seconds: int) -> bool:
        """Cache a user view."""
        cache_key = user_info_key(user_id)
        try:
            await self.redis.setex(cache_key, ttl_seconds, view.model_dump_json())
        except redis.RedisError as e:
            self.logger.warning("Error caching user view", cache_key=cache_key, error=str(e))
            self._record("put", "error")
            return False

        self.logger.debug("Cached user view", cache_key=cache_key, ttl=ttl_seconds)
        self._record("put", "ok")
        return True

    async def invalidate(self, user_id: int) -> bool:
        """Delete a cached user view."""
        cache_key = user_info_key(user_id)
        try:
            removed = await self.redis.delete(cache_key)
        except redis.RedisError as e:
            self.logger.warning("Error invalidating user view", cache_key=cache_key, error=str(e))
            self._record("invalidate", "error")
            return False

        self.logger.debug("Invalidated user view", cache_key=cache_key, removed=removed)
        self._record("invalidate", "ok")
        return True

    async def revoke_token(self, jti: str, ttl_seconds: int) -> bool:
        """Remember a revoked token id until the token would have expired."""
        if ttl_seconds <= 0:
            return True
        try:
            await self.redis.setex(f"{REVOKED_TOKEN_PREFIX}{jti}", ttl_seconds, "1")
            return True
        except redis.RedisError as e:
            self.logger.warning("Error revoking token", jti=jti, error=str(e))
            return False

    async def is_token_revoked(self, jti: str) -> bool:
        """Check the revocation list.

        Unlike view reads this does not degrade to a miss: an unreachable
        list raises DependencyError so revoked tokens stay rejected.
        """
        try:
            return bool(await self.redis.exists(f"{REVOKED_TOKEN_PREFIX}{jti}"))
        except redis.RedisError as e:
            self.logger.warning("Error checking token revocation", jti=jti, error=str(e))
            raise DependencyError("redis", "Token revocation list unavailable")

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False

    def _record(self, operation: str, result: str):
        if self.metrics:
            self.metrics.record_cache_request(operation, result)
