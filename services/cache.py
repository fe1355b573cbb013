"""Redis cache with an in-process fallback.

Values are stored as JSON. When ``REDIS_URL`` is empty, or Redis cannot be
reached, the manager keeps working against a local TTL dictionary so that
callers never need to care which backend is active.
"""
import fnmatch
import json
import logging
import time
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class CacheManager:

    def __init__(self, app=None):
        self._client: Optional[redis.Redis] = None
        self._memory: dict = {}
        self.default_ttl = 300
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.default_ttl = app.config.get("CACHE_DEFAULT_TTL", 300)
        self._memory = {}
        self._client = None
        url = app.config.get("REDIS_URL")
        if not url:
            logger.info("REDIS_URL not set, using in-process cache")
            return
        try:
            client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=5)
            client.ping()
            self._client = client
            logger.info("Redis cache connected: %s", url)
        except RedisError as e:
            logger.warning("Redis unavailable (%s), falling back to in-process cache", e)

    @property
    def is_redis(self) -> bool:
        return self._client is not None

    def ping(self) -> bool:
        if self._client is None:
            return True
        try:
            return bool(self._client.ping())
        except RedisError:
            return False

    # ---- memory backend ----
    def _mem_get(self, key):
        hit = self._memory.get(key)
        if not hit:
            return None
        value, expires_at = hit
        if expires_at < time.monotonic():
            self._memory.pop(key, None)
            return None
        return value

    def _mem_set(self, key, value, ttl):
        self._memory[key] = (value, time.monotonic() + ttl)

    # ---- public API ----
    def get(self, key: str) -> Any:
        if self._client is not None:
            try:
                raw = self._client.get(key)
            except RedisError as e:
                logger.warning("Cache get failed for %s: %s", key, e)
                return self._mem_get(key)
            if raw is None:
                return None
            try:
                return json.loads(raw)
            except ValueError:
                return raw
        return self._mem_get(key)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl or self.default_ttl
        if self._client is not None:
            try:
                self._client.setex(key, ttl, json.dumps(value, default=str))
                return True
            except RedisError as e:
                logger.warning("Cache set failed for %s: %s", key, e)
        self._mem_set(key, value, ttl)
        return True

    def delete(self, key: str) -> None:
        self._memory.pop(key, None)
        if self._client is not None:
            try:
                self._client.delete(key)
            except RedisError as e:
                logger.warning("Cache delete failed for %s: %s", key, e)

    def clear_pattern(self, pattern: str) -> int:
        removed = 0
        for key in [k for k in self._memory if fnmatch.fnmatch(k, pattern)]:
            self._memory.pop(key, None)
            removed += 1
        if self._client is not None:
            try:
                keys = list(self._client.scan_iter(match=pattern, count=100))
                if keys:
                    removed += self._client.delete(*keys)
            except RedisError as e:
                logger.warning("Cache clear_pattern failed for %s: %s", pattern, e)
        return removed


def dashboard_key(counselor_id) -> str:
    return f"dashboard:{counselor_id}"


def invalidate_counselor(counselor_id) -> None:
    """Drop cached dashboards that count one counselor's students."""
    from extensions import cache

    cache.delete(dashboard_key("all"))
    cache.clear_pattern(dashboard_key("marketing:*"))
    if counselor_id is not None:
        cache.delete(dashboard_key(counselor_id))
