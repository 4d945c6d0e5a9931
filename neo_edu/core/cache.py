import json
import logging
from functools import lru_cache
from typing import Any, Callable, Optional, TypeVar

import redis

from neo_edu.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL = 300


class RedisCache:
    """JSON cache, session store and rate limiter on top of one Redis client."""

    def __init__(self, client: redis.Redis, default_ttl: int = DEFAULT_TTL, session_ttl: int = 7 * 24 * 3600):
        self.redis = client
        self.default_ttl = default_ttl
        self.session_ttl = session_ttl

    def get(self, key: str, default: Any = None) -> Any:
        value = self.redis.get(key)
        if value is None:
            return default
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value

    def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        return bool(self.redis.set(key, json.dumps(value, default=str), ex=expire or self.default_ttl))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return self.redis.delete(*keys)

    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Uses SCAN, never KEYS."""
        try:
            keys = list(self.redis.scan_iter(match=pattern, count=500))
            return self.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Cache delete_pattern error for {pattern}: {e}")
            return 0

    def invalidate(self, *keys: str) -> None:
        """Best-effort delete; a stale entry expires on its own TTL."""
        try:
            self.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Cache invalidate error: {e}")

    def get_or_set(self, key: str, fetch: Callable[[], T], ttl: Optional[int] = None) -> T:
        """Cache-aside read. Falls back to ``fetch`` when Redis is unavailable."""
        try:
            raw = self.redis.get(key)
        except redis.RedisError as e:
            logger.error(f"Cache error: {e}")
            return fetch()
        if raw:
            return json.loads(raw)
        value = fetch()
        try:
            self.redis.set(key, json.dumps(value, default=str), ex=ttl or self.default_ttl)
        except redis.RedisError as e:
            logger.error(f"Cache error: {e}")
        return value

    # Session management
    def get_session(self, session_id: str) -> Optional[dict]:
        return self.get(f"session:{session_id}")

    def set_session(self, session_id: str, user_id: str, data: Optional[dict] = None) -> bool:
        payload = {"userId": user_id, **(data or {})}
        return self.set(f"session:{session_id}", payload, expire=self.session_ttl)

    def delete_session(self, session_id: str) -> int:
        return self.delete(f"session:{session_id}")

    # Rate limiting
    def check_rate_limit(self, identifier: str, limit: int, window: int) -> tuple[bool, int]:
        """Fixed window counter. Returns (allowed, remaining)."""
        key = f"rate_limit:{identifier}"
        current = self.redis.incr(key)
        if current == 1:
            self.redis.expire(key, window)
        return current <= limit, max(0, limit - current)


@lru_cache()
def get_redis() -> redis.Redis:
    settings = get_settings()
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def get_cache() -> RedisCache:
    settings = get_settings()
    return RedisCache(get_redis(), default_ttl=settings.CACHE_TTL, session_ttl=settings.SESSION_TTL)


def exam_key(exam_id: Any) -> str:
    return f"exam:{exam_id}"


def public_exams_key(course_id: Any, page: int, limit: int) -> str:
    return f"exams:public:{course_id or 'all'}:{page}:{limit}"


PUBLIC_EXAMS_PATTERN = "exams:public:*"
