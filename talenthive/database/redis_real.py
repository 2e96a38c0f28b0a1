"""
Real Redis-backed cache for production when REDIS_URL is set. Implements the
same interface as talenthive.database.redis (in-memory stub).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)


class RedisCache:
    """
    Redis-backed JSON cache. Cache failures are logged and treated as misses;
    the database stays the source of truth.
    """

    def __init__(self, url: str, default_ttl: int = 300, prefix: str = "talenthive:") -> None:
        self._client = redis.from_url(url, decode_responses=True)
        self._default_ttl = default_ttl
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = json.dumps(value, default=str)
        try:
            self._client.setex(self._key(key), ttl or self._default_ttl, payload)
        except redis.RedisError as e:
            logger.warning("Cache set failed for %s: %s", key, e)

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    def delete_pattern(self, pattern: str) -> int:
        deleted = 0
        try:
            for k in self._client.scan_iter(match=self._key(pattern)):
                deleted += int(self._client.delete(k))
        except redis.RedisError as e:
            logger.warning("Cache pattern delete failed for %s: %s", pattern, e)
        return deleted

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False
