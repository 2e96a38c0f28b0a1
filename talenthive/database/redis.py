"""
Lightweight in-memory RedisCache replacement for local development.

Implements the read-through cache interface used by the project and user
controllers so the FastAPI app can run without a real Redis instance.
"""

from __future__ import annotations

import fnmatch
import time
from typing import Any, Dict, Optional, Tuple


class RedisCache:
    def __init__(self, default_ttl: int = 300) -> None:
        # key -> (expires_at, value)
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            self._store.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self._store[key] = (time.monotonic() + (ttl or self._default_ttl), value)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def delete_pattern(self, pattern: str) -> int:
        keys = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
        for k in keys:
            self._store.pop(k, None)
        return len(keys)

    def ping(self) -> bool:
        """
        Health check calls this; always True so the API reports the cache
        as "connected" in local/dev mode.
        """
        return True
