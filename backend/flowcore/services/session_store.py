# /flowcore/services/session_store.py

import copy
import json
import logging
from typing import Any, Dict, Optional, Protocol

import redis.asyncio as redis

from flowcore.config.settings import settings
from flowcore.utils.metrics import session_store_operations

# Key-value stores for chat sessions and usage ledgers. The in-memory store
# suits a single process; the Redis store is shared between instances. Writes
# are last-writer-wins per key.

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemorySessionStore:
    def __init__(self):
        self._data: Dict[str, Any] = {}

    async def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return copy.deepcopy(default)
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


class RedisSessionStore:
    """Stores JSON documents in Redis. Read failures fall back to the default."""

    def __init__(self, redis_url: str, ttl: int = 0):
        self.ttl = ttl
        try:
            self.redis_pool = redis.ConnectionPool.from_url(redis_url, max_connections=20)
            self.redis = redis.Redis(connection_pool=self.redis_pool)
        except Exception as e:
            logger.critical(f"Failed to connect to Redis at {redis_url}: {e}")
            self.redis = None

    async def get(self, key: str, default: Any = None) -> Any:
        if not self.redis:
            return copy.deepcopy(default)
        try:
            raw = await self.redis.get(key)
            session_store_operations.labels(operation="get", status="hit" if raw else "miss").inc()
        except Exception as e:
            session_store_operations.labels(operation="get", status="error").inc()
            logger.warning(f"Session store get failed for key {key}: {e}")
            return copy.deepcopy(default)
        if raw is None:
            return copy.deepcopy(default)
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Session store value for key {key} is not JSON, ignoring it.")
            return copy.deepcopy(default)

    async def set(self, key: str, value: Any) -> None:
        if not self.redis:
            logger.warning(f"Redis is not available, session key {key} was not saved.")
            return
        try:
            payload = json.dumps(value, default=str)
            if self.ttl:
                await self.redis.setex(key, self.ttl, payload)
            else:
                await self.redis.set(key, payload)
            session_store_operations.labels(operation="set", status="success").inc()
        except Exception as e:
            session_store_operations.labels(operation="set", status="error").inc()
            logger.warning(f"Session store set failed for key {key}: {e}")

    async def close(self):
        if self.redis:
            await self.redis.aclose()


def create_session_store(backend: Optional[str] = None) -> SessionStore:
    backend = backend or settings.session_store_backend
    if backend == "redis":
        logger.info("Using Redis session store.")
        return RedisSessionStore(settings.redis_url, settings.session_ttl_seconds)
    return MemorySessionStore()


# Globally accessible instance
session_store = create_session_store()
