"""Run-level stop requests keyed on the request id."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

from react_agent.redis_support import get_async_redis_client

logger = logging.getLogger(__name__)

STOP_KEY_PREFIX = "react_agent:stop:"
DEFAULT_STOP_TTL_S = 300


class StopSignal(Protocol):
    async def request_stop(self, request_id: str) -> None: ...

    async def is_stop_requested(self, request_id: str) -> bool: ...

    async def clear(self, request_id: str) -> None: ...


class RedisStopSignal:
    """Stop flag stored as an expiring Redis key, visible to every process."""

    def __init__(
        self,
        client: Any = None,
        *,
        url: str | None = None,
        prefix: str = STOP_KEY_PREFIX,
        ttl_s: int = DEFAULT_STOP_TTL_S,
    ) -> None:
        self._client = client
        self._url = url
        self._prefix = prefix
        self._ttl_s = ttl_s

    def _redis(self) -> Any:
        if self._client is not None:
            return self._client
        return get_async_redis_client(self._url)

    def key(self, request_id: str) -> str:
        return f"{self._prefix}{request_id}"

    async def request_stop(self, request_id: str) -> None:
        await self._redis().set(self.key(request_id), "1", ex=self._ttl_s)
        logger.info("Stop requested for %s", request_id)

    async def is_stop_requested(self, request_id: str) -> bool:
        return bool(await self._redis().exists(self.key(request_id)))

    async def clear(self, request_id: str) -> None:
        await self._redis().delete(self.key(request_id))


class InMemoryStopSignal:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requested: set[str] = set()

    async def request_stop(self, request_id: str) -> None:
        with self._lock:
            self._requested.add(request_id)
        logger.info("Stop requested for %s", request_id)

    async def is_stop_requested(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._requested

    async def clear(self, request_id: str) -> None:
        with self._lock:
            self._requested.discard(request_id)


async def stop_requested(signal: StopSignal | None, request_id: str) -> bool:
    """Check *signal* for *request_id*; an unreachable backend reads as "not stopped"."""
    if signal is None:
        return False
    try:
        return await signal.is_stop_requested(request_id)
    except Exception:
        logger.warning("Stop signal check failed for %s", request_id, exc_info=True)
        return False
