"""Shared async Redis client cache.

Clients are cached per (url, decode_responses, event loop) because an
``redis.asyncio`` connection pool cannot be shared between loops.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import weakref

import redis.asyncio as aioredis
from redis.asyncio import Redis as AsyncRedis

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

_lock = threading.Lock()
_ASYNC_CLIENTS: weakref.WeakKeyDictionary[
    asyncio.AbstractEventLoop, dict[tuple[str, bool], AsyncRedis]
] = weakref.WeakKeyDictionary()


def resolve_redis_url(url: str | None = None) -> str:
    return url or os.environ.get("REACT_AGENT_REDIS_URL") or os.environ.get("REDIS_URL") or DEFAULT_REDIS_URL


def _safe_redis_url(url: str) -> str:
    if "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    if "@" not in rest:
        return url
    creds, host = rest.split("@", 1)
    if ":" in creds:
        return f"{scheme}://***:***@{host}"
    return f"{scheme}://***@{host}"


def get_async_redis_client(url: str | None = None, *, decode_responses: bool = True) -> AsyncRedis:
    """Return the cached client for *url* on the running event loop."""
    resolved = resolve_redis_url(url)
    loop = asyncio.get_running_loop()
    key = (resolved, decode_responses)
    with _lock:
        per_loop = _ASYNC_CLIENTS.setdefault(loop, {})
        client = per_loop.get(key)
        if client is None:
            client = aioredis.from_url(resolved, decode_responses=decode_responses)
            per_loop[key] = client
            logger.debug("Created async Redis client for %s", _safe_redis_url(resolved))
        return client


async def close_async_clients() -> None:
    """Close every client created on the running loop."""
    loop = asyncio.get_running_loop()
    with _lock:
        clients = list(_ASYNC_CLIENTS.pop(loop, {}).values())
    for client in clients:
        await client.aclose()
