"""Process-wide concurrency caps for action execution.

Every agent run on the same event loop draws from the same named pools, so
the total number of in-flight tool, retrieval and generation calls stays
bounded no matter how many conversations are active. Limits are configurable
via configure() or the REACT_AGENT_POOL_LIMITS environment variable (JSON).

Usage::

    from react_agent.worker_pool import aslot

    async with aslot("actions"):
        result = await run_one_action(...)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)

ACTIONS_POOL = "actions"

_DEFAULT_LIMITS: dict[str, int] = {
    ACTIONS_POOL: 5,
    "default": 5,
}

# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

_lock = threading.Lock()
_async_sems: weakref.WeakKeyDictionary[
    asyncio.AbstractEventLoop, dict[str, asyncio.Semaphore]
] = weakref.WeakKeyDictionary()
_limits: dict[str, int] = dict(_DEFAULT_LIMITS)
_enabled = True


def configure(
    *,
    enabled: bool | None = None,
    limits: dict[str, int] | None = None,
) -> None:
    """Configure the pools.

    Args:
        enabled: Enable/disable pooling globally.
        limits: Override per-pool slot counts.
    """
    global _enabled  # noqa: PLW0603
    if enabled is not None:
        _enabled = enabled
    if limits is not None:
        with _lock:
            _limits.update(limits)
            # Clear cached semaphores so they get recreated with new limits
            _async_sems.clear()


def _load_env_limits() -> None:
    """Load limits from REACT_AGENT_POOL_LIMITS env var (JSON)."""
    raw = os.environ.get("REACT_AGENT_POOL_LIMITS")
    if raw:
        try:
            overrides = json.loads(raw)
            if isinstance(overrides, dict):
                _limits.update({str(k): int(v) for k, v in overrides.items()})
                logger.debug("Loaded pool limits from env: %s", overrides)
        except (json.JSONDecodeError, TypeError, ValueError):
            logger.warning("Invalid REACT_AGENT_POOL_LIMITS env var: %s", raw)


_load_env_limits()


def get_limit(pool: str) -> int:
    return _limits.get(pool, _limits.get("default", 5))


def _get_async_sem(pool: str) -> asyncio.Semaphore:
    loop = asyncio.get_running_loop()
    with _lock:
        per_loop = _async_sems.setdefault(loop, {})
        if pool not in per_loop:
            per_loop[pool] = asyncio.Semaphore(get_limit(pool))
        return per_loop[pool]


@asynccontextmanager
async def aslot(pool: str = ACTIONS_POOL) -> AsyncIterator[None]:
    """Async context manager: hold one slot of *pool* for the block."""
    if not _enabled:
        yield
        return
    sem = _get_async_sem(pool)
    await sem.acquire()
    try:
        yield
    finally:
        sem.release()
