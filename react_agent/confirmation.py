"""Human approval handshake for gated tool calls.

The worker that wants to run a tool registers a confirmation id, announces it
through the event sink and then blocks on ``wait``. Whoever reviews the call
(often another process behind an HTTP endpoint, or ``python -m react_agent
approve``) submits exactly one decision. No decision within the timeout means
``TIMEOUT``, which callers treat as a rejection.

Usage::

    coordinator = ConfirmationCoordinator(RedisConfirmationTransport())
    await coordinator.register(execution_id)
    decision = await coordinator.wait(execution_id, timeout=60)

    # elsewhere, any process with access to the same Redis
    await RedisConfirmationTransport().approve(execution_id)
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from react_agent.redis_support import get_async_redis_client

logger = logging.getLogger(__name__)

CONFIRM_KEY_PREFIX = "react_agent:confirm:"
DEFAULT_REGISTRATION_TTL_S = 300
APPROVED_TOKEN = "APPROVED"
REJECTED_TOKEN = "REJECTED"

# Extra slack on top of the transport's own timeout before the coordinator gives up.
_TRANSPORT_GRACE_S = 1.0


class ConfirmationDecision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    TIMEOUT = "TIMEOUT"


class ConfirmationTransport(Protocol):
    async def register(self, action_id: str) -> None: ...

    async def await_decision(self, action_id: str, timeout: float) -> ConfirmationDecision: ...

    async def approve(self, action_id: str) -> bool: ...

    async def reject(self, action_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# Redis transport (cross-process)
# ---------------------------------------------------------------------------


class RedisConfirmationTransport:
    """One Redis list per confirmation id, consumed with BLPOP.

    ``register`` writes a pending marker with an expiry. ``approve``/``reject``
    delete the marker and push the decision only if the delete succeeded, so
    at most one decision is ever delivered per id.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        url: str | None = None,
        prefix: str = CONFIRM_KEY_PREFIX,
        ttl_s: int = DEFAULT_REGISTRATION_TTL_S,
    ) -> None:
        self._client = client
        self._url = url
        self._prefix = prefix
        self._ttl_s = ttl_s

    def _redis(self) -> Any:
        if self._client is not None:
            return self._client
        return get_async_redis_client(self._url)

    def queue_key(self, action_id: str) -> str:
        return f"{self._prefix}{action_id}"

    def pending_key(self, action_id: str) -> str:
        return f"{self._prefix}pending:{action_id}"

    async def register(self, action_id: str) -> None:
        await self._redis().set(self.pending_key(action_id), "1", ex=self._ttl_s)
        logger.debug("Registered confirmation %s", action_id)

    async def await_decision(self, action_id: str, timeout: float) -> ConfirmationDecision:
        client = self._redis()
        queue = self.queue_key(action_id)
        try:
            if timeout <= 0:
                value = await client.lpop(queue)
            else:
                # BLPOP treats 0 as "forever"; a positive timeout is always passed
                item = await client.blpop([queue], timeout=timeout)
                value = item[1] if item else None
        finally:
            await client.delete(queue, self.pending_key(action_id))
        if value is None:
            return ConfirmationDecision.TIMEOUT
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if value == APPROVED_TOKEN:
            return ConfirmationDecision.APPROVED
        return ConfirmationDecision.REJECTED

    async def _submit(self, action_id: str, token: str) -> bool:
        client = self._redis()
        if not await client.delete(self.pending_key(action_id)):
            logger.info("Confirmation %s is unknown, expired or already decided", action_id)
            return False
        queue = self.queue_key(action_id)
        await client.rpush(queue, token)
        await client.expire(queue, self._ttl_s)
        return True

    async def approve(self, action_id: str) -> bool:
        return await self._submit(action_id, APPROVED_TOKEN)

    async def reject(self, action_id: str) -> bool:
        return await self._submit(action_id, REJECTED_TOKEN)


# ---------------------------------------------------------------------------
# In-process transport
# ---------------------------------------------------------------------------


@dataclass
class _PendingConfirmation:
    loop: asyncio.AbstractEventLoop
    future: asyncio.Future[ConfirmationDecision]
    decided: bool = False


class InMemoryConfirmationTransport:
    """Single-process transport backed by futures on the waiting loop.

    Decisions may be submitted from any thread of the same process, before or
    after the worker starts waiting. It cannot see approvals made by other
    processes; use the Redis transport for that.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, _PendingConfirmation] = {}

    @property
    def pending_ids(self) -> list[str]:
        with self._lock:
            return [k for k, v in self._pending.items() if not v.decided]

    async def register(self, action_id: str) -> None:
        loop = asyncio.get_running_loop()
        with self._lock:
            self._pending[action_id] = _PendingConfirmation(loop, loop.create_future())

    async def await_decision(self, action_id: str, timeout: float) -> ConfirmationDecision:
        with self._lock:
            entry = self._pending.get(action_id)
        if entry is None:
            logger.warning("Waiting on unregistered confirmation %s", action_id)
            return ConfirmationDecision.REJECTED
        try:
            return await asyncio.wait_for(entry.future, timeout=max(timeout, 0))
        except asyncio.TimeoutError:
            return ConfirmationDecision.TIMEOUT
        finally:
            with self._lock:
                self._pending.pop(action_id, None)

    def _submit(self, action_id: str, decision: ConfirmationDecision) -> bool:
        with self._lock:
            entry = self._pending.get(action_id)
            if entry is None or entry.decided:
                return False
            entry.decided = True

        def _resolve() -> None:
            if not entry.future.done():
                entry.future.set_result(decision)

        entry.loop.call_soon_threadsafe(_resolve)
        return True

    async def approve(self, action_id: str) -> bool:
        return self._submit(action_id, ConfirmationDecision.APPROVED)

    async def reject(self, action_id: str) -> bool:
        return self._submit(action_id, ConfirmationDecision.REJECTED)


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class ConfirmationCoordinator:
    """Bounds every wait and turns transport failures into rejections."""

    def __init__(self, transport: ConfirmationTransport) -> None:
        self.transport = transport

    async def register(self, action_id: str) -> None:
        await self.transport.register(action_id)

    async def wait(self, action_id: str, timeout: float) -> ConfirmationDecision:
        started = time.monotonic()
        try:
            decision = await asyncio.wait_for(
                self.transport.await_decision(action_id, timeout),
                timeout=timeout + _TRANSPORT_GRACE_S,
            )
        except asyncio.TimeoutError:
            decision = ConfirmationDecision.TIMEOUT
        except Exception:
            logger.warning("Confirmation transport failed for %s", action_id, exc_info=True)
            decision = ConfirmationDecision.REJECTED
        logger.info(
            "Confirmation %s resolved %s after %.2fs",
            action_id,
            decision.value,
            time.monotonic() - started,
        )
        return decision

    async def approve(self, action_id: str) -> bool:
        return await self.transport.approve(action_id)

    async def reject(self, action_id: str) -> bool:
        return await self.transport.reject(action_id)
