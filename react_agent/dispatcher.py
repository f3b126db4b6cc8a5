"""Action dispatcher: run one batch of actions with bounded parallelism.

All actions of a batch start together and each holds one slot of the shared
``actions`` pool while it runs, so the number of in-flight actions across
every loop on the event loop never exceeds the pool size. The dispatcher waits
for the whole batch; a failing action never cancels its siblings, and the
returned list lines up index for index with the input.
"""

from __future__ import annotations

import asyncio
import logging
import time

from react_agent import events
from react_agent.action_kinds import ACTION_KINDS
from react_agent.collaborators import RetrievalService, TextGenerator, ToolCatalog, ToolInvoker
from react_agent.config import AgentConfig
from react_agent.confirmation import ConfirmationCoordinator, InMemoryConfirmationTransport
from react_agent.context import AgentContext
from react_agent.events import publish_event
from react_agent.executors import ExecutionRuntime
from react_agent.models import ActionResult, AgentAction, ErrorKind
from react_agent.stop_signal import StopSignal
from react_agent.worker_pool import ACTIONS_POOL, aslot

logger = logging.getLogger(__name__)


class ActionDispatcher:
    def __init__(
        self,
        generator: TextGenerator,
        catalog: ToolCatalog,
        invoker: ToolInvoker,
        *,
        retrieval: RetrievalService | None = None,
        confirmation: ConfirmationCoordinator | None = None,
        stop_signal: StopSignal | None = None,
        config: AgentConfig | None = None,
        pool: str = ACTIONS_POOL,
    ) -> None:
        self.config = config or AgentConfig()
        self.pool = pool
        self.runtime = ExecutionRuntime(
            generator=generator,
            catalog=catalog,
            invoker=invoker,
            confirmation=confirmation
            or ConfirmationCoordinator(InMemoryConfirmationTransport()),
            config=self.config,
            retrieval=retrieval,
            stop_signal=stop_signal,
        )

    async def execute(self, action: AgentAction, context: AgentContext) -> ActionResult:
        """Run one action; any exception becomes a failed result."""
        started = time.monotonic()
        try:
            async with aslot(self.pool):
                return await ACTION_KINDS[action.kind].execute(action, context, self.runtime)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Action %s (%s) raised %s: %s",
                action.name,
                action.kind.value,
                type(exc).__name__,
                exc,
            )
            return ActionResult.failure(
                action,
                f"{type(exc).__name__}: {exc}",
                ErrorKind.EXCEPTION,
                duration_ms=int((time.monotonic() - started) * 1000),
                exceptionType=type(exc).__name__,
            )

    async def dispatch(self, actions: list[AgentAction], context: AgentContext) -> list[ActionResult]:
        """Run a batch concurrently and record it in the context's action history."""
        if not actions:
            return []
        limit = self.config.max_parallel_actions
        if len(actions) > limit:
            logger.warning("Dispatch got %d actions; running the first %d", len(actions), limit)
            actions = actions[:limit]

        names = [a.name or a.kind.value for a in actions]
        if len(actions) == 1:
            publish_event(
                context.event_sink,
                events.STATUS_TOOL_SINGLE,
                f"running {names[0]}",
                {"actions": names},
            )
        else:
            publish_event(
                context.event_sink,
                events.STATUS_TOOL_BATCH,
                f"running {len(actions)} actions in parallel",
                {"actions": names},
            )

        started = time.monotonic()
        # execute() never raises for ordinary errors; gather keeps input order
        results = list(await asyncio.gather(*(self.execute(a, context) for a in actions)))
        context.action_history.append(results)
        logger.info(
            "Dispatched %d actions in %d ms (%d failed)",
            len(results),
            int((time.monotonic() - started) * 1000),
            sum(1 for r in results if not r.success),
        )
        return results
