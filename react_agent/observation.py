"""Observation stage: fold results into the context and detect hard stops."""

from __future__ import annotations

import logging
import time

from react_agent import events
from react_agent.collaborators import ContextStore
from react_agent.context import AgentContext
from react_agent.events import publish_event
from react_agent.models import (
    ActionKind,
    ActionResult,
    AgentState,
    ErrorKind,
    ExecutionRecord,
    ObservationResult,
    TerminationReason,
)
from react_agent.stop_signal import StopSignal, stop_requested

logger = logging.getLogger(__name__)

_CONVERSATIONAL_KINDS = (ActionKind.GENERATE, ActionKind.DIRECT_RESPONSE)


def build_record(
    context: AgentContext,
    iterations: int,
    started_at: float,
    final_state: AgentState,
    *,
    success: bool,
    error: str | None = None,
    error_kind: ErrorKind | None = None,
    **metadata: object,
) -> ExecutionRecord:
    """Snapshot the context into an execution record; ``started_at`` is monotonic."""
    return ExecutionRecord(
        messages=[dict(m) for m in context.messages],
        iterations=iterations,
        elapsed_ms=int((time.monotonic() - started_at) * 1000),
        final_state=final_state,
        success=success,
        error=error,
        error_kind=error_kind,
        metadata=dict(metadata),
    )


class ObservationStage:
    def __init__(
        self,
        store: ContextStore | None = None,
        stop_signal: StopSignal | None = None,
    ) -> None:
        self.store = store
        self.stop_signal = stop_signal

    async def observe(
        self,
        results: list[ActionResult],
        context: AgentContext,
        iteration: int,
        max_iterations: int,
        started_at: float,
    ) -> ObservationResult:
        publish_event(
            context.event_sink,
            events.OBSERVING,
            f"observing {len(results)} results",
            {"iteration": iteration, "maxIterations": max_iterations},
        )

        if await stop_requested(self.stop_signal, context.request_id):
            await self.stop_signal.clear(context.request_id)
            logger.info("Run %s stopped by user at iteration %d", context.request_id, iteration)
            return ObservationResult.terminate(
                TerminationReason.USER_STOPPED,
                build_record(context, iteration, started_at, AgentState.COMPLETED, success=True),
            )

        if iteration >= max_iterations:
            logger.warning("Iteration budget exhausted (%d/%d)", iteration, max_iterations)
            return ObservationResult.terminate(
                TerminationReason.MAX_ITERATIONS,
                build_record(
                    context,
                    iteration,
                    started_at,
                    AgentState.FAILED,
                    success=False,
                    error=f"reached the maximum of {max_iterations} iterations",
                ),
            )

        if not results:
            return ObservationResult.terminate(
                TerminationReason.NO_ACTIONS,
                build_record(
                    context,
                    iteration,
                    started_at,
                    AgentState.FAILED,
                    success=False,
                    error="no actions were executed",
                ),
            )

        context.record_outcome(results[-1])
        for result in results:
            if (
                result.success
                and result.kind in _CONVERSATIONAL_KINDS
                and isinstance(result.data, str)
                and result.data.strip()
            ):
                context.add_message("assistant", result.data)
        context.bump_iteration()
        self.persist(context)

        if any(r.success and r.action.is_terminal for r in results):
            logger.info("Terminal answer observed at iteration %d", iteration)
            return ObservationResult.terminate(
                TerminationReason.COMPLETED,
                build_record(context, iteration, started_at, AgentState.COMPLETED, success=True),
            )

        return ObservationResult.continue_loop()

    def persist(self, context: AgentContext) -> None:
        if self.store is None:
            return
        try:
            self.store.save(context)
        except Exception:
            logger.warning("Saving context %s failed", context.conversation_id, exc_info=True)
