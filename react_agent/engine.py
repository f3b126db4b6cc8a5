"""ReAct loop driver: think, act, observe, reflect until the goal is settled.

Usage::

    loop = ReActLoop(LiteLLMGenerator(), catalog, invoker)
    result = await loop.aexecute("what is the weather in Paris", AgentContext())
    print(result.reason, result.answer)

``aexecute`` never raises for ordinary failures; every outcome comes back as a
``FinalResult`` carrying the message history accumulated so far.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from react_agent import events
from react_agent.collaborators import (
    ContextStore,
    InMemoryContextStore,
    RetrievalResult,
    RetrievalService,
    TextGenerator,
    ToolCatalog,
    ToolInvoker,
)
from react_agent.config import AgentConfig
from react_agent.confirmation import (
    ConfirmationCoordinator,
    InMemoryConfirmationTransport,
    RedisConfirmationTransport,
)
from react_agent.context import AgentContext
from react_agent.dispatcher import ActionDispatcher
from react_agent.errors import ContextBusyError
from react_agent.events import publish_event
from react_agent.formatting import data_to_text, truncate
from react_agent.models import (
    ActionKind,
    ActionResult,
    AgentAction,
    AgentState,
    ErrorKind,
    ExecutionRecord,
    FinalResult,
    TerminationReason,
)
from react_agent.observation import ObservationStage, build_record
from react_agent.prompts import render_builtin_prompt, split_system_user
from react_agent.reflection import ReflectionPolicy, ReflectionStage
from react_agent.state_machine import IterationStateMachine
from react_agent.stop_signal import InMemoryStopSignal, RedisStopSignal, StopSignal, stop_requested
from react_agent.thinking import ThinkingStage

logger = logging.getLogger(__name__)

NO_INFORMATION_ANSWER = "No relevant information was found for this request."


def _run_sync(coro: Any) -> Any:
    """Run a coroutine synchronously, handling nested event loops."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None and loop.is_running():
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


def terminal_answer(results: list[ActionResult]) -> str | None:
    """Text of the first successful terminal action (final answer or completion summary)."""
    for result in results:
        if result.success and result.action.is_terminal:
            text = data_to_text(result.data).strip()
            if text:
                return text
    return None


def ensure_user_facing_result(results: list[ActionResult]) -> str | None:
    """Text of the last successful result, or a stock answer for empty tool/retrieval output."""
    for result in reversed(results):
        if not result.success:
            continue
        if isinstance(result.data, RetrievalResult) and not result.data.documents:
            return NO_INFORMATION_ANSWER
        text = data_to_text(result.data).strip()
        if text:
            return text
        if result.kind in (ActionKind.TOOL_CALL, ActionKind.RETRIEVE):
            return NO_INFORMATION_ANSWER
    return None


@dataclass
class _Run:
    goal: str
    context: AgentContext
    machine: IterationStateMachine
    started_at: float = field(default_factory=time.monotonic)
    iteration: int = 0
    last_results: list[ActionResult] = field(default_factory=list)
    thinking_attempts: list[int] = field(default_factory=list)


class ReActLoop:
    """Autonomous agent loop over pluggable generator, tools and retrieval."""

    def __init__(
        self,
        generator: TextGenerator,
        catalog: ToolCatalog,
        invoker: ToolInvoker,
        *,
        retrieval: RetrievalService | None = None,
        store: ContextStore | None = None,
        confirmation: ConfirmationCoordinator | None = None,
        stop_signal: StopSignal | None = None,
        config: AgentConfig | None = None,
        reflection_policy: ReflectionPolicy | None = None,
    ) -> None:
        self.config = config or AgentConfig()
        self.store = store if store is not None else InMemoryContextStore()
        self.stop_signal = stop_signal if stop_signal is not None else InMemoryStopSignal()
        self.confirmation = confirmation or ConfirmationCoordinator(InMemoryConfirmationTransport())
        self.thinking = ThinkingStage(generator, catalog, self.config)
        self.dispatcher = ActionDispatcher(
            generator,
            catalog,
            invoker,
            retrieval=retrieval,
            confirmation=self.confirmation,
            stop_signal=self.stop_signal,
            config=self.config,
        )
        self.observation = ObservationStage(self.store, self.stop_signal)
        self.reflection = ReflectionStage(generator, reflection_policy, self.config)

    @classmethod
    def with_redis(
        cls,
        generator: TextGenerator,
        catalog: ToolCatalog,
        invoker: ToolInvoker,
        *,
        config: AgentConfig | None = None,
        **kwargs: Any,
    ) -> "ReActLoop":
        """Loop whose confirmations and stop requests go through Redis."""
        config = config or AgentConfig.from_env()
        return cls(
            generator,
            catalog,
            invoker,
            confirmation=ConfirmationCoordinator(RedisConfirmationTransport(url=config.redis_url)),
            stop_signal=RedisStopSignal(url=config.redis_url),
            config=config,
            **kwargs,
        )

    # -- public API ------------------------------------------------------

    def execute(self, goal: str, context: AgentContext | None = None) -> FinalResult:
        """Sync wrapper for :meth:`aexecute`."""
        return _run_sync(self.aexecute(goal, context))

    async def arequest_stop(self, request_id: str) -> None:
        await self.stop_signal.request_stop(request_id)

    def request_stop(self, request_id: str) -> None:
        _run_sync(self.arequest_stop(request_id))

    async def aexecute(self, goal: str, context: AgentContext | None = None) -> FinalResult:
        context = context if context is not None else AgentContext()
        try:
            context.claim()
        except ContextBusyError as exc:
            logger.error("Refusing to drive busy context %s", context.conversation_id)
            return FinalResult(
                success=False,
                reason=TerminationReason.EXCEPTION,
                error=str(exc),
                error_kind=ErrorKind.EXCEPTION,
            )

        run = _Run(goal=goal, context=context, machine=IterationStateMachine())
        try:
            return await self._drive(run)
        except Exception as exc:
            logger.error("Agent loop for %s crashed", context.request_id, exc_info=True)
            run.machine.fail()
            message = f"{type(exc).__name__}: {exc}"
            publish_event(context.event_sink, events.ERROR, message, {"errorKind": ErrorKind.EXCEPTION.value})
            return FinalResult(
                success=False,
                reason=TerminationReason.EXCEPTION,
                error=message,
                error_kind=ErrorKind.EXCEPTION,
                record=self._record(run, AgentState.FAILED, success=False, error=message, error_kind=ErrorKind.EXCEPTION),
                last_results=run.last_results,
            )
        finally:
            context.release()

    # -- the loop --------------------------------------------------------

    async def _drive(self, run: _Run) -> FinalResult:
        context = run.context
        machine = run.machine
        context.add_message("user", run.goal)
        publish_event(
            context.event_sink,
            events.START,
            "agent started",
            {
                "requestId": context.request_id,
                "conversationId": context.conversation_id,
                "maxIterations": self.config.max_iterations,
                "mode": context.mode.value,
            },
        )
        logger.info(
            "Agent run %s started (max %d iterations)", context.request_id, self.config.max_iterations
        )

        while True:
            run.iteration += 1
            publish_event(
                context.event_sink,
                events.ITERATION_START,
                f"iteration {run.iteration}",
                {"iteration": run.iteration, "maxIterations": self.config.max_iterations},
            )
            machine.transition(AgentState.THINKING)

            if await stop_requested(self.stop_signal, context.request_id):
                await self.stop_signal.clear(context.request_id)
                run.iteration -= 1
                machine.transition(AgentState.COMPLETED)
                logger.info("Run %s stopped by user between iterations", context.request_id)
                return self._finish(
                    run,
                    TerminationReason.USER_STOPPED,
                    self._record(run, AgentState.COMPLETED, success=True),
                    answer=ensure_user_facing_result(run.last_results),
                )

            actions = await self.thinking.think(run.goal, context, run.last_results or None)
            run.thinking_attempts.append(self.thinking.attempts_used)
            if not actions:
                machine.transition(AgentState.FAILED)
                error = "no usable actions after all thinking attempts"
                return self._finish(
                    run,
                    TerminationReason.NO_ACTIONS,
                    self._record(run, AgentState.FAILED, success=False, error=error),
                    error=error,
                )

            machine.transition(AgentState.EXECUTING)
            results = await self.dispatcher.dispatch(actions, context)
            run.last_results = results

            machine.transition(AgentState.OBSERVING)
            observation = await self.observation.observe(
                results, context, run.iteration, self.config.max_iterations, run.started_at
            )
            if observation.should_terminate:
                record = observation.record
                machine.transition(record.final_state)
                answer = None
                if record.success:
                    answer = terminal_answer(results) or ensure_user_facing_result(results)
                return self._finish(
                    run,
                    observation.reason,
                    record,
                    answer=answer,
                    error=record.error,
                    error_kind=record.error_kind,
                )

            if self._fast_path_applies(results):
                return await self._fast_path(run, results[0])

            machine.transition(AgentState.REFLECTING)
            reflection = await self.reflection.reflect(results, context, run.goal)

            if reflection.goal_achieved:
                if reflection.needs_summary:
                    answer = await self._synthesize(run, results)
                else:
                    answer = ensure_user_facing_result(results)
                machine.transition(AgentState.COMPLETED)
                return self._finish(
                    run,
                    TerminationReason.COMPLETED,
                    self._record(run, AgentState.COMPLETED, success=True),
                    answer=answer,
                )

            if reflection.should_retry or reflection.should_continue:
                if reflection.should_retry:
                    logger.info("Retrying after %s", reflection.retry_reason)
                publish_event(
                    context.event_sink,
                    events.ITERATION_END,
                    reflection.summary or None,
                    {
                        "iteration": run.iteration,
                        "retry": reflection.should_retry,
                        "reason": reflection.retry_reason,
                    },
                )
                continue

            machine.transition(AgentState.FAILED)
            error = reflection.failure_reason or "action failed"
            return self._finish(
                run,
                TerminationReason.ACTION_FAILED,
                self._record(
                    run, AgentState.FAILED, success=False, error=error, error_kind=reflection.failure_kind
                ),
                error=error,
                error_kind=reflection.failure_kind,
            )

    # -- answer synthesis ------------------------------------------------

    def _fast_path_applies(self, results: list[ActionResult]) -> bool:
        return (
            self.config.fast_path
            and len(results) == 1
            and results[0].success
            and results[0].kind is ActionKind.TOOL_CALL
        )

    async def _fast_path(self, run: _Run, tool_result: ActionResult) -> FinalResult:
        """Answer straight from a single successful tool call, skipping reflection."""
        context = run.context
        machine = run.machine
        payload = data_to_text(tool_result.data).strip()
        tool_name = tool_result.action.tool_name or "tool"
        logger.info("Fast path: answering from %s", tool_name)

        if not payload:
            answer = NO_INFORMATION_ANSWER
        else:
            system, user = split_system_user(
                render_builtin_prompt(
                    "fast_response",
                    question=run.goal,
                    tool_name=tool_name,
                    result=truncate(payload, self.config.fast_path_result_chars),
                )
            )
            action = AgentAction.generate(
                user, system_prompt=system, name="fast_response", reasoning=f"answer from {tool_name}"
            )
            machine.transition(AgentState.EXECUTING)
            generated = await self.dispatcher.execute(action, context)
            machine.transition(AgentState.OBSERVING)
            if generated.success:
                answer = generated.data
                run.last_results = [tool_result, generated]
            else:
                logger.warning("Fast path generation failed (%s); returning the raw result", generated.error)
                answer = truncate(payload, self.config.fast_path_result_chars)

        context.add_message("assistant", answer)
        self.observation.persist(context)
        machine.transition(AgentState.COMPLETED)
        return self._finish(
            run,
            TerminationReason.COMPLETED,
            self._record(run, AgentState.COMPLETED, success=True, fastPath=True),
            answer=answer,
        )

    def _summary_messages(self, run: _Run, results: list[ActionResult]) -> list[dict[str, str]]:
        context = run.context
        chars = self.config.summary_result_chars
        return render_builtin_prompt(
            "summary",
            goal=run.goal,
            tool_history=[
                f"{rec.tool_name}: {truncate(rec.result or rec.error or '', chars)}"
                for rec in context.tool_call_history
            ],
            retrieve_history=[
                f"{rec.query!r} -> {rec.result_count} results"
                + (f" ({', '.join(rec.titles)})" if rec.titles else "")
                for rec in context.retrieve_history
            ],
            final_results=truncate(
                "\n\n".join(r.to_prompt_text(chars) for r in results),
                self.config.summary_final_chars,
            ),
        )

    async def _synthesize(self, run: _Run, results: list[ActionResult]) -> str | None:
        """Turn raw tool/retrieval output into the user-facing answer."""
        context = run.context
        machine = run.machine
        fallback = ensure_user_facing_result(results)
        if fallback == NO_INFORMATION_ANSWER:
            context.add_message("assistant", fallback)
            return fallback

        system, user = split_system_user(self._summary_messages(run, results))
        action = AgentAction.generate(user, system_prompt=system, name="summary", reasoning="final answer")
        machine.transition(AgentState.EXECUTING)
        generated = await self.dispatcher.execute(action, context)
        machine.transition(AgentState.OBSERVING)
        if generated.success:
            context.add_message("assistant", generated.data)
            self.observation.persist(context)
            return generated.data

        logger.warning(
            "Summary synthesis failed (%s: %s); using the last raw result",
            ErrorKind.SUMMARY_ERROR.value,
            generated.error,
        )
        if fallback:
            context.add_message("assistant", fallback)
        return fallback

    # -- results ---------------------------------------------------------

    def _record(
        self,
        run: _Run,
        final_state: AgentState,
        *,
        success: bool,
        error: str | None = None,
        error_kind: ErrorKind | None = None,
        **metadata: Any,
    ) -> ExecutionRecord:
        return build_record(
            run.context,
            run.iteration,
            run.started_at,
            final_state,
            success=success,
            error=error,
            error_kind=error_kind,
            **metadata,
        )

    def _finish(
        self,
        run: _Run,
        reason: TerminationReason,
        record: ExecutionRecord,
        *,
        answer: str | None = None,
        error: str | None = None,
        error_kind: ErrorKind | None = None,
    ) -> FinalResult:
        context = run.context
        record = dataclasses.replace(
            record,
            metadata={
                **record.metadata,
                "thinkingAttempts": list(run.thinking_attempts),
                "states": [s.value for s in run.machine.history],
                "requestId": context.request_id,
            },
        )
        self.observation.persist(context)
        success = record.success
        if success:
            publish_event(
                context.event_sink,
                events.COMPLETE,
                answer,
                {"reason": reason.value, "iterations": record.iterations, "elapsedMs": record.elapsed_ms},
            )
        else:
            publish_event(
                context.event_sink,
                events.ERROR,
                error,
                {
                    "reason": reason.value,
                    "errorKind": error_kind.value if error_kind else None,
                    "iterations": record.iterations,
                },
            )
        logger.info(
            "Agent run %s finished: %s after %d iterations in %d ms",
            context.request_id,
            reason.value,
            record.iterations,
            record.elapsed_ms,
        )
        return FinalResult(
            success=success,
            reason=reason,
            answer=answer,
            error=error,
            error_kind=error_kind,
            record=record,
            last_results=list(run.last_results),
        )
