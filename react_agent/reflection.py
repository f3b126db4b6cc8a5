"""Reflection stage: achieved, retry, continue or abandon.

Cheap rules run before the model is asked. Which single-result batches count
as "goal achieved", and which of those still need a user-facing summary, is
policy (``ReflectionPolicy``) rather than hard-coded behaviour.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from react_agent import events
from react_agent.action_kinds import describe_action
from react_agent.collaborators import TextGenerator
from react_agent.config import AgentConfig
from react_agent.context import AgentContext
from react_agent.decision_parser import extract_goal_check
from react_agent.errors import mentions_network_failure
from react_agent.events import publish_event
from react_agent.executors import model_for
from react_agent.formatting import format_action_result, truncate
from react_agent.models import ActionKind, ActionResult, ErrorKind, ReflectionResult
from react_agent.prompts import render_builtin_prompt

logger = logging.getLogger(__name__)

RETRYABLE_ERROR_KINDS = frozenset({ErrorKind.TOOL_CALL_ERROR, ErrorKind.RETRIEVE_ERROR})


@dataclass(frozen=True)
class ReflectionPolicy:
    """Rule shortcuts applied before any model judgement.

    A batch consisting of exactly one successful result whose kind is in
    ``shortcut_kinds`` is treated as goal-achieved. It needs a summary pass
    when its kind is in ``summary_kinds`` (raw tool/retrieval payloads).
    """

    shortcut_kinds: frozenset[ActionKind] = field(
        default_factory=lambda: frozenset(ActionKind)
    )
    summary_kinds: frozenset[ActionKind] = field(
        default_factory=lambda: frozenset({ActionKind.TOOL_CALL, ActionKind.RETRIEVE})
    )
    use_model: bool = True
    generate_min_chars: int = 50
    history_window: int = 3
    result_chars: int = 500

    def shortcut(self, results: list[ActionResult]) -> ReflectionResult | None:
        if len(results) != 1 or not results[0].success:
            return None
        kind = results[0].kind
        if kind not in self.shortcut_kinds:
            return None
        return ReflectionResult.achieved(
            needs_summary=kind in self.summary_kinds,
            summary=f"single {kind.value} succeeded",
        )

    def heuristic(self, results: list[ActionResult]) -> ReflectionResult:
        """Fallback when the model cannot be asked: a substantial generation counts as done."""
        for result in results:
            if (
                result.success
                and result.kind is ActionKind.GENERATE
                and isinstance(result.data, str)
                and len(result.data.strip()) > self.generate_min_chars
            ):
                return ReflectionResult.achieved(summary="generated answer looks complete")
        return ReflectionResult.keep_going("goal not yet confirmed")


def classify_failure(result: ActionResult) -> ReflectionResult:
    """Retry or abandon, judged from the last failed result of an all-failed batch."""
    kind = result.error_kind
    reason = result.error or "action failed"
    if kind in RETRYABLE_ERROR_KINDS:
        return ReflectionResult.retry(reason, kind, summary=f"{kind.value}: retrying")
    if kind is ErrorKind.EXCEPTION and mentions_network_failure(result.error):
        return ReflectionResult.retry(reason, kind, summary="transient failure: retrying")
    return ReflectionResult.abandon(reason, kind)


class ReflectionStage:
    def __init__(
        self,
        generator: TextGenerator,
        policy: ReflectionPolicy | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.generator = generator
        self.policy = policy or ReflectionPolicy()
        self.config = config or AgentConfig()

    async def reflect(
        self, results: list[ActionResult], context: AgentContext, goal: str
    ) -> ReflectionResult:
        publish_event(context.event_sink, events.REFLECTING, "checking progress")
        if not results:
            return ReflectionResult.abandon("no results to reflect on")

        if not any(r.success for r in results):
            verdict = classify_failure(results[-1])
            logger.info(
                "All %d actions failed; retry=%s (%s)",
                len(results),
                verdict.should_retry,
                results[-1].error_kind.value if results[-1].error_kind else "unknown",
            )
            return verdict

        shortcut = self.policy.shortcut(results)
        if shortcut is not None:
            return shortcut

        if not self.policy.use_model:
            return self.policy.heuristic(results)
        return await self._ask_model(results, context, goal)

    def build_messages(
        self, results: list[ActionResult], context: AgentContext, goal: str
    ) -> list[dict[str, str]]:
        window = self.policy.history_window
        chars = self.policy.result_chars
        return render_builtin_prompt(
            "reflection",
            goal=goal,
            actions=[f"{r.kind.value} {r.action.name}: {describe_action(r.action)}" for r in results],
            results=[format_action_result(r, chars) for r in results],
            recent_messages=[
                {"role": m["role"], "content": truncate(m.get("content", ""), chars)}
                for m in context.recent_messages(window)
            ],
            tool_history=[
                f"{rec.tool_name}: {truncate(rec.result or rec.error or '', chars)}"
                for rec in context.tool_call_history[-window:]
            ],
            retrieve_history=[
                f"{rec.query!r} -> {rec.result_count} results"
                for rec in context.retrieve_history[-window:]
            ],
        )

    async def _ask_model(
        self, results: list[ActionResult], context: AgentContext, goal: str
    ) -> ReflectionResult:
        publish_event(context.event_sink, events.STATUS_ANALYZING, "judging whether the goal is met")
        messages = self.build_messages(results, context, goal)
        try:
            reply = await asyncio.wait_for(
                self.generator.agenerate(model_for(context, self.config), messages, temperature=0.0),
                timeout=self.config.generation_timeout_s,
            )
        except Exception as exc:
            logger.warning("Goal check call failed (%s); using heuristic", exc)
            return self.policy.heuristic(results)

        achieved, needs_summary = extract_goal_check(reply)
        logger.info("Goal check: achieved=%s needs_summary=%s", achieved, needs_summary)
        if achieved:
            return ReflectionResult.achieved(needs_summary=needs_summary, summary="model judged goal achieved")
        return ReflectionResult.keep_going("model judged goal not yet achieved")
