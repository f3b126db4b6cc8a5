"""Thinking stage: ask the model for the next action batch.

The stage renders ``templates/thinking.yaml`` from the goal, the tool catalog,
the knowledge scope and a bounded window of history. It parses the reply with
``parse_decision`` and retries with a correction hint when the reply is
unusable. Running out of attempts yields an empty batch, never an exception.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from react_agent import events
from react_agent.collaborators import EventSink, StreamSink, TextGenerator, ToolCatalog
from react_agent.config import AgentConfig
from react_agent.context import AgentContext
from react_agent.decision_parser import (
    DecisionParseError,
    decision_json_schema,
    parse_decision,
    partial_string_value,
)
from react_agent.events import publish_event
from react_agent.executors import model_for
from react_agent.formatting import format_action_result, format_history, truncate
from react_agent.models import ActionKind, ActionResult, AgentAction
from react_agent.prompts import render_builtin_prompt, split_system_user

logger = logging.getLogger(__name__)


class ReasoningStreamForwarder:
    """StreamSink that surfaces only the ``thinking`` field of a streamed decision.

    Each token re-reads the partial value of ``thinking`` and publishes the part
    past the longest common prefix with what was already sent. The first time
    the ``actions`` key shows up a planning event is published.
    """

    def __init__(self, event_sink: EventSink | None, stream_sink: StreamSink | None = None) -> None:
        self._event_sink = event_sink
        self._stream_sink = stream_sink
        self._text = ""
        self._sent = ""
        self.planning_announced = False

    @property
    def sent(self) -> str:
        return self._sent

    def on_start(self) -> None:
        self._text = ""
        self._sent = ""
        self.planning_announced = False

    def on_token(self, token: str) -> None:
        self._text += token
        value = partial_string_value(self._text, "thinking")
        if value:
            common = len(os.path.commonprefix([self._sent, value]))
            delta = value[common:]
            if delta:
                self._emit(delta)
            self._sent = value
        if not self.planning_announced and '"actions"' in self._text:
            self.planning_announced = True
            publish_event(self._event_sink, events.PLANNING, "planning actions")
            publish_event(self._event_sink, events.STATUS_PLANNING, "planning actions")

    def on_reasoning(self, text: str) -> None:
        # Native reasoning channel of the model, forwarded as-is.
        self._emit(text)

    def on_complete(self, full_text: str) -> None:
        return None

    def on_error(self, error: BaseException) -> None:
        logger.debug("Thinking stream failed: %s", error)

    def _emit(self, delta: str) -> None:
        publish_event(self._event_sink, events.THINKING_DELTA, None, {"delta": delta})
        if self._stream_sink is not None:
            try:
                self._stream_sink.on_reasoning(delta)
            except Exception:
                logger.warning("Stream sink rejected reasoning delta", exc_info=True)


class ThinkingStage:
    def __init__(
        self,
        generator: TextGenerator,
        catalog: ToolCatalog,
        config: AgentConfig | None = None,
    ) -> None:
        self.generator = generator
        self.catalog = catalog
        self.config = config or AgentConfig()
        self.attempts_used = 0

    # -- prompt ----------------------------------------------------------

    def _conversation_window(self, context: AgentContext) -> list[dict[str, str]]:
        opts = context.thinking
        limit = min(opts.history_messages, opts.conversation_rounds * 2)
        return [
            {"role": m["role"], "content": truncate(m.get("content", ""), opts.max_message_chars)}
            for m in context.recent_messages(limit)
        ]

    def build_messages(
        self,
        goal: str,
        context: AgentContext,
        last_results: list[ActionResult] | None = None,
        correction: str | None = None,
    ) -> list[dict[str, str]]:
        tools = self.catalog.list_available(context.enabled_groups, context.enabled_tools)
        history = format_history(
            context.action_history, context.thinking.action_history_iterations
        )
        recorded = bool(context.action_history) and context.action_history[-1] is last_results
        if last_results and not recorded:
            latest = "\n".join(format_action_result(r) for r in last_results)
            history = f"{history}\n\n## latest results\n{latest}".strip()

        rendered = render_builtin_prompt(
            "thinking",
            tools=[t.render() for t in tools],
            knowledge_ids=context.knowledge_ids,
            initial_knowledge=context.initial_knowledge,
            history=history,
            goal=goal,
            correction=correction,
            max_actions=self.config.max_parallel_actions,
        )
        system, user = split_system_user(rendered)
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.extend(self._conversation_window(context))
        messages.append({"role": "user", "content": user})
        logger.debug(
            "Thinking prompt: %d messages, %d tools, %d chars",
            len(messages),
            len(tools),
            sum(len(m["content"]) for m in messages),
        )
        return messages

    # -- generation ------------------------------------------------------

    async def _generate(self, model: str, messages: list[dict[str, str]], context: AgentContext) -> str:
        if context.event_sink is not None or context.stream_sink is not None:
            forwarder = ReasoningStreamForwarder(context.event_sink, context.stream_sink)
            call = self.generator.agenerate_streaming(
                model, messages, schema=decision_json_schema(), sink=forwarder
            )
        else:
            call = self.generator.agenerate(model, messages)
        return await asyncio.wait_for(call, timeout=self.config.generation_timeout_s)

    async def think(
        self,
        goal: str,
        context: AgentContext,
        last_results: list[ActionResult] | None = None,
    ) -> list[AgentAction]:
        """Return 1..max_parallel_actions validated actions, or [] after all retries fail."""
        model = model_for(context, self.config)
        max_attempts = max(1, self.config.thinking_max_attempts)
        correction: str | None = None
        self.attempts_used = 0

        publish_event(context.event_sink, events.THINKING, "thinking about the next step")
        for attempt in range(1, max_attempts + 1):
            self.attempts_used = attempt
            messages = self.build_messages(goal, context, last_results, correction)
            try:
                raw = await self._generate(model, messages, context)
                decision = parse_decision(
                    raw, self.catalog, max_actions=self.config.max_parallel_actions
                )
            except DecisionParseError as exc:
                logger.warning(
                    "Thinking attempt %d/%d unusable: %s", attempt, max_attempts, exc
                )
                correction = exc.retry_hint()
                self._announce_retry(context, attempt, max_attempts, exc.code.value)
                continue
            except Exception as exc:
                logger.warning(
                    "Thinking attempt %d/%d failed: %s: %s",
                    attempt,
                    max_attempts,
                    type(exc).__name__,
                    exc,
                )
                correction = (
                    f"The previous attempt failed ({type(exc).__name__}). "
                    "Return exactly one JSON object with a non-empty \"actions\" array."
                )
                self._announce_retry(context, attempt, max_attempts, type(exc).__name__)
                continue

            actions = self.apply_loop_guard(goal, context, decision.actions)
            publish_event(
                context.event_sink,
                events.STATUS_THINKING_PROCESS,
                decision.thinking or None,
                {
                    "thinking": decision.thinking,
                    "actions": [{"kind": a.kind.value, "name": a.name} for a in actions],
                    "attempt": attempt,
                    "repaired": decision.repaired,
                },
            )
            if attempt > 1:
                logger.info("Thinking succeeded on attempt %d", attempt)
            return actions

        logger.warning("Thinking gave up after %d attempts", max_attempts)
        return []

    def _announce_retry(self, context: AgentContext, attempt: int, max_attempts: int, reason: str) -> None:
        if attempt >= max_attempts:
            return
        publish_event(
            context.event_sink,
            events.STATUS_RETRYING,
            f"retrying decision ({attempt + 1}/{max_attempts})",
            {"attempt": attempt, "maxAttempts": max_attempts, "reason": reason},
        )

    # -- loop guard ------------------------------------------------------

    def apply_loop_guard(
        self, goal: str, context: AgentContext, actions: list[AgentAction]
    ) -> list[AgentAction]:
        """Swap a third consecutive call of the same tool for a direct answer."""
        if not self.config.loop_guard or len(actions) != 1:
            return actions
        action = actions[0]
        if action.kind is not ActionKind.TOOL_CALL:
            return actions
        history = context.tool_call_history
        if len(history) < 2:
            return actions
        name = action.tool_name
        if history[-1].tool_name != name or history[-2].tool_name != name:
            return actions

        last_result: Any = next(
            (r.result for r in reversed(history) if r.success and r.result), None
        )
        if last_result is None:
            last_result = context.last_action_data or "(no data)"
        system, user = split_system_user(
            render_builtin_prompt(
                "loop_guard",
                goal=goal,
                tool_name=name,
                last_result=truncate(str(last_result), self.config.fast_path_result_chars),
            )
        )
        logger.warning("Tool %s proposed a third time in a row; answering from existing data", name)
        return [
            AgentAction.generate(
                user,
                system_prompt=system,
                name="answer_from_existing_data",
                reasoning=f"tool {name} was already called twice in a row",
            )
        ]
