"""Per-kind action executors.

Each executor returns an ``ActionResult`` for expected failures (unknown tool,
rejection, a tool raising). Anything else escaping an executor is converted
by the dispatcher.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any

from react_agent import events
from react_agent.collaborators import (
    RetrievalLimits,
    RetrievalService,
    TextGenerator,
    ToolCatalog,
    ToolDescriptor,
    ToolInvoker,
)
from react_agent.config import AgentConfig
from react_agent.confirmation import ConfirmationCoordinator, ConfirmationDecision
from react_agent.context import AgentContext, RetrieveRecord, ToolCallRecord
from react_agent.events import publish_event
from react_agent.formatting import normalize_tool_output, truncate
from react_agent.models import ActionResult, AgentAction, AgentMode, ErrorKind
from react_agent.stop_signal import StopSignal, stop_requested

logger = logging.getLogger(__name__)

DEFAULT_GENERATE_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's request accurately and concisely, "
    "using the information already available in the conversation."
)

_TOKEN_PATTERN = re.compile(r"\s+|\S+")
_STOP_CHECK_EVERY = 10
_EVENT_RESULT_CHARS = 2000


@dataclass
class ExecutionRuntime:
    """Collaborators an executor may need."""

    generator: TextGenerator
    catalog: ToolCatalog
    invoker: ToolInvoker
    confirmation: ConfirmationCoordinator
    config: AgentConfig
    retrieval: RetrievalService | None = None
    stop_signal: StopSignal | None = None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def model_for(context: AgentContext, config: AgentConfig) -> str:
    return context.model_id or config.default_model


async def _invoke_tool(invoker: ToolInvoker, tool: ToolDescriptor, arguments: dict[str, Any]) -> Any:
    if inspect.iscoroutinefunction(invoker.invoke):
        return await invoker.invoke(tool, arguments)
    result = await asyncio.to_thread(invoker.invoke, tool, arguments)
    if inspect.isawaitable(result):
        result = await result
    return result


# ---------------------------------------------------------------------------
# TOOL_CALL
# ---------------------------------------------------------------------------


async def execute_tool_call(
    action: AgentAction, context: AgentContext, runtime: ExecutionRuntime
) -> ActionResult:
    started = time.monotonic()
    params = action.params
    name = params.tool_name
    arguments = dict(params.tool_params)
    sink = context.event_sink

    tool = runtime.catalog.resolve(name)
    if tool is None:
        return ActionResult.failure(
            action, f"tool not found: {name}", ErrorKind.TOOL_NOT_FOUND,
            duration_ms=_elapsed_ms(started), toolName=name, params=arguments,
        )

    execution_id = uuid.uuid4().hex
    manual = context.mode is AgentMode.MANUAL
    if manual:
        await runtime.confirmation.register(execution_id)

    publish_event(
        sink,
        events.TOOL_CALL,
        f"calling tool {name}",
        {
            "toolExecutionId": execution_id,
            "toolName": name,
            "params": arguments,
            "requiresConfirmation": manual,
            "mode": context.mode.value,
            "reasoning": action.reasoning,
            "conversationId": context.conversation_id,
        },
    )

    def _fail(message: str, kind: ErrorKind) -> ActionResult:
        publish_event(
            sink,
            events.TOOL_RESULT,
            message,
            {"toolExecutionId": execution_id, "toolName": name, "success": False, "error": message},
        )
        return ActionResult.failure(
            action, message, kind,
            duration_ms=_elapsed_ms(started),
            toolExecutionId=execution_id, toolName=name, params=arguments,
        )

    if manual:
        decision = await runtime.confirmation.wait(execution_id, runtime.config.confirm_timeout_s)
        if decision is ConfirmationDecision.TIMEOUT:
            logger.info("Tool %s not confirmed within %.0fs", name, runtime.config.confirm_timeout_s)
            return _fail("user rejected (confirmation timeout)", ErrorKind.CONFIRMATION_TIMEOUT)
        if decision is not ConfirmationDecision.APPROVED:
            logger.info("Tool %s rejected by user", name)
            return _fail("user rejected the tool call", ErrorKind.USER_REJECTED)

    if context.enabled_tools is not None and name not in context.enabled_tools:
        return _fail(f"tool not enabled for this conversation: {name}", ErrorKind.TOOL_NOT_ENABLED)

    publish_event(sink, events.TOOL_EXECUTING, f"executing {name}", {"toolExecutionId": execution_id, "toolName": name})
    try:
        raw = await _invoke_tool(runtime.invoker, tool, arguments)
    except Exception as exc:
        message = f"{type(exc).__name__}: {exc}"
        logger.warning("Tool %s failed: %s", name, message)
        context.tool_call_history.append(
            ToolCallRecord(
                tool_name=name, params=arguments, result=None, success=False,
                error=message, duration_ms=_elapsed_ms(started), tool_execution_id=execution_id,
            )
        )
        return _fail(message, ErrorKind.TOOL_CALL_ERROR)

    text = normalize_tool_output(raw)
    duration_ms = _elapsed_ms(started)
    context.tool_call_history.append(
        ToolCallRecord(
            tool_name=name, params=arguments, result=text, success=True,
            duration_ms=duration_ms, tool_execution_id=execution_id,
        )
    )
    publish_event(
        sink,
        events.TOOL_RESULT,
        f"tool {name} finished",
        {
            "toolExecutionId": execution_id,
            "toolName": name,
            "success": True,
            "result": truncate(text, _EVENT_RESULT_CHARS),
            "durationMs": duration_ms,
        },
    )
    logger.info("Tool %s finished in %d ms (%d chars)", name, duration_ms, len(text))
    return ActionResult.ok(
        action, text, duration_ms=duration_ms,
        toolExecutionId=execution_id, toolName=name, params=arguments, resultStr=text,
    )


# ---------------------------------------------------------------------------
# RETRIEVE
# ---------------------------------------------------------------------------


async def execute_retrieve(
    action: AgentAction, context: AgentContext, runtime: ExecutionRuntime
) -> ActionResult:
    started = time.monotonic()
    params = action.params
    query = params.query.strip() or action.reasoning.strip()
    knowledge_ids = list(params.knowledge_ids or context.knowledge_ids)

    if runtime.retrieval is None:
        return ActionResult.failure(
            action, "no retrieval service configured", ErrorKind.RETRIEVE_ERROR,
            duration_ms=_elapsed_ms(started), query=query,
        )

    limits = RetrievalLimits(
        max_results=params.max_results or RetrievalLimits.max_results,
        similarity_threshold=params.similarity_threshold,
    )
    publish_event(
        context.event_sink,
        events.RETRIEVING,
        f"searching knowledge: {truncate(query, 80)}",
        {"query": query, "knowledgeIds": knowledge_ids},
    )
    try:
        result = await runtime.retrieval.retrieve(query, knowledge_ids, limits)
    except Exception as exc:
        message = f"{type(exc).__name__}: {exc}"
        logger.warning("Retrieval failed for %r: %s", query, message)
        return ActionResult.failure(
            action, message, ErrorKind.RETRIEVE_ERROR,
            duration_ms=_elapsed_ms(started), query=query, knowledgeIds=knowledge_ids,
        )

    duration_ms = _elapsed_ms(started)
    context.retrieve_history.append(
        RetrieveRecord(
            query=query,
            knowledge_ids=knowledge_ids,
            result_count=result.count,
            titles=[d.title for d in result.documents if d.title],
            duration_ms=duration_ms,
        )
    )
    return ActionResult.ok(
        action, result, duration_ms=duration_ms,
        query=query, knowledgeIds=knowledge_ids, resultCount=result.count,
    )


# ---------------------------------------------------------------------------
# GENERATE
# ---------------------------------------------------------------------------


async def execute_generate(
    action: AgentAction, context: AgentContext, runtime: ExecutionRuntime
) -> ActionResult:
    started = time.monotonic()
    params = action.params
    config = runtime.config
    model = model_for(context, config)

    messages: list[dict[str, str]] = [
        {"role": "system", "content": params.system_prompt or DEFAULT_GENERATE_SYSTEM_PROMPT}
    ]
    messages.extend(context.recent_messages(config.generate_history_messages))
    messages.append({"role": "user", "content": params.prompt})

    publish_event(context.event_sink, events.GENERATING, "generating answer", {"model": model})
    try:
        if context.stream_sink is not None:
            call = runtime.generator.agenerate_streaming(
                model, messages, sink=context.stream_sink, temperature=params.temperature
            )
        else:
            call = runtime.generator.agenerate(model, messages, temperature=params.temperature)
        text = await asyncio.wait_for(call, timeout=config.generation_timeout_s)
    except asyncio.TimeoutError:
        return ActionResult.failure(
            action, f"generation timed out after {config.generation_timeout_s:.0f}s",
            ErrorKind.GENERATE_ERROR, duration_ms=_elapsed_ms(started), model=model,
        )
    except Exception as exc:
        logger.warning("Generation failed: %s", exc)
        return ActionResult.failure(
            action, f"{type(exc).__name__}: {exc}", ErrorKind.GENERATE_ERROR,
            duration_ms=_elapsed_ms(started), model=model,
        )

    if not text or not text.strip():
        return ActionResult.failure(
            action, "model returned an empty answer", ErrorKind.GENERATE_ERROR,
            duration_ms=_elapsed_ms(started), model=model,
        )
    return ActionResult.ok(action, text, duration_ms=_elapsed_ms(started), model=model)


# ---------------------------------------------------------------------------
# DIRECT_RESPONSE / COMPLETE
# ---------------------------------------------------------------------------


def split_tokens(content: str) -> list[str]:
    """Word and whitespace runs, in order; joining them restores *content*."""
    return _TOKEN_PATTERN.findall(content)


async def execute_direct_response(
    action: AgentAction, context: AgentContext, runtime: ExecutionRuntime
) -> ActionResult:
    started = time.monotonic()
    params = action.params
    content = params.content
    sink = context.stream_sink

    if sink is not None:
        low_ms, high_ms = runtime.config.direct_token_delay_ms
        emitted: list[str] = []
        try:
            sink.on_start()
            for index, token in enumerate(split_tokens(content)):
                check = index % _STOP_CHECK_EVERY == 0
                if check and await stop_requested(runtime.stop_signal, context.request_id):
                    partial = "".join(emitted)
                    sink.on_complete(partial)
                    return ActionResult.failure(
                        action, "response stopped by user", ErrorKind.CANCELLED,
                        duration_ms=_elapsed_ms(started), emitted=partial,
                    )
                sink.on_token(token)
                emitted.append(token)
                await asyncio.sleep(random.uniform(low_ms, high_ms) / 1000.0)
            sink.on_complete(content)
        except Exception as exc:
            logger.warning("Streaming the response failed after %d tokens: %s", len(emitted), exc)
            return ActionResult.failure(
                action, f"{type(exc).__name__}: {exc}", ErrorKind.DIRECT_RESPONSE_ERROR,
                duration_ms=_elapsed_ms(started), emitted="".join(emitted),
            )
        publish_event(
            context.event_sink, events.STREAM_COMPLETE, None, {"length": len(content)}
        )

    publish_event(
        context.event_sink,
        events.MESSAGE,
        content,
        {"content": content, "isComplete": params.is_complete},
    )
    return ActionResult.ok(
        action, content, duration_ms=_elapsed_ms(started), isComplete=params.is_complete
    )


async def execute_complete(
    action: AgentAction, context: AgentContext, runtime: ExecutionRuntime
) -> ActionResult:
    summary = action.params.summary
    if not summary and context.last_action_success:
        summary = normalize_tool_output(context.last_action_data)
    return ActionResult.ok(action, summary)
