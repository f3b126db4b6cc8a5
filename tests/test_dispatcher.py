"""Tests for react_agent.dispatcher and the per-kind executors."""

from __future__ import annotations

import asyncio
import dataclasses

import pytest

from react_agent.action_kinds import ACTION_KINDS
from react_agent.collaborators import (
    CollectingStreamSink,
    RetrievalLimits,
    RetrievalResult,
    RetrievedDocument,
)
from react_agent.confirmation import ConfirmationCoordinator, InMemoryConfirmationTransport
from react_agent.dispatcher import ActionDispatcher
from react_agent.models import ActionKind, AgentAction, AgentMode, ErrorKind
from react_agent.stop_signal import InMemoryStopSignal
from react_agent.worker_pool import ACTIONS_POOL, configure

from conftest import ScriptedGenerator


class FakeRetrieval:
    def __init__(self, documents=None, error: Exception | None = None) -> None:
        self.documents = documents or []
        self.error = error
        self.calls: list[tuple[str, list[str], RetrievalLimits]] = []

    async def retrieve(self, query, knowledge_ids, limits):
        self.calls.append((query, list(knowledge_ids), limits))
        if self.error is not None:
            raise self.error
        return RetrievalResult(documents=list(self.documents))


def _dispatcher(catalog, invoker, config, **kwargs) -> ActionDispatcher:
    generator = kwargs.pop("generator", None) or ScriptedGenerator()
    return ActionDispatcher(generator, catalog, invoker, config=config, **kwargs)


# ---------------------------------------------------------------------------
# Batch dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    @pytest.mark.asyncio
    async def test_results_keep_input_order(self, catalog, invoker, config, context):
        dispatcher = _dispatcher(catalog, invoker, config)
        actions = [
            AgentAction.tool_call("search", {"query": "a"}),
            AgentAction.tool_call("weather", {"city": "Paris"}),
            AgentAction.direct_response("done"),
        ]
        results = await dispatcher.dispatch(actions, context)
        assert [r.action.id for r in results] == [a.id for a in actions]
        assert all(r.success for r in results)
        assert results[1].data == '{"temp": 18}'
        assert context.action_history == [results]

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self, catalog, invoker, config, context):
        dispatcher = _dispatcher(catalog, invoker, config)
        actions = [
            AgentAction.tool_call("broken", {"value": "x"}),
            AgentAction.tool_call("weather", {"city": "Oslo"}),
        ]
        results = await dispatcher.dispatch(actions, context)
        assert results[0].success is False
        assert results[0].error_kind is ErrorKind.TOOL_CALL_ERROR
        assert "tool exploded" in results[0].error
        assert results[1].success is True

    @pytest.mark.asyncio
    async def test_executor_exception_becomes_failure(self, catalog, invoker, config, context, monkeypatch):
        dispatcher = _dispatcher(catalog, invoker, config)

        async def _explode(action, ctx, runtime):
            raise KeyError("missing")

        spec = ACTION_KINDS[ActionKind.GENERATE]
        monkeypatch.setitem(ACTION_KINDS, ActionKind.GENERATE, dataclasses.replace(spec, execute=_explode))
        result = await dispatcher.execute(AgentAction.generate("hi"), context)
        assert result.success is False
        assert result.error_kind is ErrorKind.EXCEPTION
        assert result.metadata["exceptionType"] == "KeyError"

    @pytest.mark.asyncio
    async def test_batch_truncated_to_limit(self, catalog, invoker, config, context):
        dispatcher = _dispatcher(catalog, invoker, config)
        actions = [AgentAction.direct_response(str(i)) for i in range(8)]
        results = await dispatcher.dispatch(actions, context)
        assert len(results) == config.max_parallel_actions

    @pytest.mark.asyncio
    async def test_empty_batch(self, catalog, invoker, config, context):
        assert await _dispatcher(catalog, invoker, config).dispatch([], context) == []
        assert context.action_history == []

    @pytest.mark.asyncio
    async def test_actions_run_concurrently_within_pool(self, catalog, config, context):
        configure(limits={ACTIONS_POOL: 2})
        peak = 0
        current = 0

        class SlowInvoker:
            async def invoke(self, tool, arguments):
                nonlocal peak, current
                current += 1
                peak = max(peak, current)
                await asyncio.sleep(0.05)
                current -= 1
                return "ok"

        dispatcher = _dispatcher(catalog, SlowInvoker(), config)
        actions = [AgentAction.tool_call("weather", {"city": str(i)}) for i in range(4)]
        results = await dispatcher.dispatch(actions, context)
        assert all(r.success for r in results)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_status_events(self, catalog, invoker, config, context, events):
        dispatcher = _dispatcher(catalog, invoker, config)
        await dispatcher.dispatch([AgentAction.direct_response("a")], context)
        await dispatcher.dispatch(
            [AgentAction.direct_response("a"), AgentAction.direct_response("b")], context
        )
        kinds = events.kinds()
        assert "agent:status:tool_executing_single" in kinds
        assert "agent:status:tool_executing_batch" in kinds


# ---------------------------------------------------------------------------
# TOOL_CALL
# ---------------------------------------------------------------------------


class TestToolCall:
    @pytest.mark.asyncio
    async def test_success_records_history_and_events(self, catalog, invoker, config, context, events):
        dispatcher = _dispatcher(catalog, invoker, config)
        result = await dispatcher.execute(AgentAction.tool_call("weather", {"city": "Paris"}), context)
        assert result.success
        assert invoker.invocations == [("weather", {"city": "Paris"})]
        record = context.tool_call_history[-1]
        assert record.tool_name == "weather"
        assert record.success is True
        assert record.tool_execution_id == result.metadata["toolExecutionId"]
        call = events.of_kind("agent:tool_call")[0]
        assert call.payload["requiresConfirmation"] is False
        assert events.of_kind("agent:tool_result")[0].payload["success"] is True

    @pytest.mark.asyncio
    async def test_unknown_tool(self, catalog, invoker, config, context):
        dispatcher = _dispatcher(catalog, invoker, config)
        result = await dispatcher.execute(AgentAction.tool_call("teleport"), context)
        assert result.error_kind is ErrorKind.TOOL_NOT_FOUND
        assert invoker.invocations == []

    @pytest.mark.asyncio
    async def test_tool_not_enabled(self, catalog, invoker, config, context):
        context.enabled_tools = ["search"]
        dispatcher = _dispatcher(catalog, invoker, config)
        result = await dispatcher.execute(AgentAction.tool_call("weather", {"city": "x"}), context)
        assert result.error_kind is ErrorKind.TOOL_NOT_ENABLED
        assert invoker.invocations == []

    @pytest.mark.asyncio
    async def test_manual_approval_runs_tool(self, catalog, invoker, config, context, events):
        transport = InMemoryConfirmationTransport()
        context.mode = AgentMode.MANUAL
        dispatcher = _dispatcher(
            catalog, invoker, config, confirmation=ConfirmationCoordinator(transport)
        )
        task = asyncio.create_task(
            dispatcher.execute(AgentAction.tool_call("weather", {"city": "Rome"}), context)
        )
        while not transport.pending_ids:
            await asyncio.sleep(0.001)
        execution_id = events.of_kind("agent:tool_call")[0].payload["toolExecutionId"]
        assert transport.pending_ids == [execution_id]
        assert await transport.approve(execution_id) is True
        result = await task
        assert result.success
        assert invoker.invocations == [("weather", {"city": "Rome"})]

    @pytest.mark.asyncio
    async def test_manual_rejection_never_invokes(self, catalog, invoker, config, context):
        transport = InMemoryConfirmationTransport()
        context.mode = AgentMode.MANUAL
        dispatcher = _dispatcher(
            catalog, invoker, config, confirmation=ConfirmationCoordinator(transport)
        )
        task = asyncio.create_task(
            dispatcher.execute(AgentAction.tool_call("weather", {"city": "Rome"}), context)
        )
        while not transport.pending_ids:
            await asyncio.sleep(0.001)
        await transport.reject(transport.pending_ids[0])
        result = await task
        assert result.error_kind is ErrorKind.USER_REJECTED
        assert invoker.invocations == []
        assert context.tool_call_history == []

    @pytest.mark.asyncio
    async def test_manual_timeout(self, catalog, invoker, config, context):
        context.mode = AgentMode.MANUAL
        dispatcher = _dispatcher(catalog, invoker, config)
        result = await dispatcher.execute(AgentAction.tool_call("weather", {"city": "Rome"}), context)
        assert result.error_kind is ErrorKind.CONFIRMATION_TIMEOUT
        assert "confirmation timeout" in result.error
        assert invoker.invocations == []

    @pytest.mark.asyncio
    async def test_sync_invoker(self, catalog, config, context):
        class SyncInvoker:
            def invoke(self, tool, arguments):
                return ["a", "b"]

        dispatcher = _dispatcher(catalog, SyncInvoker(), config)
        result = await dispatcher.execute(AgentAction.tool_call("weather", {"city": "x"}), context)
        assert result.data == '["a", "b"]'


# ---------------------------------------------------------------------------
# RETRIEVE
# ---------------------------------------------------------------------------


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_success(self, catalog, invoker, config, context):
        retrieval = FakeRetrieval([RetrievedDocument("Paris is in France", title="paris", score=0.9)])
        context.knowledge_ids = ["kb-default"]
        dispatcher = _dispatcher(catalog, invoker, config, retrieval=retrieval)
        result = await dispatcher.execute(AgentAction.retrieve("capital", max_results=3), context)
        assert result.success
        assert result.data.count == 1
        query, ids, limits = retrieval.calls[0]
        assert (query, ids, limits.max_results) == ("capital", ["kb-default"], 3)
        assert context.retrieve_history[-1].titles == ["paris"]

    @pytest.mark.asyncio
    async def test_falls_back_to_reasoning_for_query(self, catalog, invoker, config, context):
        retrieval = FakeRetrieval()
        dispatcher = _dispatcher(catalog, invoker, config, retrieval=retrieval)
        await dispatcher.execute(AgentAction.retrieve("", reasoning="the boiling point"), context)
        assert retrieval.calls[0][0] == "the boiling point"

    @pytest.mark.asyncio
    async def test_failure(self, catalog, invoker, config, context):
        dispatcher = _dispatcher(
            catalog, invoker, config, retrieval=FakeRetrieval(error=ConnectionError("down"))
        )
        result = await dispatcher.execute(AgentAction.retrieve("x"), context)
        assert result.error_kind is ErrorKind.RETRIEVE_ERROR

    @pytest.mark.asyncio
    async def test_no_service(self, catalog, invoker, config, context):
        result = await _dispatcher(catalog, invoker, config).execute(AgentAction.retrieve("x"), context)
        assert result.error_kind is ErrorKind.RETRIEVE_ERROR


# ---------------------------------------------------------------------------
# GENERATE / DIRECT_RESPONSE / COMPLETE
# ---------------------------------------------------------------------------


class TestGenerate:
    @pytest.mark.asyncio
    async def test_blocking(self, catalog, invoker, config, context):
        generator = ScriptedGenerator()
        context.add_message("user", "earlier question")
        dispatcher = _dispatcher(catalog, invoker, config, generator=generator)
        result = await dispatcher.execute(AgentAction.generate("write it"), context)
        assert result.data == "generated answer"
        messages = generator.calls[0][1]
        assert messages[1] == {"role": "user", "content": "earlier question"}
        assert messages[-1] == {"role": "user", "content": "write it"}
        assert generator.streamed == []

    @pytest.mark.asyncio
    async def test_streams_when_sink_present(self, catalog, invoker, config, context):
        generator = ScriptedGenerator()
        context.stream_sink = CollectingStreamSink()
        dispatcher = _dispatcher(catalog, invoker, config, generator=generator)
        await dispatcher.execute(AgentAction.generate("write it"), context)
        assert generator.streamed == ["generate"]
        assert context.stream_sink.text == "generated answer"

    @pytest.mark.asyncio
    async def test_generator_error(self, catalog, invoker, config, context):
        generator = ScriptedGenerator(generate=RuntimeError("provider down"))
        dispatcher = _dispatcher(catalog, invoker, config, generator=generator)
        result = await dispatcher.execute(AgentAction.generate("x"), context)
        assert result.error_kind is ErrorKind.GENERATE_ERROR

    @pytest.mark.asyncio
    async def test_empty_answer(self, catalog, invoker, config, context):
        generator = ScriptedGenerator(generate="   ")
        dispatcher = _dispatcher(catalog, invoker, config, generator=generator)
        result = await dispatcher.execute(AgentAction.generate("x"), context)
        assert result.error_kind is ErrorKind.GENERATE_ERROR


class TestDirectResponse:
    @pytest.mark.asyncio
    async def test_streams_tokens_in_order(self, catalog, invoker, config, context, events):
        context.stream_sink = CollectingStreamSink()
        dispatcher = _dispatcher(catalog, invoker, config)
        result = await dispatcher.execute(AgentAction.direct_response("Hello there, friend"), context)
        assert result.success
        assert context.stream_sink.text == "Hello there, friend"
        assert context.stream_sink.completed == ["Hello there, friend"]
        assert events.of_kind("agent:message")[0].payload["isComplete"] is True
        assert events.of_kind("agent:stream_complete")[0].payload == {"length": 19}

    @pytest.mark.asyncio
    async def test_stop_cancels_stream(self, catalog, invoker, config, context):
        stop = InMemoryStopSignal()
        await stop.request_stop(context.request_id)
        context.stream_sink = CollectingStreamSink()
        dispatcher = _dispatcher(catalog, invoker, config, stop_signal=stop)
        result = await dispatcher.execute(AgentAction.direct_response("a b c"), context)
        assert result.error_kind is ErrorKind.CANCELLED
        assert context.stream_sink.tokens == []

    @pytest.mark.asyncio
    async def test_sink_failure(self, catalog, invoker, config, context):
        class BrokenSink(CollectingStreamSink):
            def on_token(self, token):
                raise BrokenPipeError("client gone")

        context.stream_sink = BrokenSink()
        result = await _dispatcher(catalog, invoker, config).execute(
            AgentAction.direct_response("a b"), context
        )
        assert result.error_kind is ErrorKind.DIRECT_RESPONSE_ERROR

    @pytest.mark.asyncio
    async def test_without_sink(self, catalog, invoker, config, context):
        result = await _dispatcher(catalog, invoker, config).execute(
            AgentAction.direct_response("plain"), context
        )
        assert result.data == "plain"


class TestComplete:
    @pytest.mark.asyncio
    async def test_uses_last_data_when_no_summary(self, catalog, invoker, config, context):
        context.last_action_success = True
        context.last_action_data = {"temp": 18}
        result = await _dispatcher(catalog, invoker, config).execute(AgentAction.complete(), context)
        assert result.data == '{"temp": 18}'
        assert result.action.is_terminal
