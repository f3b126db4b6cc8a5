"""Shared fakes for the agent loop tests.

``ScriptedGenerator`` answers each prompt according to the stage that sent it,
recognised by the first line of the system message of the built-in templates.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from react_agent import worker_pool
from react_agent.config import AgentConfig
from react_agent.context import AgentContext
from react_agent.events import CollectingEventSink
from react_agent.tool_utils import FunctionToolCatalog, FunctionToolInvoker

_STAGE_MARKERS = (
    ("thinking", "You are an autonomous assistant"),
    ("reflection", "You review the work"),
    ("fast_response", "You answer the user's question using the tool result"),
    ("summary", "You write the final answer"),
    ("loop_guard", "You stop a repetitive lookup"),
)


def stage_of(messages: list[dict[str, str]]) -> str:
    system = next((m["content"] for m in messages if m["role"] == "system"), "")
    for stage, marker in _STAGE_MARKERS:
        if system.startswith(marker):
            return stage
    return "generate"


def decision(*actions: dict[str, Any], thinking: str = "plan") -> str:
    return json.dumps({"thinking": thinking, "actions": list(actions)})


def tool_action(tool: str, **params: Any) -> dict[str, Any]:
    return {
        "actionType": "TOOL_CALL",
        "actionName": f"call_{tool}",
        "reasoning": f"need {tool}",
        "toolCallParams": {"toolName": tool, "toolParams": params},
    }


def generate_action(prompt: str = "write the answer") -> dict[str, Any]:
    return {
        "actionType": "GENERATE",
        "actionName": "write",
        "llmGenerateParams": {"prompt": prompt},
    }


def direct_action(content: str, is_complete: bool = True) -> dict[str, Any]:
    return {
        "actionType": "DIRECT_RESPONSE",
        "actionName": "reply_user",
        "directResponseParams": {"content": content, "isComplete": is_complete},
    }


class ScriptedGenerator:
    """TextGenerator fake with one reply queue per stage.

    A queue entry may be a string or an exception instance (raised). The last
    entry of a queue repeats once the queue runs dry.
    """

    def __init__(self, **replies: Any) -> None:
        self.replies: dict[str, list[Any]] = {
            "generate": ["generated answer"],
            "fast_response": ["It is 18 degrees in Paris."],
            "summary": ["summarised answer"],
            "loop_guard": ["answer from gathered data"],
            "reflection": ['{"goalAchieved": false, "needsSummary": false}'],
        }
        for stage, value in replies.items():
            self.replies[stage] = list(value) if isinstance(value, (list, tuple)) else [value]
        self.calls: list[tuple[str, list[dict[str, str]]]] = []
        self.streamed: list[str] = []

    def stage_calls(self, stage: str) -> list[list[dict[str, str]]]:
        return [messages for s, messages in self.calls if s == stage]

    def _next(self, messages: list[dict[str, str]]) -> str:
        stage = stage_of(messages)
        self.calls.append((stage, messages))
        queue = self.replies.get(stage)
        if not queue:
            raise AssertionError(f"no scripted reply for stage {stage!r}")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def agenerate(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
    ) -> str:
        return self._next(messages)

    async def agenerate_streaming(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        schema: dict[str, Any] | None = None,
        sink: Any = None,
        temperature: float | None = None,
    ) -> str:
        text = self._next(messages)
        self.streamed.append(stage_of(messages))
        if sink is not None:
            sink.on_start()
            for i in range(0, len(text), 7):
                sink.on_token(text[i : i + 7])
            sink.on_complete(text)
        return text


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def weather(city: str) -> dict:
    """Current weather for a city."""
    return {"temp": 18}


async def search(query: str, limit: int = 3) -> str:
    """Search the web."""
    return f"results for {query}"


def broken(value: str) -> str:
    """Always fails."""
    raise RuntimeError("tool exploded")


class CountingInvoker(FunctionToolInvoker):
    def __init__(self, catalog: FunctionToolCatalog) -> None:
        super().__init__(catalog)
        self.invocations: list[tuple[str, dict[str, Any]]] = []

    async def invoke(self, tool, arguments):
        self.invocations.append((tool.name, dict(arguments)))
        return await super().invoke(tool, arguments)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_worker_pools():
    """Reset pool state between tests."""
    old_limits = dict(worker_pool._limits)
    old_enabled = worker_pool._enabled
    worker_pool._async_sems.clear()
    worker_pool._enabled = True
    yield
    worker_pool._async_sems.clear()
    worker_pool._limits.clear()
    worker_pool._limits.update(old_limits)
    worker_pool._enabled = old_enabled


@pytest.fixture()
def catalog() -> FunctionToolCatalog:
    cat = FunctionToolCatalog()
    cat.register(weather, group="web")
    cat.register(search, group="web")
    cat.register(broken, group="misc")
    return cat


@pytest.fixture()
def invoker(catalog: FunctionToolCatalog) -> CountingInvoker:
    return CountingInvoker(catalog)


@pytest.fixture()
def events() -> CollectingEventSink:
    return CollectingEventSink()


@pytest.fixture()
def context(events: CollectingEventSink) -> AgentContext:
    return AgentContext(event_sink=events)


@pytest.fixture()
def config() -> AgentConfig:
    return AgentConfig(
        confirm_timeout_s=0.2,
        generation_timeout_s=5.0,
        direct_token_delay_ms=(0, 0),
    )
