"""Interfaces the loop consumes, plus the small in-process implementations.

The loop only ever talks to these protocols. Production deployments plug in
their own tool transport, retrieval pipeline and storage; the in-process
versions here back the CLI and the test suite.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from react_agent.context import AgentContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data carried across the interfaces
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    group: str | None = None

    def render(self) -> str:
        """Prompt rendering: name, description and one line per parameter."""
        lines = [f"- {self.name}: {self.description or '(no description)'}"]
        props = self.parameters.get("properties", {}) if self.parameters else {}
        required = set(self.parameters.get("required", [])) if self.parameters else set()
        for pname, schema in props.items():
            ptype = schema.get("type", "any") if isinstance(schema, dict) else "any"
            flag = "required" if pname in required else "optional"
            desc = schema.get("description", "") if isinstance(schema, dict) else ""
            suffix = f" - {desc}" if desc else ""
            lines.append(f"    {pname} ({ptype}, {flag}){suffix}")
        return "\n".join(lines)


@dataclass(frozen=True)
class RetrievedDocument:
    content: str
    title: str = ""
    score: float | None = None
    source_id: str | None = None


@dataclass(frozen=True)
class RetrievalLimits:
    max_results: int = 5
    similarity_threshold: float | None = None


@dataclass(frozen=True)
class RetrievalResult:
    documents: list[RetrievedDocument] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.documents)

    @property
    def scores(self) -> list[float | None]:
        return [d.score for d in self.documents]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class StreamSink(Protocol):
    """Token-level receiver. Callbacks must return quickly and never touch context."""

    def on_start(self) -> None: ...

    def on_token(self, token: str) -> None: ...

    def on_reasoning(self, text: str) -> None: ...

    def on_complete(self, full_text: str) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class TextGenerator(Protocol):
    async def agenerate(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
    ) -> str: ...

    async def agenerate_streaming(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        schema: dict[str, Any] | None = None,
        sink: StreamSink | None = None,
        temperature: float | None = None,
    ) -> str: ...


class ToolCatalog(Protocol):
    def resolve(self, name: str) -> ToolDescriptor | None: ...

    def list_available(
        self,
        groups: list[str] | None = None,
        names: list[str] | None = None,
    ) -> list[ToolDescriptor]: ...


class ToolInvoker(Protocol):
    """May be sync or async; the dispatcher handles both."""

    def invoke(self, tool: ToolDescriptor, arguments: dict[str, Any]) -> Any: ...


class RetrievalService(Protocol):
    async def retrieve(
        self,
        query: str,
        knowledge_ids: list[str],
        limits: RetrievalLimits,
    ) -> RetrievalResult: ...


class ContextStore(Protocol):
    def save(self, context: AgentContext) -> None: ...

    def load(self, conversation_id: str) -> AgentContext | None: ...


class EventSink(Protocol):
    """Fire-and-forget progress channel."""

    def publish(
        self,
        kind: str,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None: ...


# ---------------------------------------------------------------------------
# In-process implementations
# ---------------------------------------------------------------------------


class InMemoryContextStore:
    """Keeps the latest snapshot per conversation id."""

    def __init__(self) -> None:
        self._snapshots: dict[str, dict[str, Any]] = {}

    def save(self, context: AgentContext) -> None:
        self._snapshots[context.conversation_id] = copy.deepcopy(context.to_snapshot())
        logger.debug(
            "Saved context %s (iterations=%d, messages=%d)",
            context.conversation_id,
            context.iterations,
            len(context.messages),
        )

    def load(self, conversation_id: str) -> AgentContext | None:
        from react_agent.context import AgentContext

        snapshot = self._snapshots.get(conversation_id)
        if snapshot is None:
            return None
        return AgentContext.from_snapshot(copy.deepcopy(snapshot))

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._snapshots


class CallbackStreamSink:
    """StreamSink built from optional plain callables."""

    def __init__(
        self,
        on_token: Callable[[str], None] | None = None,
        *,
        on_reasoning: Callable[[str], None] | None = None,
        on_start: Callable[[], None] | None = None,
        on_complete: Callable[[str], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._on_token = on_token
        self._on_reasoning = on_reasoning
        self._on_start = on_start
        self._on_complete = on_complete
        self._on_error = on_error

    def on_start(self) -> None:
        if self._on_start:
            self._on_start()

    def on_token(self, token: str) -> None:
        if self._on_token:
            self._on_token(token)

    def on_reasoning(self, text: str) -> None:
        if self._on_reasoning:
            self._on_reasoning(text)

    def on_complete(self, full_text: str) -> None:
        if self._on_complete:
            self._on_complete(full_text)

    def on_error(self, error: BaseException) -> None:
        if self._on_error:
            self._on_error(error)


class CollectingStreamSink:
    """Records everything it receives. Handy for tests and the CLI transcript."""

    def __init__(self) -> None:
        self.started = 0
        self.tokens: list[str] = []
        self.reasoning: list[str] = []
        self.completed: list[str] = []
        self.errors: list[BaseException] = []

    def on_start(self) -> None:
        self.started += 1

    def on_token(self, token: str) -> None:
        self.tokens.append(token)

    def on_reasoning(self, text: str) -> None:
        self.reasoning.append(text)

    def on_complete(self, full_text: str) -> None:
        self.completed.append(full_text)

    def on_error(self, error: BaseException) -> None:
        self.errors.append(error)

    @property
    def text(self) -> str:
        return "".join(self.tokens)
