"""Per-turn mutable agent context."""

from __future__ import annotations

import threading
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from react_agent.collaborators import EventSink, StreamSink
from react_agent.config import ThinkingOptions
from react_agent.errors import ContextBusyError
from react_agent.models import ActionResult, AgentAction, AgentMode, ErrorKind


@dataclass
class ToolCallRecord:
    tool_name: str
    params: dict[str, Any]
    result: str | None
    success: bool
    error: str | None = None
    duration_ms: int = 0
    tool_execution_id: str | None = None


@dataclass
class RetrieveRecord:
    query: str
    knowledge_ids: list[str]
    result_count: int
    titles: list[str] = field(default_factory=list)
    duration_ms: int = 0


@dataclass
class AgentContext:
    """State of one conversation turn, owned by exactly one loop driver.

    ``iterations`` only moves forward through ``bump_iteration``. The
    last-action fields are written as a group by ``record_outcome`` so that
    success data and error details are never set together.
    """

    conversation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    messages: list[dict[str, str]] = field(default_factory=list)
    mode: AgentMode = AgentMode.AUTO
    model_id: str | None = None
    enabled_groups: list[str] | None = None
    enabled_tools: list[str] | None = None
    knowledge_ids: list[str] = field(default_factory=list)
    initial_knowledge: str | None = None
    thinking: ThinkingOptions = field(default_factory=ThinkingOptions)

    iterations: int = 0
    last_action_success: bool | None = None
    last_action_data: Any = None
    last_action_error: str | None = None
    last_action_error_kind: ErrorKind | None = None

    tool_call_history: list[ToolCallRecord] = field(default_factory=list)
    retrieve_history: list[RetrieveRecord] = field(default_factory=list)
    action_history: list[list[ActionResult]] = field(default_factory=list)

    event_sink: EventSink | None = field(default=None, repr=False)
    stream_sink: StreamSink | None = field(default=None, repr=False)

    _claim_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )
    _claimed: bool = field(default=False, init=False, repr=False, compare=False)

    # -- ownership -------------------------------------------------------

    def claim(self) -> None:
        with self._claim_lock:
            if self._claimed:
                raise ContextBusyError(
                    f"context {self.conversation_id} is already driven by another loop"
                )
            self._claimed = True

    def release(self) -> None:
        with self._claim_lock:
            self._claimed = False

    # -- mutation helpers ------------------------------------------------

    def bump_iteration(self, to: int | None = None) -> int:
        """Advance the counter by one, or up to *to*; never backwards."""
        target = self.iterations + 1 if to is None else to
        if target > self.iterations:
            self.iterations = target
        return self.iterations

    def record_outcome(self, result: ActionResult) -> None:
        self.last_action_success = result.success
        if result.success:
            self.last_action_data = result.data
            self.last_action_error = None
            self.last_action_error_kind = None
        else:
            self.last_action_data = None
            self.last_action_error = result.error
            self.last_action_error_kind = result.error_kind

    def add_message(self, role: str, content: str) -> None:
        self.messages.append({"role": role, "content": content})

    def recent_messages(self, limit: int) -> list[dict[str, str]]:
        if limit <= 0:
            return []
        return list(self.messages[-limit:])

    def last_user_message(self) -> str | None:
        for message in reversed(self.messages):
            if message.get("role") == "user":
                return message.get("content")
        return None

    # -- persistence -----------------------------------------------------

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe persistent state. Sinks and ownership are not included."""
        return {
            "conversation_id": self.conversation_id,
            "request_id": self.request_id,
            "messages": [dict(m) for m in self.messages],
            "mode": self.mode.value,
            "model_id": self.model_id,
            "enabled_groups": self.enabled_groups,
            "enabled_tools": self.enabled_tools,
            "knowledge_ids": list(self.knowledge_ids),
            "initial_knowledge": self.initial_knowledge,
            "thinking": asdict(self.thinking),
            "iterations": self.iterations,
            "last_action_success": self.last_action_success,
            "last_action_data": _jsonable(self.last_action_data),
            "last_action_error": self.last_action_error,
            "last_action_error_kind": (
                self.last_action_error_kind.value if self.last_action_error_kind else None
            ),
            "tool_call_history": [asdict(r) for r in self.tool_call_history],
            "retrieve_history": [asdict(r) for r in self.retrieve_history],
            "action_history": [
                [_result_to_dict(r) for r in batch] for batch in self.action_history
            ],
        }

    @classmethod
    def from_snapshot(cls, snapshot: dict[str, Any]) -> "AgentContext":
        kind = snapshot.get("last_action_error_kind")
        return cls(
            conversation_id=snapshot["conversation_id"],
            request_id=snapshot.get("request_id") or uuid.uuid4().hex,
            messages=list(snapshot.get("messages", [])),
            mode=AgentMode(snapshot.get("mode", AgentMode.AUTO.value)),
            model_id=snapshot.get("model_id"),
            enabled_groups=snapshot.get("enabled_groups"),
            enabled_tools=snapshot.get("enabled_tools"),
            knowledge_ids=list(snapshot.get("knowledge_ids", [])),
            initial_knowledge=snapshot.get("initial_knowledge"),
            thinking=ThinkingOptions(**snapshot.get("thinking", {})),
            iterations=int(snapshot.get("iterations", 0)),
            last_action_success=snapshot.get("last_action_success"),
            last_action_data=snapshot.get("last_action_data"),
            last_action_error=snapshot.get("last_action_error"),
            last_action_error_kind=ErrorKind(kind) if kind else None,
            tool_call_history=[ToolCallRecord(**r) for r in snapshot.get("tool_call_history", [])],
            retrieve_history=[RetrieveRecord(**r) for r in snapshot.get("retrieve_history", [])],
            action_history=[
                [_result_from_dict(r) for r in batch]
                for batch in snapshot.get("action_history", [])
            ],
        )


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)


def _result_to_dict(result: ActionResult) -> dict[str, Any]:
    return {
        "action": result.action.model_dump(mode="json"),
        "success": result.success,
        "data": _jsonable(result.data),
        "error": result.error,
        "error_kind": result.error_kind.value if result.error_kind else None,
        "duration_ms": result.duration_ms,
        "metadata": _jsonable(result.metadata),
    }


def _result_from_dict(raw: dict[str, Any]) -> ActionResult:
    kind = raw.get("error_kind")
    return ActionResult(
        action=AgentAction.model_validate(raw["action"]),
        success=bool(raw["success"]),
        data=raw.get("data"),
        error=raw.get("error"),
        error_kind=ErrorKind(kind) if kind else None,
        duration_ms=int(raw.get("duration_ms", 0)),
        metadata=dict(raw.get("metadata") or {}),
    )
