"""Core data types shared by every stage of the loop.

``AgentAction`` and its per-kind payloads are pydantic models so the decision
object coming out of the model is validated at the parse boundary. Results and
loop records are plain dataclasses, built once and never mutated.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AgentMode(str, Enum):
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class ActionKind(str, Enum):
    """Closed set of operations the agent can choose in one step."""

    TOOL_CALL = "TOOL_CALL"
    RETRIEVE = "RETRIEVE"
    GENERATE = "GENERATE"
    DIRECT_RESPONSE = "DIRECT_RESPONSE"
    COMPLETE = "COMPLETE"


class AgentState(str, Enum):
    INITIAL = "INITIAL"
    THINKING = "THINKING"
    EXECUTING = "EXECUTING"
    OBSERVING = "OBSERVING"
    REFLECTING = "REFLECTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ErrorKind(str, Enum):
    TOOL_CALL_ERROR = "TOOL_CALL_ERROR"
    RETRIEVE_ERROR = "RETRIEVE_ERROR"
    GENERATE_ERROR = "GENERATE_ERROR"
    DIRECT_RESPONSE_ERROR = "DIRECT_RESPONSE_ERROR"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_NOT_ENABLED = "TOOL_NOT_ENABLED"
    USER_REJECTED = "USER_REJECTED"
    CONFIRMATION_TIMEOUT = "CONFIRMATION_TIMEOUT"
    EXCEPTION = "EXCEPTION"
    CANCELLED = "CANCELLED"
    SUMMARY_ERROR = "SUMMARY_ERROR"


class TerminationReason(str, Enum):
    COMPLETED = "COMPLETED"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    NO_ACTIONS = "NO_ACTIONS"
    ACTION_FAILED = "ACTION_FAILED"
    EXCEPTION = "EXCEPTION"
    USER_STOPPED = "USER_STOPPED"


# ---------------------------------------------------------------------------
# Action payloads
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ToolCallParams(_Payload):
    tool_name: str = Field(alias="toolName", min_length=1)
    tool_params: dict[str, Any] = Field(default_factory=dict, alias="toolParams")


class RetrieveParams(_Payload):
    query: str = ""
    knowledge_ids: list[str] = Field(default_factory=list, alias="knowledgeIds")
    max_results: int | None = Field(default=None, alias="maxResults", ge=1)
    similarity_threshold: float | None = Field(
        default=None, alias="similarityThreshold", ge=0.0, le=1.0
    )


class GenerateParams(_Payload):
    prompt: str = Field(min_length=1)
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)


class DirectResponseParams(_Payload):
    content: str = Field(min_length=1)
    is_complete: bool = Field(default=True, alias="isComplete")


class CompleteParams(_Payload):
    summary: str = ""


ActionParams = Union[
    ToolCallParams, RetrieveParams, GenerateParams, DirectResponseParams, CompleteParams
]

PARAMS_MODEL_FOR_KIND: dict[ActionKind, type[_Payload]] = {
    ActionKind.TOOL_CALL: ToolCallParams,
    ActionKind.RETRIEVE: RetrieveParams,
    ActionKind.GENERATE: GenerateParams,
    ActionKind.DIRECT_RESPONSE: DirectResponseParams,
    ActionKind.COMPLETE: CompleteParams,
}


def _new_action_id() -> str:
    return uuid.uuid4().hex


class AgentAction(BaseModel):
    """One proposed step. Exactly one payload, matching ``kind``."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_action_id)
    kind: ActionKind
    name: str = ""
    reasoning: str = ""
    params: ActionParams

    @model_validator(mode="before")
    @classmethod
    def _coerce_params(cls, data: Any) -> Any:
        # A raw dict payload is validated against the model its kind names,
        # never against whichever union member happens to fit.
        if isinstance(data, dict) and isinstance(data.get("params"), dict):
            try:
                kind = ActionKind(data.get("kind"))
            except ValueError:
                return data
            data = dict(data)
            data["params"] = PARAMS_MODEL_FOR_KIND[kind].model_validate(data["params"])
        return data

    @model_validator(mode="after")
    def _params_match_kind(self) -> "AgentAction":
        expected = PARAMS_MODEL_FOR_KIND[self.kind]
        if type(self.params) is not expected:
            raise ValueError(
                f"{self.kind.value} action requires {expected.__name__}, "
                f"got {type(self.params).__name__}"
            )
        return self

    @property
    def tool_name(self) -> str | None:
        if isinstance(self.params, ToolCallParams):
            return self.params.tool_name
        return None

    @property
    def is_terminal(self) -> bool:
        """Final-answer action: a completed direct response or the legacy marker."""
        if self.kind is ActionKind.COMPLETE:
            return True
        return isinstance(self.params, DirectResponseParams) and self.params.is_complete

    # -- convenience constructors ----------------------------------------

    @classmethod
    def tool_call(
        cls, tool_name: str, params: dict[str, Any] | None = None, *, reasoning: str = ""
    ) -> "AgentAction":
        return cls(
            kind=ActionKind.TOOL_CALL,
            name=tool_name,
            reasoning=reasoning,
            params=ToolCallParams(tool_name=tool_name, tool_params=params or {}),
        )

    @classmethod
    def retrieve(
        cls,
        query: str,
        knowledge_ids: list[str] | None = None,
        *,
        max_results: int | None = None,
        reasoning: str = "",
    ) -> "AgentAction":
        return cls(
            kind=ActionKind.RETRIEVE,
            name="retrieve",
            reasoning=reasoning,
            params=RetrieveParams(
                query=query, knowledge_ids=knowledge_ids or [], max_results=max_results
            ),
        )

    @classmethod
    def generate(
        cls,
        prompt: str,
        *,
        system_prompt: str | None = None,
        temperature: float | None = None,
        name: str = "generate",
        reasoning: str = "",
    ) -> "AgentAction":
        return cls(
            kind=ActionKind.GENERATE,
            name=name,
            reasoning=reasoning,
            params=GenerateParams(
                prompt=prompt, system_prompt=system_prompt, temperature=temperature
            ),
        )

    @classmethod
    def direct_response(
        cls, content: str, *, is_complete: bool = True, reasoning: str = ""
    ) -> "AgentAction":
        return cls(
            kind=ActionKind.DIRECT_RESPONSE,
            name="direct_response",
            reasoning=reasoning,
            params=DirectResponseParams(content=content, is_complete=is_complete),
        )

    @classmethod
    def complete(cls, summary: str = "") -> "AgentAction":
        return cls(kind=ActionKind.COMPLETE, name="complete", params=CompleteParams(summary=summary))


@dataclass(frozen=True)
class Decision:
    """Parsed thinking output: the model's reasoning plus its action batch."""

    thinking: str
    actions: list[AgentAction]
    repaired: bool = False


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one executed action."""

    action: AgentAction
    success: bool
    data: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            raise ValueError("successful ActionResult cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("failed ActionResult requires an error message")

    @classmethod
    def ok(
        cls, action: AgentAction, data: Any, *, duration_ms: int = 0, **metadata: Any
    ) -> "ActionResult":
        return cls(action=action, success=True, data=data, duration_ms=duration_ms, metadata=metadata)

    @classmethod
    def failure(
        cls,
        action: AgentAction,
        error: str,
        kind: ErrorKind,
        *,
        duration_ms: int = 0,
        **metadata: Any,
    ) -> "ActionResult":
        return cls(
            action=action,
            success=False,
            error=error,
            error_kind=kind,
            duration_ms=duration_ms,
            metadata=metadata,
        )

    @property
    def kind(self) -> ActionKind:
        return self.action.kind

    def to_prompt_text(self, output_chars: int = 500) -> str:
        from react_agent.formatting import format_action_result

        return format_action_result(self, output_chars)


@dataclass(frozen=True)
class ReflectionResult:
    goal_achieved: bool = False
    should_continue: bool = False
    should_retry: bool = False
    needs_summary: bool = False
    retry_reason: str | None = None
    failure_reason: str | None = None
    failure_kind: ErrorKind | None = None
    summary: str = ""

    def __post_init__(self) -> None:
        if self.goal_achieved and self.should_retry:
            raise ValueError("a reflection cannot both achieve the goal and retry")
        if (self.goal_achieved or self.should_retry) and self.should_continue:
            raise ValueError("achieved or retry reflections do not also continue")

    @classmethod
    def achieved(cls, *, needs_summary: bool = False, summary: str = "") -> "ReflectionResult":
        return cls(goal_achieved=True, needs_summary=needs_summary, summary=summary)

    @classmethod
    def retry(
        cls, reason: str, kind: ErrorKind | None = None, *, summary: str = ""
    ) -> "ReflectionResult":
        return cls(should_retry=True, retry_reason=reason, failure_kind=kind, summary=summary)

    @classmethod
    def keep_going(cls, summary: str = "") -> "ReflectionResult":
        return cls(should_continue=True, summary=summary)

    @classmethod
    def abandon(
        cls, reason: str, kind: ErrorKind | None = None, *, summary: str = ""
    ) -> "ReflectionResult":
        return cls(failure_reason=reason, failure_kind=kind, summary=summary or reason)


@dataclass(frozen=True)
class ExecutionRecord:
    """Snapshot of a finished run: history, counters, final state."""

    messages: list[dict[str, str]]
    iterations: int
    elapsed_ms: int
    final_state: AgentState
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ObservationResult:
    should_terminate: bool
    reason: TerminationReason | None = None
    record: ExecutionRecord | None = None

    @classmethod
    def continue_loop(cls) -> "ObservationResult":
        return cls(should_terminate=False)

    @classmethod
    def terminate(cls, reason: TerminationReason, record: ExecutionRecord) -> "ObservationResult":
        return cls(should_terminate=True, reason=reason, record=record)


@dataclass
class FinalResult:
    """What ``ReActLoop.execute`` returns. Never raised, always populated."""

    success: bool
    reason: TerminationReason
    answer: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    record: ExecutionRecord | None = None
    last_results: list[ActionResult] = field(default_factory=list)

    @property
    def iterations(self) -> int:
        return self.record.iterations if self.record else 0

    @property
    def messages(self) -> list[dict[str, str]]:
        return self.record.messages if self.record else []
