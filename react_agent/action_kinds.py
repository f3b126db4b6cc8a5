"""The single table of supported action kinds.

Parsing, execution and prompt rendering all look up behaviour here, so adding
or changing a kind happens in one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import ValidationError

from react_agent import executors
from react_agent.collaborators import ToolCatalog
from react_agent.errors import DecisionParseError, ParseErrorCode
from react_agent.models import (
    ActionKind,
    ActionResult,
    AgentAction,
    CompleteParams,
    DirectResponseParams,
    GenerateParams,
    RetrieveParams,
    ToolCallParams,
)

if TYPE_CHECKING:
    from react_agent.context import AgentContext
    from react_agent.executors import ExecutionRuntime

Executor = Callable[[AgentAction, "AgentContext", "ExecutionRuntime"], Awaitable[ActionResult]]


@dataclass(frozen=True)
class ActionKindSpec:
    kind: ActionKind
    payload_key: str
    params_model: type
    payload_schema: dict[str, Any]
    build: Callable[[dict[str, Any], ToolCatalog | None, str], Any]
    default_name: Callable[[Any], str]
    describe: Callable[[AgentAction], str]
    execute: Executor


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def _validate_model(model: type, payload: dict[str, Any], payload_key: str) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise DecisionParseError(
            ParseErrorCode.PARAMS_INVALID,
            f"{payload_key} is invalid: {_validation_message(exc)}",
            original=exc,
        ) from exc


# -- builders ----------------------------------------------------------------


def _build_tool_call(
    payload: dict[str, Any], catalog: ToolCatalog | None, reasoning: str
) -> ToolCallParams:
    name = payload.get("toolName") or payload.get("tool_name") or payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise DecisionParseError(ParseErrorCode.TOOL_NAME_MISSING, "toolCallParams.toolName is required")
    args = payload.get("toolParams", payload.get("tool_params", payload.get("arguments", {})))
    if args is None:
        args = {}
    if not isinstance(args, dict):
        raise DecisionParseError(
            ParseErrorCode.PARAMS_INVALID, "toolCallParams.toolParams must be an object"
        )
    name = name.strip()
    if catalog is not None and catalog.resolve(name) is None:
        available = ", ".join(t.name for t in catalog.list_available()) or "(none)"
        raise DecisionParseError(
            ParseErrorCode.TOOL_NOT_FOUND,
            f"tool {name!r} does not exist (available: {available})",
        )
    return ToolCallParams(tool_name=name, tool_params=args)


def _build_retrieve(
    payload: dict[str, Any], catalog: ToolCatalog | None, reasoning: str
) -> RetrieveParams:
    params = _validate_model(RetrieveParams, payload, "ragRetrieveParams")
    if not params.query.strip() and not reasoning.strip():
        raise DecisionParseError(
            ParseErrorCode.PARAMS_INVALID, "ragRetrieveParams.query is required"
        )
    return params


def _build_generate(
    payload: dict[str, Any], catalog: ToolCatalog | None, reasoning: str
) -> GenerateParams:
    return _validate_model(GenerateParams, payload, "llmGenerateParams")


def _build_direct(
    payload: dict[str, Any], catalog: ToolCatalog | None, reasoning: str
) -> DirectResponseParams:
    return _validate_model(DirectResponseParams, payload, "directResponseParams")


def _build_complete(
    payload: dict[str, Any], catalog: ToolCatalog | None, reasoning: str
) -> CompleteParams:
    return _validate_model(CompleteParams, payload, "completeParams")


# -- describers ----------------------------------------------------------------


def _short(text: str | None, limit: int = 200) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "..."


def _describe_tool(action: AgentAction) -> str:
    from react_agent.formatting import normalize_tool_output

    params = action.params
    return f"{params.tool_name}({_short(normalize_tool_output(params.tool_params))})"


def _describe_retrieve(action: AgentAction) -> str:
    params = action.params
    scope = f" in {', '.join(params.knowledge_ids)}" if params.knowledge_ids else ""
    return f"query={_short(params.query or action.reasoning)!r}{scope}"


def _describe_generate(action: AgentAction) -> str:
    return f"prompt={_short(action.params.prompt)!r}"


def _describe_direct(action: AgentAction) -> str:
    return f"content={_short(action.params.content)!r}"


def _describe_complete(action: AgentAction) -> str:
    return f"summary={_short(action.params.summary)!r}"


_OPEN_OBJECT: dict[str, Any] = {"type": "object"}

ACTION_KINDS: dict[ActionKind, ActionKindSpec] = {
    ActionKind.TOOL_CALL: ActionKindSpec(
        kind=ActionKind.TOOL_CALL,
        payload_key="toolCallParams",
        params_model=ToolCallParams,
        payload_schema={
            "type": "object",
            "properties": {"toolName": {"type": "string"}, "toolParams": _OPEN_OBJECT},
            "required": ["toolName", "toolParams"],
            "additionalProperties": False,
        },
        build=_build_tool_call,
        default_name=lambda p: p.tool_name,
        describe=_describe_tool,
        execute=executors.execute_tool_call,
    ),
    ActionKind.RETRIEVE: ActionKindSpec(
        kind=ActionKind.RETRIEVE,
        payload_key="ragRetrieveParams",
        params_model=RetrieveParams,
        payload_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "knowledgeIds": {"type": "array", "items": {"type": "string"}},
                "maxResults": {"type": "integer"},
                "similarityThreshold": {"type": "number"},
            },
            "required": ["query"],
            "additionalProperties": False,
        },
        build=_build_retrieve,
        default_name=lambda p: "retrieve",
        describe=_describe_retrieve,
        execute=executors.execute_retrieve,
    ),
    ActionKind.GENERATE: ActionKindSpec(
        kind=ActionKind.GENERATE,
        payload_key="llmGenerateParams",
        params_model=GenerateParams,
        payload_schema={
            "type": "object",
            "properties": {
                "prompt": {"type": "string"},
                "systemPrompt": {"type": "string"},
                "temperature": {"type": "number"},
            },
            "required": ["prompt"],
            "additionalProperties": False,
        },
        build=_build_generate,
        default_name=lambda p: "generate",
        describe=_describe_generate,
        execute=executors.execute_generate,
    ),
    ActionKind.DIRECT_RESPONSE: ActionKindSpec(
        kind=ActionKind.DIRECT_RESPONSE,
        payload_key="directResponseParams",
        params_model=DirectResponseParams,
        payload_schema={
            "type": "object",
            "properties": {"content": {"type": "string"}, "isComplete": {"type": "boolean"}},
            "required": ["content"],
            "additionalProperties": False,
        },
        build=_build_direct,
        default_name=lambda p: "direct_response",
        describe=_describe_direct,
        execute=executors.execute_direct_response,
    ),
    ActionKind.COMPLETE: ActionKindSpec(
        kind=ActionKind.COMPLETE,
        payload_key="completeParams",
        params_model=CompleteParams,
        payload_schema={
            "type": "object",
            "properties": {"summary": {"type": "string"}},
            "additionalProperties": False,
        },
        build=_build_complete,
        default_name=lambda p: "complete",
        describe=_describe_complete,
        execute=executors.execute_complete,
    ),
}

_KIND_ALIASES: dict[str, ActionKind] = {
    "LLM_GENERATE": ActionKind.GENERATE,
    "RAG_RETRIEVE": ActionKind.RETRIEVE,
    "RAG": ActionKind.RETRIEVE,
    "TOOL": ActionKind.TOOL_CALL,
    "DIRECT": ActionKind.DIRECT_RESPONSE,
    "RESPOND": ActionKind.DIRECT_RESPONSE,
}


def coerce_kind(raw: Any) -> ActionKind | None:
    """Map a model-supplied discriminator onto the closed kind set."""
    if isinstance(raw, ActionKind):
        return raw
    if not isinstance(raw, str):
        return None
    token = raw.strip().upper().replace("-", "_").replace(" ", "_")
    try:
        return ActionKind(token)
    except ValueError:
        return _KIND_ALIASES.get(token)


def describe_action(action: AgentAction) -> str:
    return ACTION_KINDS[action.kind].describe(action)
