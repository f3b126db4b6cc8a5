"""Turn raw model text into a validated decision object.

Model output is unreliable: it arrives wrapped in markdown fences, surrounded
by prose, or cut off mid-object. Recovery runs in a fixed order:

1. drop non-printing control characters and try a direct ``json.loads``,
2. strip a fence wrapping the whole reply and try again,
3. scan for the first balanced ``{...}`` span with a string-aware scanner,
4. if the scan ran off the end, close whatever the scanner still has open,
5. parse again, or raise ``DecisionParseError`` with a bounded excerpt.

Validation then runs every entry of the ``actions`` array through the
action-kind table. One bad entry rejects the whole batch.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from react_agent.action_kinds import ACTION_KINDS, coerce_kind
from react_agent.collaborators import ToolCatalog
from react_agent.errors import DecisionParseError, ParseErrorCode
from react_agent.models import ActionKind, AgentAction, Decision

logger = logging.getLogger(__name__)

__all__ = [
    "DecisionParseError",
    "ParseErrorCode",
    "decision_json_schema",
    "extract_goal_check",
    "extract_json_object",
    "parse_decision",
    "parse_json_object",
    "partial_string_value",
    "remove_control_chars",
    "strip_fences",
]

DEFAULT_MAX_ACTIONS = 5

_LEADING_FENCE = re.compile(r"^```[A-Za-z]*[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```\s*\Z")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_PARTIAL_UNICODE = re.compile(r"\\u[0-9a-fA-F]{0,3}\Z")
_TRAILING_WORD = re.compile(r"[A-Za-z_]+\Z")
_TRAILING_NUMBER_PART = re.compile(r"(\d)[.eE+-]+\Z")

_CLOSERS = {"{": "}", "[": "]"}


def strip_fences(content: str) -> str:
    """Strip a markdown fence wrapping the whole reply; fences inside the text are kept."""
    content = content.strip()
    if not content.startswith("```"):
        return content
    content = _LEADING_FENCE.sub("", content, count=1)
    content = _TRAILING_FENCE.sub("", content, count=1)
    return content.strip()


def remove_control_chars(content: str) -> str:
    """Drop control characters other than tab, newline and carriage return."""
    return _CONTROL_CHARS.sub("", content)


# ---------------------------------------------------------------------------
# Balanced-object scanner
# ---------------------------------------------------------------------------


class _ScanState(Enum):
    DEFAULT = "default"
    IN_STRING = "in_string"
    ESCAPED = "escaped"


@dataclass(frozen=True)
class _ScanResult:
    text: str
    repaired: bool


def _scan(text: str) -> _ScanResult | None:
    start = text.find("{")
    if start < 0:
        return None

    state = _ScanState.DEFAULT
    stack: list[str] = []
    last_significant = ""
    string_is_key = False
    last_string_was_key = False

    for i in range(start, len(text)):
        ch = text[i]
        if state is _ScanState.ESCAPED:
            state = _ScanState.IN_STRING
            continue
        if state is _ScanState.IN_STRING:
            if ch == "\\":
                state = _ScanState.ESCAPED
            elif ch == '"':
                state = _ScanState.DEFAULT
                last_significant = '"'
                last_string_was_key = string_is_key
            continue

        if ch == '"':
            state = _ScanState.IN_STRING
            string_is_key = bool(stack) and stack[-1] == "{" and last_significant in ("{", ",")
        elif ch in _CLOSERS:
            stack.append(ch)
            last_significant = ch
        elif ch in "}]":
            if stack:
                stack.pop()
            last_significant = ch
            if not stack:
                return _ScanResult(text[start : i + 1], repaired=False)
        elif not ch.isspace():
            last_significant = ch

    fragment = text[start:]
    return _ScanResult(
        _close_fragment(fragment, state, stack, string_is_key, last_string_was_key),
        repaired=True,
    )


def _close_fragment(
    fragment: str,
    state: _ScanState,
    stack: list[str],
    string_is_key: bool,
    last_string_was_key: bool,
) -> str:
    """Append the minimum text that makes a truncated object parseable."""
    if state is _ScanState.ESCAPED:
        fragment = fragment[:-1]
        state = _ScanState.IN_STRING

    if state is _ScanState.IN_STRING:
        fragment = _PARTIAL_UNICODE.sub("", fragment)
        fragment += '":null' if string_is_key else '"'
    else:
        fragment = fragment.rstrip()
        if fragment.endswith(","):
            fragment = fragment[:-1]
        elif fragment.endswith(":"):
            fragment += "null"
        elif fragment.endswith('"') and last_string_was_key:
            fragment += ":null"
        elif _TRAILING_NUMBER_PART.search(fragment):
            fragment = _TRAILING_NUMBER_PART.sub(r"\1", fragment)
        else:
            word = _TRAILING_WORD.search(fragment)
            if word and word.group() not in ("true", "false", "null"):
                fragment = fragment[: word.start()] + "null"

    return fragment + "".join(_CLOSERS[opener] for opener in reversed(stack))


def extract_json_object(text: str) -> tuple[str, bool] | None:
    """First balanced ``{...}`` span in *text* and whether it had to be repaired."""
    result = _scan(text)
    if result is None:
        return None
    return result.text, result.repaired


def parse_json_object(text: str) -> tuple[dict[str, Any], bool]:
    """Parse the decision JSON object out of raw model text.

    Returns ``(object, repaired)``. Raises ``DecisionParseError`` with code
    ``JSON_PARSE`` when nothing usable can be recovered.
    """
    if not text or not text.strip():
        raise DecisionParseError(ParseErrorCode.JSON_PARSE, "model returned empty output")

    cleaned = remove_control_chars(text).strip()
    value: Any = None
    for candidate in (cleaned, strip_fences(cleaned)):
        try:
            value = json.loads(candidate, strict=False)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value, False
    cleaned = strip_fences(cleaned)

    scanned = _scan(cleaned)
    if scanned is None:
        raise DecisionParseError(
            ParseErrorCode.JSON_PARSE, "no JSON object found in output", excerpt=cleaned
        )
    try:
        value = json.loads(scanned.text, strict=False)
    except json.JSONDecodeError as exc:
        raise DecisionParseError(
            ParseErrorCode.JSON_PARSE,
            f"invalid JSON ({exc.msg} at char {exc.pos})",
            excerpt=cleaned,
            original=exc,
        ) from exc
    if not isinstance(value, dict):
        raise DecisionParseError(
            ParseErrorCode.JSON_PARSE, "top-level JSON value is not an object", excerpt=cleaned
        )
    if scanned.repaired:
        logger.debug("Repaired truncated decision JSON (%d -> %d chars)", len(cleaned), len(scanned.text))
    return value, scanned.repaired


# ---------------------------------------------------------------------------
# Decision validation
# ---------------------------------------------------------------------------


def _parse_action(index: int, item: Any, catalog: ToolCatalog | None) -> AgentAction:
    if not isinstance(item, dict):
        raise DecisionParseError(
            ParseErrorCode.ACTION_ITEM_INVALID,
            f"actions[{index}] must be an object, got {type(item).__name__}",
        )

    raw_kind = item.get("actionType") or item.get("action") or item.get("type")
    if not raw_kind:
        raise DecisionParseError(
            ParseErrorCode.ACTION_TYPE_MISSING, f"actions[{index}] has no actionType"
        )
    kind = coerce_kind(raw_kind)
    if kind is None:
        allowed = ", ".join(k.value for k in ActionKind)
        raise DecisionParseError(
            ParseErrorCode.ACTION_TYPE_INVALID,
            f"actions[{index}] has unknown actionType {raw_kind!r} (allowed: {allowed})",
        )

    spec = ACTION_KINDS[kind]
    payload = item.get(spec.payload_key)
    if payload is None:
        payload = item.get("params")
    if payload is None:
        if kind is ActionKind.COMPLETE:
            payload = {}
        else:
            raise DecisionParseError(
                ParseErrorCode.PARAMS_MISSING,
                f"actions[{index}] ({kind.value}) is missing {spec.payload_key}",
            )
    if not isinstance(payload, dict):
        raise DecisionParseError(
            ParseErrorCode.PARAMS_INVALID,
            f"actions[{index}].{spec.payload_key} must be an object",
        )

    reasoning = str(item.get("reasoning") or "")
    params = spec.build(payload, catalog, reasoning)
    name = str(item.get("actionName") or item.get("name") or spec.default_name(params))
    return AgentAction(kind=kind, name=name, reasoning=reasoning, params=params)


def parse_decision(
    text: str,
    catalog: ToolCatalog | None = None,
    *,
    max_actions: int = DEFAULT_MAX_ACTIONS,
) -> Decision:
    """Parse and validate a full decision: ``{"thinking": ..., "actions": [...]}``.

    Raises ``DecisionParseError`` on any malformed or unresolvable entry.
    Batches longer than *max_actions* are truncated, not rejected.
    """
    obj, repaired = parse_json_object(text)

    actions_raw = obj.get("actions")
    if actions_raw is None and ("actionType" in obj or "action" in obj):
        # single action object without the wrapper
        actions_raw = [obj]
    if actions_raw is None:
        raise DecisionParseError(
            ParseErrorCode.ACTIONS_MISSING, "decision has no \"actions\" array", excerpt=text
        )
    if not isinstance(actions_raw, list):
        raise DecisionParseError(
            ParseErrorCode.ACTIONS_MISSING, "\"actions\" must be an array", excerpt=text
        )
    if not actions_raw:
        raise DecisionParseError(ParseErrorCode.ACTIONS_EMPTY, "\"actions\" array is empty")

    actions = [_parse_action(i, item, catalog) for i, item in enumerate(actions_raw)]
    if len(actions) > max_actions:
        logger.warning(
            "Decision proposed %d actions; keeping the first %d", len(actions), max_actions
        )
        actions = actions[:max_actions]

    thinking = obj.get("thinking")
    return Decision(
        thinking=thinking if isinstance(thinking, str) else "",
        actions=actions,
        repaired=repaired,
    )


# ---------------------------------------------------------------------------
# Streaming helpers
# ---------------------------------------------------------------------------

_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", '"': '"', "\\": "\\", "/": "/"}


def partial_string_value(text: str, key: str) -> str | None:
    """Decoded value of string field *key* in a possibly incomplete JSON text.

    Returns ``None`` until the opening quote of the value has arrived. A
    trailing incomplete escape sequence is held back rather than guessed.
    """
    marker = f'"{key}"'
    idx = text.find(marker)
    if idx < 0:
        return None
    i = idx + len(marker)
    n = len(text)
    while i < n and text[i].isspace():
        i += 1
    if i >= n or text[i] != ":":
        return None
    i += 1
    while i < n and text[i].isspace():
        i += 1
    if i >= n or text[i] != '"':
        return None
    i += 1

    out: list[str] = []
    while i < n:
        ch = text[i]
        if ch == '"':
            break
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        if i + 1 >= n:
            break
        esc = text[i + 1]
        if esc == "u":
            digits = text[i + 2 : i + 6]
            if len(digits) < 4:
                break
            try:
                out.append(chr(int(digits, 16)))
            except ValueError:
                out.append(digits)
            i += 6
            continue
        out.append(_SIMPLE_ESCAPES.get(esc, esc))
        i += 2
    return "".join(out)


# ---------------------------------------------------------------------------
# Schema and reflection parsing
# ---------------------------------------------------------------------------


def decision_json_schema() -> dict[str, Any]:
    """JSON schema requested from the generator for thinking output."""
    action_item: dict[str, Any] = {
        "type": "object",
        "properties": {
            "actionType": {"type": "string", "enum": [k.value for k in ActionKind]},
            "actionName": {"type": "string"},
            "reasoning": {"type": "string"},
        },
        "required": ["actionType", "actionName"],
        "additionalProperties": False,
    }
    for spec in ACTION_KINDS.values():
        action_item["properties"][spec.payload_key] = spec.payload_schema
    return {
        "type": "object",
        "properties": {
            "thinking": {"type": "string"},
            "actions": {"type": "array", "minItems": 1, "items": action_item},
        },
        "required": ["thinking", "actions"],
        "additionalProperties": False,
    }


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    if isinstance(value, (int, float)):
        return bool(value)
    return False


_GOAL_KEY = re.compile(r'"?goal_?achieved"?\s*[:=]\s*"?(true|false)', re.IGNORECASE)
_SUMMARY_KEY = re.compile(r'"?needs_?summary"?\s*[:=]\s*"?(true|false)', re.IGNORECASE)


def extract_goal_check(text: str | None) -> tuple[bool, bool]:
    """``(goal_achieved, needs_summary)`` from a reflection reply. Never raises."""
    if not text:
        return False, False
    try:
        obj, _ = parse_json_object(text)
    except DecisionParseError:
        obj = None
    if obj is not None and ("goalAchieved" in obj or "goal_achieved" in obj):
        achieved = _as_bool(obj.get("goalAchieved", obj.get("goal_achieved")))
        needs = _as_bool(obj.get("needsSummary", obj.get("needs_summary")))
        return achieved, achieved and needs

    goal = _GOAL_KEY.search(text)
    achieved = bool(goal) and goal.group(1).lower() == "true"
    summary = _SUMMARY_KEY.search(text)
    needs = bool(summary) and summary.group(1).lower() == "true"
    logger.debug("Goal check fell back to text heuristics: achieved=%s needs=%s", achieved, needs)
    return achieved, achieved and needs
