"""Text helpers shared by prompt construction and result rendering."""

from __future__ import annotations

import json
from typing import Any

from react_agent.collaborators import RetrievalResult
from react_agent.models import ActionResult


def truncate(text: str | None, limit: int, suffix: str = "...") -> str:
    """Cap *text* at *limit* characters, appending *suffix* when cut."""
    if not text:
        return ""
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + suffix


def normalize_tool_output(raw: Any) -> str:
    """Display string for a tool result: str as-is, dict/list as JSON, else str()."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (dict, list)):
        return json.dumps(raw, ensure_ascii=False, default=str)
    return str(raw)


def data_to_text(data: Any) -> str:
    """Render an ActionResult payload for prompts."""
    if isinstance(data, RetrievalResult):
        return format_retrieval(data)
    return normalize_tool_output(data)


def format_retrieval(result: RetrievalResult, content_chars: int = 300) -> str:
    if not result.documents:
        return "no relevant knowledge found"
    lines = [f"retrieved {result.count} items:"]
    for i, doc in enumerate(result.documents, 1):
        head = doc.title or doc.source_id or "untitled"
        lines.append(f"[{i}] {head}: {truncate(doc.content, content_chars)}")
    return "\n".join(lines)


def format_action_result(result: ActionResult, output_chars: int = 500) -> str:
    """Canonical three-line rendering: status, input, output or error."""
    from react_agent.action_kinds import describe_action

    action = result.action
    status = "SUCCESS" if result.success else "FAILED"
    header = f"[{status}] {action.kind.value} {action.name}".rstrip()
    if result.duration_ms:
        header += f" ({result.duration_ms} ms)"
    input_line = f"input: {describe_action(action)}"
    if result.success:
        body = f"output: {truncate(data_to_text(result.data), output_chars)}"
    else:
        kind = result.error_kind.value if result.error_kind else "ERROR"
        body = f"error: [{kind}] {truncate(result.error, output_chars)}"
    return "\n".join([header, input_line, body])


def format_history(
    history: list[list[ActionResult]],
    iterations: int | None = None,
    output_chars: int = 500,
) -> str:
    """Render the per-iteration action history, newest window only."""
    if not history:
        return ""
    start = 0
    if iterations is not None and iterations < len(history):
        start = len(history) - iterations
    blocks: list[str] = []
    for index in range(start, len(history)):
        batch = history[index]
        rendered = "\n".join(format_action_result(r, output_chars) for r in batch)
        blocks.append(f"## iteration {index + 1}\n{rendered}")
    return "\n\n".join(blocks)
