"""Prompt loading and rendering from YAML/Jinja2 templates.

Every prompt the loop sends lives as a YAML file with Jinja2 placeholders in
``react_agent/templates/``. Callers can render their own templates the same way.

YAML format::

    name: summary
    version: "1.0"
    messages:
      - role: system
        content: |
          You write the final answer for the user.
      - role: user
        content: |
          ## User goal
          {{ goal }}

Usage::

    from react_agent.prompts import render_builtin_prompt

    messages = render_builtin_prompt("fast_response", question=q, tool_name=n, result=r)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateNotFound

logger = logging.getLogger(__name__)

BUILTIN_PROMPT_DIR = Path(__file__).parent / "templates"


class _YAMLInlineLoader(BaseLoader):
    """Jinja2 loader for inline strings (no filesystem template inheritance)."""

    def get_source(
        self, environment: Environment, template: str
    ) -> tuple[str, str | None, None]:
        raise TemplateNotFound(template)


# Single shared environment, StrictUndefined so missing vars fail loud.
_env = Environment(loader=_YAMLInlineLoader(), undefined=StrictUndefined)


def render_prompt(
    template_path: str | Path,
    **context: Any,
) -> list[dict[str, str]]:
    """Load a YAML prompt template and render Jinja2 placeholders.

    Args:
        template_path: Path to the YAML file (absolute, or relative to cwd).
        **context: Variables to substitute into Jinja2 templates.

    Returns:
        List of message dicts (OpenAI chat format): [{"role": ..., "content": ...}]

    Raises:
        FileNotFoundError: If template_path doesn't exist.
        yaml.YAMLError: If YAML is malformed.
        jinja2.UndefinedError: If a template variable is missing from context.
        ValueError: If YAML structure is invalid (no messages key, bad format).
    """
    path = Path(template_path)
    if not path.is_absolute():
        path = Path.cwd() / path

    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))

    if not isinstance(raw, dict):
        raise ValueError(f"Prompt YAML must be a mapping, got {type(raw).__name__}: {path}")

    messages_raw = raw.get("messages")
    if not messages_raw:
        raise ValueError(f"Prompt YAML missing 'messages' key: {path}")

    if not isinstance(messages_raw, list):
        raise ValueError(f"'messages' must be a list, got {type(messages_raw).__name__}: {path}")

    messages: list[dict[str, str]] = []
    for i, msg in enumerate(messages_raw):
        if not isinstance(msg, dict) or "role" not in msg or "content" not in msg:
            raise ValueError(
                f"Message {i} must have 'role' and 'content' keys: {path}"
            )

        template = _env.from_string(str(msg["content"]))
        rendered = template.render(**context).strip()

        messages.append({"role": str(msg["role"]), "content": rendered})

    logger.debug(
        "Rendered prompt %s (%d messages, %d total chars)",
        path.name,
        len(messages),
        sum(len(m["content"]) for m in messages),
    )

    return messages


def render_builtin_prompt(name: str, **context: Any) -> list[dict[str, str]]:
    """Render one of the templates shipped in ``react_agent/templates``."""
    return render_prompt(BUILTIN_PROMPT_DIR / f"{name}.yaml", **context)


def split_system_user(messages: list[dict[str, str]]) -> tuple[str | None, str]:
    """(system prompt, user prompt) of a rendered two-message template."""
    system = next((m["content"] for m in messages if m["role"] == "system"), None)
    user = "\n\n".join(m["content"] for m in messages if m["role"] == "user")
    return system, user
