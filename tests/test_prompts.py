"""Tests for prompt loading and Jinja2 rendering."""

import textwrap
from pathlib import Path

import jinja2
import pytest

from react_agent.prompts import BUILTIN_PROMPT_DIR, render_builtin_prompt, render_prompt, split_system_user


@pytest.fixture()
def prompt_dir(tmp_path: Path) -> Path:
    """Create a temporary templates directory."""
    d = tmp_path / "templates"
    d.mkdir()
    return d


def _write(path: Path, content: str) -> Path:
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


class TestRenderPrompt:
    """Core render_prompt functionality."""

    def test_simple_substitution(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "simple.yaml",
            """\
            name: simple
            version: "1.0"
            messages:
              - role: system
                content: You are a helpful assistant.
              - role: user
                content: "Summarize: {{ text }}"
            """,
        )
        msgs = render_prompt(f, text="Hello world")
        assert msgs == [
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": "Summarize: Hello world"},
        ]

    def test_jinja_loop(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "loop.yaml",
            """\
            name: loop_test
            messages:
              - role: user
                content: |
                  Tools:
                  {% for tool in tools %}- {{ tool }}
                  {% endfor %}
            """,
        )
        content = render_prompt(f, tools=["weather", "search"])[0]["content"]
        assert "- weather" in content
        assert "- search" in content

    def test_missing_variable_raises(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "strict.yaml",
            """\
            name: strict
            messages:
              - role: user
                content: "{{ goal }}"
            """,
        )
        with pytest.raises(jinja2.UndefinedError):
            render_prompt(f)


class TestRenderPromptErrors:
    def test_missing_file(self, prompt_dir: Path) -> None:
        with pytest.raises(FileNotFoundError):
            render_prompt(prompt_dir / "nope.yaml")

    def test_not_a_mapping(self, prompt_dir: Path) -> None:
        f = _write(prompt_dir / "list.yaml", "- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            render_prompt(f)

    def test_missing_messages(self, prompt_dir: Path) -> None:
        f = _write(prompt_dir / "empty.yaml", "name: empty\n")
        with pytest.raises(ValueError, match="messages"):
            render_prompt(f)

    def test_message_without_role(self, prompt_dir: Path) -> None:
        f = _write(
            prompt_dir / "bad.yaml",
            """\
            name: bad
            messages:
              - content: hi
            """,
        )
        with pytest.raises(ValueError, match="role"):
            render_prompt(f)


class TestBuiltinTemplates:
    def test_all_templates_present(self) -> None:
        names = sorted(p.stem for p in BUILTIN_PROMPT_DIR.glob("*.yaml"))
        assert names == ["fast_response", "loop_guard", "reflection", "summary", "thinking"]

    def test_fast_response(self) -> None:
        msgs = render_builtin_prompt(
            "fast_response", question="Weather in Paris?", tool_name="weather", result='{"temp": 18}'
        )
        system, user = split_system_user(msgs)
        assert system.startswith("You answer the user's question")
        assert "Weather in Paris?" in user
        assert '{"temp": 18}' in user

    def test_summary_empty_histories(self) -> None:
        msgs = render_builtin_prompt(
            "summary", goal="g", tool_history=[], retrieve_history=[], final_results="r"
        )
        assert "r" in msgs[-1]["content"]


def test_split_system_user_without_system() -> None:
    system, user = split_system_user([{"role": "user", "content": "a"}, {"role": "user", "content": "b"}])
    assert system is None
    assert user == "a\n\nb"
