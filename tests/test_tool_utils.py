"""Tests for Python-callable tools.

Tests cover:
- callable_to_descriptor(): basic types, Optional, list[str], defaults, no-docstring, missing hint
- FunctionToolCatalog: registration, duplicates, group/name filtering
- normalize_arguments(): singular/plural aliases, unknown and missing args
- FunctionToolInvoker: async fn, sync fn, bad arguments
"""

from __future__ import annotations

from typing import Optional

import pytest

from react_agent.errors import ToolNotFoundError
from react_agent.tool_utils import (
    FunctionToolCatalog,
    FunctionToolInvoker,
    callable_to_descriptor,
    normalize_arguments,
)


# ---------------------------------------------------------------------------
# Test functions (used as tools)
# ---------------------------------------------------------------------------


def add(a: int, b: int) -> int:
    """Add two numbers."""
    return a + b


async def async_search(query: str, limit: int = 10) -> str:
    """Search for entities.

    Longer description that should not reach the prompt.
    """
    return f"Results for {query} (limit={limit})"


def no_doc(x: str) -> str:
    return x


def optional_param(name: str, title: Optional[str] = None) -> str:
    """Format a name with optional title."""
    if title:
        return f"{title} {name}"
    return name


def union_param(ratio: float | None = None) -> str:
    """Pipe-union optional."""
    return str(ratio)


def list_param(urls: list[str]) -> str:
    """Fetch several pages."""
    return ",".join(urls)


def no_hint(x) -> str:  # type: ignore[no-untyped-def]
    return str(x)


# ---------------------------------------------------------------------------
# callable_to_descriptor
# ---------------------------------------------------------------------------


class TestCallableToDescriptor:
    def test_basic_types(self):
        tool = callable_to_descriptor(add, group="math")
        assert tool.name == "add"
        assert tool.description == "Add two numbers."
        assert tool.group == "math"
        assert tool.parameters == {
            "type": "object",
            "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
            "required": ["a", "b"],
        }

    def test_defaults_and_first_doc_line(self):
        tool = callable_to_descriptor(async_search)
        assert tool.description == "Search for entities."
        assert tool.parameters["properties"]["limit"] == {"type": "integer", "default": 10}
        assert tool.parameters["required"] == ["query"]

    def test_optional(self):
        props = callable_to_descriptor(optional_param).parameters["properties"]
        assert props["title"] == {"type": "string", "default": None}

    def test_pipe_union(self):
        props = callable_to_descriptor(union_param).parameters["properties"]
        assert props["ratio"]["type"] == "number"
        assert "required" not in callable_to_descriptor(union_param).parameters

    def test_list(self):
        props = callable_to_descriptor(list_param).parameters["properties"]
        assert props["urls"] == {"type": "array", "items": {"type": "string"}}

    def test_no_docstring(self):
        assert callable_to_descriptor(no_doc).description == ""

    def test_description_override(self):
        def tool(x: str) -> str:
            """Ignored."""
            return x

        tool.__tool_description__ = "Custom text"
        assert callable_to_descriptor(tool).description == "Custom text"

    def test_missing_hint_raises(self):
        with pytest.raises(ValueError, match="no type annotation"):
            callable_to_descriptor(no_hint)

    def test_render(self):
        rendered = callable_to_descriptor(async_search).render()
        assert rendered.splitlines() == [
            "- async_search: Search for entities.",
            "    query (string, required)",
            "    limit (integer, optional)",
        ]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestFunctionToolCatalog:
    def test_register_and_resolve(self):
        catalog = FunctionToolCatalog([add, async_search], group="core")
        assert catalog.resolve("add").group == "core"
        assert catalog.resolve("missing") is None
        assert catalog.function("add") is add

    def test_unknown_function(self):
        with pytest.raises(ToolNotFoundError):
            FunctionToolCatalog().function("missing")

    def test_duplicate_name(self):
        catalog = FunctionToolCatalog([add])
        with pytest.raises(ValueError, match="Duplicate tool name"):
            catalog.register(add)

    def test_filters(self):
        catalog = FunctionToolCatalog()
        catalog.register(add, group="math")
        catalog.register(async_search, group="web")
        catalog.register(no_doc)
        assert [t.name for t in catalog.list_available()] == ["add", "async_search", "no_doc"]
        assert [t.name for t in catalog.list_available(groups=["web"])] == ["async_search"]
        assert [t.name for t in catalog.list_available(names=["no_doc", "add"])] == ["add", "no_doc"]
        assert catalog.list_available(groups=["math"], names=["no_doc"]) == []


# ---------------------------------------------------------------------------
# Argument normalization
# ---------------------------------------------------------------------------


class TestNormalizeArguments:
    def test_exact(self):
        assert normalize_arguments(add, {"a": 1, "b": 2}) == {"a": 1, "b": 2}

    def test_singular_to_plural(self):
        assert normalize_arguments(list_param, {"url": "https://a"}) == {"urls": ["https://a"]}

    def test_plural_to_singular(self):
        assert normalize_arguments(no_doc, {"xs": ["v"]}) == {"x": "v"}

    def test_plural_to_singular_many_items(self):
        with pytest.raises(ValueError, match="expected one item"):
            normalize_arguments(no_doc, {"xs": ["a", "b"]})

    def test_unknown_and_missing(self):
        with pytest.raises(ValueError) as exc_info:
            normalize_arguments(add, {"a": 1, "c": 3})
        message = str(exc_info.value)
        assert "unsupported args: c" in message
        assert "missing required args: b" in message
        assert "allowed args: a, b" in message

    def test_var_kwargs_accept_anything(self):
        def loose(**kwargs: str) -> str:
            return ""

        assert normalize_arguments(loose, {"anything": "x"}) == {"anything": "x"}


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------


class TestFunctionToolInvoker:
    @pytest.mark.asyncio
    async def test_async_function(self):
        catalog = FunctionToolCatalog([async_search])
        invoker = FunctionToolInvoker(catalog)
        result = await invoker.invoke(catalog.resolve("async_search"), {"query": "cats"})
        assert result == "Results for cats (limit=10)"

    @pytest.mark.asyncio
    async def test_sync_function(self):
        catalog = FunctionToolCatalog([add])
        invoker = FunctionToolInvoker(catalog)
        assert await invoker.invoke(catalog.resolve("add"), {"a": 2, "b": 3}) == 5

    @pytest.mark.asyncio
    async def test_bad_arguments_raise(self):
        catalog = FunctionToolCatalog([add])
        invoker = FunctionToolInvoker(catalog)
        with pytest.raises(ValueError, match="missing required args"):
            await invoker.invoke(catalog.resolve("add"), {"a": 2})
