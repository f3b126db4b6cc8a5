"""Plain Python functions as agent tools.

Builds ``ToolDescriptor`` schemas from typed Python callables and invokes them
in-process, sync or async.

Usage:
    from react_agent.tool_utils import FunctionToolCatalog, FunctionToolInvoker

    async def weather(city: str, units: str = "metric") -> dict:
        '''Current weather for a city.'''
        ...

    catalog = FunctionToolCatalog([weather], group="web")
    invoker = FunctionToolInvoker(catalog)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Union, get_args, get_origin, get_type_hints

from react_agent.collaborators import ToolDescriptor
from react_agent.errors import ToolNotFoundError

logger = logging.getLogger(__name__)

# Python type → JSON Schema type
_TYPE_MAP: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
}


def _candidate_arg_aliases(key: str) -> list[str]:
    """Return structural singular/plural alias candidates for an argument key."""
    candidates: list[str] = []
    if key.endswith("_id"):
        candidates.append(f"{key}s")
    if key.endswith("_ids"):
        candidates.append(key[:-1])
    if key.endswith("s"):
        candidates.append(key[:-1])
    else:
        candidates.append(f"{key}s")
    return [c for c in candidates if c and c != key]


def _coerce_alias_value(source_key: str, target_key: str, value: Any) -> Any:
    """Coerce value shape when mapping between singular/plural parameter names."""
    if not source_key.endswith("s") and target_key.endswith("s"):
        return value if isinstance(value, list) else [value]
    if source_key.endswith("s") and not target_key.endswith("s"):
        if not isinstance(value, list):
            return value
        if len(value) == 1:
            return value[0]
        raise ValueError(
            f"cannot map {source_key!r} to {target_key!r}: expected one item, got {len(value)}"
        )
    return value


def normalize_arguments(fn: Callable[..., Any], arguments: dict[str, Any]) -> dict[str, Any]:
    """Match model-supplied arguments to *fn*'s signature.

    Unknown keys get one chance through a singular/plural alias
    (``url`` for ``urls`` and back). Anything still unknown, or a missing
    required parameter, raises ``ValueError`` naming the allowed arguments.
    """
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return dict(arguments)

    accepted: set[str] = set()
    required: set[str] = set()
    accepts_var_kwargs = False
    for name, param in sig.parameters.items():
        if name in ("self", "cls"):
            continue
        if param.kind == inspect.Parameter.VAR_KEYWORD:
            accepts_var_kwargs = True
            continue
        if param.kind in (inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY):
            accepted.add(name)
            if param.default is inspect.Parameter.empty:
                required.add(name)

    normalized: dict[str, Any] = {}
    problems: list[str] = []
    unknown: list[str] = []
    for key, value in arguments.items():
        if key in accepted or accepts_var_kwargs:
            normalized[key] = value
            continue
        target = next((c for c in _candidate_arg_aliases(key) if c in accepted), None)
        if target and target not in arguments and target not in normalized:
            try:
                normalized[target] = _coerce_alias_value(key, target, value)
            except ValueError as exc:
                problems.append(str(exc))
                continue
            logger.warning("Tool argument %r mapped to %r for %s", key, target, fn.__name__)
            continue
        unknown.append(key)

    missing = sorted(name for name in required if name not in normalized)
    if unknown:
        problems.append("unsupported args: " + ", ".join(sorted(unknown)))
    if missing:
        problems.append("missing required args: " + ", ".join(missing))
    if problems:
        problems.append("allowed args: " + ", ".join(sorted(accepted)))
        raise ValueError("; ".join(problems))
    return normalized


def _type_to_json_schema(tp: Any) -> dict[str, Any]:
    """Convert a Python type annotation to a JSON Schema fragment.

    Supports: str, int, float, bool, list[X], dict, Optional[X].
    Raises ValueError for unsupported types.
    """
    origin = get_origin(tp)
    args = get_args(tp)

    # Optional[X] and X | None unwrap to X
    if origin is Union or (origin is not None and type(None) in args):
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            return _type_to_json_schema(non_none[0])

    if origin is list:
        schema: dict[str, Any] = {"type": "array"}
        if args:
            schema["items"] = _type_to_json_schema(args[0])
        return schema

    if origin is dict or tp is dict:
        return {"type": "object"}

    if tp in _TYPE_MAP:
        return {"type": _TYPE_MAP[tp]}

    raise ValueError(
        f"Unsupported type annotation: {tp!r}. "
        f"Supported: str, int, float, bool, list[X], dict, Optional[X]."
    )


def callable_to_descriptor(fn: Callable[..., Any], group: str | None = None) -> ToolDescriptor:
    """Describe *fn* as a tool: name, first docstring line, JSON schema of its parameters.

    Every parameter must have a type annotation (raises ValueError otherwise).
    """
    sig = inspect.signature(fn)
    try:
        hints = get_type_hints(fn)
    except Exception:
        hints = {}

    properties: dict[str, Any] = {}
    required: list[str] = []
    for name, param in sig.parameters.items():
        if name in ("self", "cls"):
            continue
        if name not in hints:
            raise ValueError(
                f"Parameter {name!r} of {fn.__name__!r} has no type annotation. "
                f"All parameters must be typed for schema generation."
            )
        prop = _type_to_json_schema(hints[name])
        if param.default is not inspect.Parameter.empty:
            prop["default"] = param.default
        else:
            required.append(name)
        properties[name] = prop

    description = ""
    override_desc = getattr(fn, "__tool_description__", None)
    if isinstance(override_desc, str) and override_desc.strip():
        description = override_desc.strip()
    elif fn.__doc__:
        description = fn.__doc__.strip().split("\n")[0].strip()

    parameters: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        parameters["required"] = required
    return ToolDescriptor(name=fn.__name__, description=description, parameters=parameters, group=group)


class FunctionToolCatalog:
    """ToolCatalog over registered Python callables."""

    def __init__(self, tools: list[Callable[..., Any]] | None = None, *, group: str | None = None) -> None:
        self._functions: dict[str, Callable[..., Any]] = {}
        self._descriptors: dict[str, ToolDescriptor] = {}
        for fn in tools or []:
            self.register(fn, group=group)

    def register(self, fn: Callable[..., Any], *, group: str | None = None) -> ToolDescriptor:
        descriptor = callable_to_descriptor(fn, group=group)
        if descriptor.name in self._functions:
            raise ValueError(
                f"Duplicate tool name {descriptor.name!r}: "
                f"{self._functions[descriptor.name]!r} and {fn!r} have the same __name__."
            )
        self._functions[descriptor.name] = fn
        self._descriptors[descriptor.name] = descriptor
        return descriptor

    def resolve(self, name: str) -> ToolDescriptor | None:
        return self._descriptors.get(name)

    def function(self, name: str) -> Callable[..., Any]:
        try:
            return self._functions[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def list_available(
        self,
        groups: list[str] | None = None,
        names: list[str] | None = None,
    ) -> list[ToolDescriptor]:
        """Descriptors in registration order, filtered by group and/or name when given."""
        found = list(self._descriptors.values())
        if groups is not None:
            found = [d for d in found if d.group in groups]
        if names is not None:
            found = [d for d in found if d.name in names]
        return found


class FunctionToolInvoker:
    """ToolInvoker that calls the catalog's functions with normalized arguments."""

    def __init__(self, catalog: FunctionToolCatalog) -> None:
        self.catalog = catalog

    async def invoke(self, tool: ToolDescriptor, arguments: dict[str, Any]) -> Any:
        fn = self.catalog.function(tool.name)
        kwargs = normalize_arguments(fn, arguments)
        if inspect.iscoroutinefunction(fn):
            return await fn(**kwargs)
        return await asyncio.to_thread(fn, **kwargs)
