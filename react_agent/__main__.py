"""Command line driver for react_agent.

Usage:
    python -m react_agent run "what is the weather in Paris"
    python -m react_agent run "summarise the report" --model gpt-4o --max-iterations 5
    python -m react_agent run "clean up the bucket" --mode manual --tools mytools:TOOLS

    python -m react_agent approve TOOL_EXECUTION_ID     # from another terminal
    python -m react_agent reject TOOL_EXECUTION_ID
    python -m react_agent stop REQUEST_ID
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import importlib
import json
import logging
import sys
from typing import Any, Callable

from react_agent.config import AgentConfig
from react_agent.confirmation import RedisConfirmationTransport
from react_agent.context import AgentContext
from react_agent.engine import ReActLoop
from react_agent.events import AgentEvent, CallbackEventSink
from react_agent.generation import LiteLLMGenerator
from react_agent.models import AgentMode
from react_agent.redis_support import close_async_clients
from react_agent.stop_signal import RedisStopSignal
from react_agent.tool_utils import FunctionToolCatalog, FunctionToolInvoker

logger = logging.getLogger(__name__)

# Events repeated per token; printing them would flood the terminal.
_QUIET_EVENTS = frozenset({"agent:thinking_delta"})


def load_tools(spec: str | None) -> list[Callable[..., Any]]:
    """Resolve ``module:attribute`` to a list of callables (a single callable is wrapped)."""
    if not spec:
        return []
    module_name, _, attr = spec.partition(":")
    if not attr:
        raise ValueError(f"--tools expects module:attribute, got {spec!r}")
    value = getattr(importlib.import_module(module_name), attr)
    if callable(value):
        return [value]
    return list(value)


def _print_event(event: AgentEvent) -> None:
    if event.kind in _QUIET_EVENTS:
        return
    line = {"kind": event.kind, "message": event.message}
    if event.payload:
        line["payload"] = event.payload
    print(json.dumps(line, ensure_ascii=False, default=str), flush=True)


# ---------------------------------------------------------------------------
# run subcommand
# ---------------------------------------------------------------------------


async def cmd_run(args: argparse.Namespace) -> int:
    config = AgentConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.model:
        overrides["default_model"] = args.model
    if args.max_iterations is not None:
        overrides["max_iterations"] = args.max_iterations
    if args.redis_url:
        overrides["redis_url"] = args.redis_url
    config = dataclasses.replace(config, **overrides)

    catalog = FunctionToolCatalog(load_tools(args.tools))
    invoker = FunctionToolInvoker(catalog)
    generator = LiteLLMGenerator(timeout_s=config.generation_timeout_s)
    mode = AgentMode(args.mode.upper())
    if mode is AgentMode.MANUAL or config.redis_url:
        loop = ReActLoop.with_redis(generator, catalog, invoker, config=config)
    else:
        loop = ReActLoop(generator, catalog, invoker, config=config)

    context = AgentContext(mode=mode, event_sink=CallbackEventSink(_print_event))
    print(json.dumps({"requestId": context.request_id}), flush=True)
    try:
        result = await loop.aexecute(args.goal, context)
    finally:
        await close_async_clients()

    summary = {
        "success": result.success,
        "reason": result.reason.value,
        "iterations": result.iterations,
        "answer": result.answer,
        "error": result.error,
        "errorKind": result.error_kind.value if result.error_kind else None,
    }
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0 if result.success else 1


# ---------------------------------------------------------------------------
# approve / reject / stop subcommands
# ---------------------------------------------------------------------------


async def cmd_decide(args: argparse.Namespace) -> int:
    transport = RedisConfirmationTransport(url=args.redis_url)
    try:
        if args.command == "approve":
            delivered = await transport.approve(args.id)
        else:
            delivered = await transport.reject(args.id)
    finally:
        await close_async_clients()
    if not delivered:
        print(f"No pending confirmation {args.id} (already decided or expired)", file=sys.stderr)
        return 1
    print(f"{'approved' if args.command == 'approve' else 'rejected'} {args.id}")
    return 0


async def cmd_stop(args: argparse.Namespace) -> int:
    signal = RedisStopSignal(url=args.redis_url)
    try:
        await signal.request_stop(args.request_id)
    finally:
        await close_async_clients()
    print(f"stop requested for {args.request_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="react_agent",
        description="Run the ReAct agent loop and answer its confirmation requests",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    run_p = sub.add_parser("run", help="Run the agent loop on a goal")
    run_p.add_argument("goal", help="Natural-language goal")
    run_p.add_argument("--model", help="litellm model string (default from REACT_AGENT_DEFAULT_MODEL)")
    run_p.add_argument("--mode", choices=["auto", "manual"], default="auto", help="Tool confirmation mode")
    run_p.add_argument("--max-iterations", type=int, help="Iteration budget")
    run_p.add_argument("--tools", help="module:attribute holding the tool callables")
    run_p.add_argument("--redis-url", help="Redis for confirmations and stop requests")

    for name, help_text in (("approve", "Approve a pending tool call"), ("reject", "Reject a pending tool call")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("id", help="Tool execution id from the agent:tool_call event")
        p.add_argument("--redis-url", help="Redis URL (default from REACT_AGENT_REDIS_URL)")

    stop_p = sub.add_parser("stop", help="Ask a running loop to stop")
    stop_p.add_argument("request_id", help="Request id printed when the run started")
    stop_p.add_argument("--redis-url", help="Redis URL (default from REACT_AGENT_REDIS_URL)")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "run":
        code = asyncio.run(cmd_run(args))
    elif args.command in ("approve", "reject"):
        code = asyncio.run(cmd_decide(args))
    elif args.command == "stop":
        code = asyncio.run(cmd_stop(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
