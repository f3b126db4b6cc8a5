"""Progress event names and the never-raising publish helper."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from pydantic import BaseModel, Field

from react_agent.collaborators import EventSink

logger = logging.getLogger(__name__)

START = "agent:start"
THINKING = "agent:thinking"
THINKING_DELTA = "agent:thinking_delta"
PLANNING = "agent:planning"
TOOL_CALL = "agent:tool_call"
TOOL_RESULT = "agent:tool_result"
TOOL_EXECUTING = "agent:tool_executing"
RETRIEVING = "agent:rag_querying"
GENERATING = "agent:generating"
OBSERVING = "agent:observing"
REFLECTING = "agent:reflecting"
MESSAGE = "agent:message"
STREAM_COMPLETE = "agent:stream_complete"
COMPLETE = "agent:complete"
ERROR = "agent:error"
ITERATION_START = "agent:iteration_start"
ITERATION_END = "agent:iteration_end"

STATUS_THINKING_PROCESS = "agent:status:thinking_process"
STATUS_TOOL_SINGLE = "agent:status:tool_executing_single"
STATUS_TOOL_BATCH = "agent:status:tool_executing_batch"
STATUS_RETRYING = "agent:status:retrying"
STATUS_PLANNING = "agent:status:planning"
STATUS_ANALYZING = "agent:status:analyzing"


class AgentEvent(BaseModel):
    kind: str
    message: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


def publish_event(
    sink: EventSink | None,
    kind: str,
    message: str | None = None,
    payload: dict[str, Any] | None = None,
) -> None:
    """Publish without ever blocking or raising into the loop."""
    if sink is None:
        return
    try:
        sink.publish(kind, message, payload)
    except Exception:
        logger.warning("Event sink failed for %s", kind, exc_info=True)


class NullEventSink:
    def publish(
        self,
        kind: str,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        return None


class CallbackEventSink:
    """Forwards each event as an ``AgentEvent`` to a single callable."""

    def __init__(self, callback: Callable[[AgentEvent], None]) -> None:
        self._callback = callback

    def publish(
        self,
        kind: str,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self._callback(AgentEvent(kind=kind, message=message, payload=payload or {}))


class CollectingEventSink:
    def __init__(self) -> None:
        self.events: list[AgentEvent] = []

    def publish(
        self,
        kind: str,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.events.append(AgentEvent(kind=kind, message=message, payload=payload or {}))

    def kinds(self) -> list[str]:
        return [e.kind for e in self.events]

    def of_kind(self, kind: str) -> list[AgentEvent]:
        return [e for e in self.events if e.kind == kind]
