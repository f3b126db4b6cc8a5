"""Autonomous ReAct agent loop: think, act, observe, reflect.

Usage:
    from react_agent import (
        AgentContext,
        FunctionToolCatalog,
        FunctionToolInvoker,
        LiteLLMGenerator,
        ReActLoop,
    )

    def weather(city: str) -> dict:
        '''Current weather for a city.'''
        return {"temp": 18}

    catalog = FunctionToolCatalog([weather])
    loop = ReActLoop(LiteLLMGenerator(), catalog, FunctionToolInvoker(catalog))

    # Sync
    result = loop.execute("what is the weather in Paris", AgentContext())
    print(result.reason, result.answer)

    # Async
    result = await loop.aexecute("what is the weather in Paris", AgentContext())

    # Human approval from another process (MANUAL mode)
    loop = ReActLoop.with_redis(LiteLLMGenerator(), catalog, FunctionToolInvoker(catalog))
"""

from react_agent.collaborators import (
    CallbackStreamSink,
    CollectingStreamSink,
    InMemoryContextStore,
    RetrievalLimits,
    RetrievalResult,
    RetrievedDocument,
    ToolDescriptor,
)
from react_agent.config import AgentConfig, ThinkingOptions
from react_agent.confirmation import (
    ConfirmationCoordinator,
    ConfirmationDecision,
    InMemoryConfirmationTransport,
    RedisConfirmationTransport,
)
from react_agent.context import AgentContext
from react_agent.engine import ReActLoop, ensure_user_facing_result
from react_agent.errors import (
    AgentError,
    ContextBusyError,
    DecisionParseError,
    GenerationError,
    LLMAuthError,
    LLMRateLimitError,
    LLMTimeoutError,
    LLMTransientError,
    ParseErrorCode,
    StateTransitionError,
    classify_error,
    wrap_error,
)
from react_agent.events import AgentEvent, CallbackEventSink, CollectingEventSink, NullEventSink
from react_agent.generation import LiteLLMGenerator
from react_agent.models import (
    ActionKind,
    ActionResult,
    AgentAction,
    AgentMode,
    AgentState,
    ErrorKind,
    FinalResult,
    ReflectionResult,
    TerminationReason,
)
from react_agent.reflection import ReflectionPolicy
from react_agent.stop_signal import InMemoryStopSignal, RedisStopSignal
from react_agent.tool_utils import FunctionToolCatalog, FunctionToolInvoker
from react_agent.worker_pool import configure as configure_worker_pool

__all__ = [
    "ActionKind",
    "ActionResult",
    "AgentAction",
    "AgentConfig",
    "AgentContext",
    "AgentError",
    "AgentEvent",
    "AgentMode",
    "AgentState",
    "CallbackEventSink",
    "CallbackStreamSink",
    "CollectingEventSink",
    "CollectingStreamSink",
    "ConfirmationCoordinator",
    "ConfirmationDecision",
    "ContextBusyError",
    "DecisionParseError",
    "ErrorKind",
    "FinalResult",
    "FunctionToolCatalog",
    "FunctionToolInvoker",
    "GenerationError",
    "InMemoryConfirmationTransport",
    "InMemoryContextStore",
    "InMemoryStopSignal",
    "LLMAuthError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMTransientError",
    "LiteLLMGenerator",
    "NullEventSink",
    "ParseErrorCode",
    "ReActLoop",
    "RedisConfirmationTransport",
    "RedisStopSignal",
    "ReflectionPolicy",
    "ReflectionResult",
    "RetrievalLimits",
    "RetrievalResult",
    "RetrievedDocument",
    "StateTransitionError",
    "TerminationReason",
    "ThinkingOptions",
    "ToolDescriptor",
    "classify_error",
    "configure_worker_pool",
    "ensure_user_facing_result",
    "wrap_error",
]
