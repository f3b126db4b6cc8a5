"""Structured error types for react_agent.

Most failures inside the loop never escape as exceptions: action failures
become failed ``ActionResult`` objects and loop failures become a failed
``FinalResult``. The types here are what the stages raise internally and what
callers of the lower-level helpers can catch directly:

    from react_agent.errors import DecisionParseError

    try:
        decision = parse_decision(raw_text, catalog)
    except DecisionParseError as exc:
        # exc.code is a ParseErrorCode, exc.excerpt is bounded
        messages.append({"role": "user", "content": exc.retry_hint()})
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class AgentError(Exception):
    """Base for all react_agent errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class ParseErrorCode(str, Enum):
    """Why a decision object was rejected."""

    JSON_PARSE = "JSON_PARSE"
    ACTIONS_MISSING = "ACTIONS_MISSING"
    ACTIONS_EMPTY = "ACTIONS_EMPTY"
    ACTION_ITEM_INVALID = "ACTION_ITEM_INVALID"
    ACTION_TYPE_MISSING = "ACTION_TYPE_MISSING"
    ACTION_TYPE_INVALID = "ACTION_TYPE_INVALID"
    PARAMS_MISSING = "PARAMS_MISSING"
    PARAMS_INVALID = "PARAMS_INVALID"
    TOOL_NAME_MISSING = "TOOL_NAME_MISSING"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"


MAX_EXCERPT_CHARS = 300


def bounded_excerpt(text: str | None, limit: int = MAX_EXCERPT_CHARS) -> str:
    """Head of *text*, never longer than *limit* plus an ellipsis marker."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"


class DecisionParseError(AgentError):
    """Model output could not be turned into a valid action batch.

    Carries a machine-checkable ``code`` and a bounded ``excerpt`` of the
    offending text so retries never feed the full output back into the prompt.
    """

    def __init__(
        self,
        code: ParseErrorCode,
        message: str,
        *,
        excerpt: str | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(f"[{code.value}] {message}", original=original)
        self.code = code
        self.detail = message
        self.excerpt = bounded_excerpt(excerpt)

    def retry_hint(self) -> str:
        """Correction instruction appended to the next thinking attempt."""
        lines = [
            "Your previous output could not be used.",
            f"Error code: {self.code.value}",
            f"Problem: {self.detail}",
        ]
        if self.excerpt:
            lines.append(f"Offending output (excerpt): {self.excerpt}")
        lines.append(
            "Return exactly one JSON object with a non-empty \"actions\" array "
            "and no text outside the JSON."
        )
        return "\n".join(lines)


class StateTransitionError(AgentError):
    """Illegal move requested from the iteration state machine."""

    def __init__(self, current: Any, requested: Any) -> None:
        super().__init__(f"illegal state transition {current} -> {requested}")
        self.current = current
        self.requested = requested


class ToolNotFoundError(AgentError):
    """Tool name does not resolve in the catalog."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"tool not found: {tool_name}")
        self.tool_name = tool_name


class ContextBusyError(AgentError):
    """A second loop driver tried to claim a context that is already running."""


# ---------------------------------------------------------------------------
# Text generation errors
# ---------------------------------------------------------------------------


class GenerationError(AgentError):
    """Base for text-generation failures."""


class LLMRateLimitError(GenerationError):
    """Transient rate limit (429), retry with backoff."""


class LLMAuthError(GenerationError):
    """Authentication failed (401/403)."""


class LLMTransientError(GenerationError):
    """Server error (500/502/503) or connection problem, retry."""


class LLMTimeoutError(LLMTransientError):
    """Model call exceeded its time bound."""


class LLMEmptyResponseError(GenerationError):
    """Model returned no text."""


_RETRYABLE = (LLMRateLimitError, LLMTransientError)

_NETWORK_PATTERNS = (
    "timeout",
    "timed out",
    "connection",
    "network",
    "temporarily unavailable",
    "502",
    "503",
)


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def classify_error(error: BaseException) -> type[GenerationError]:
    """Classify any exception into a GenerationError subtype.

    Uses litellm exception types when available, falls back to string matching.
    """
    if isinstance(error, GenerationError):
        return type(error)
    if isinstance(error, (TimeoutError, ConnectionError)):
        return LLMTimeoutError if isinstance(error, TimeoutError) else LLMTransientError

    import litellm as _lt

    auth_types = _litellm_error_types(_lt, ("AuthenticationError", "PermissionDeniedError"))
    if auth_types and isinstance(error, auth_types):
        return LLMAuthError

    rate_types = _litellm_error_types(_lt, ("RateLimitError",))
    if rate_types and isinstance(error, rate_types):
        return LLMRateLimitError

    timeout_types = _litellm_error_types(_lt, ("Timeout",))
    if timeout_types and isinstance(error, timeout_types):
        return LLMTimeoutError

    transient_types = _litellm_error_types(
        _lt,
        (
            "InternalServerError",
            "ServiceUnavailableError",
            "APIConnectionError",
            "BadGatewayError",
        ),
    )
    if transient_types and isinstance(error, transient_types):
        return LLMTransientError

    # Fallback: string pattern matching
    error_str = str(error).lower()
    if "401" in error_str or "authentication" in error_str or "unauthorized" in error_str:
        return LLMAuthError
    if "rate" in error_str and "limit" in error_str:
        return LLMRateLimitError
    if "timeout" in error_str or "timed out" in error_str:
        return LLMTimeoutError
    if any(p in error_str for p in ("connection", "500", "502", "503", "server error")):
        return LLMTransientError

    return GenerationError


def wrap_error(error: Exception) -> GenerationError:
    """Wrap an exception in the appropriate GenerationError subclass.

    If the error is already a GenerationError, returns it unchanged.
    """
    if isinstance(error, GenerationError):
        return error
    cls = classify_error(error)
    return cls(str(error), original=error)


def is_retryable_error(error: BaseException) -> bool:
    """True for rate limits, timeouts and connection-flavoured failures."""
    return issubclass(classify_error(error), _RETRYABLE)


def mentions_network_failure(message: str | None) -> bool:
    """Heuristic used when only the error text survived, not the exception."""
    if not message:
        return False
    lowered = message.lower()
    return any(p in lowered for p in _NETWORK_PATTERNS)
