"""Typed runtime configuration for react_agent."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MAX_ITERATIONS_ENV = "REACT_AGENT_MAX_ITERATIONS"
MAX_PARALLEL_ACTIONS_ENV = "REACT_AGENT_MAX_PARALLEL_ACTIONS"
CONFIRM_TIMEOUT_ENV = "REACT_AGENT_CONFIRM_TIMEOUT"
THINKING_MAX_ATTEMPTS_ENV = "REACT_AGENT_THINKING_MAX_ATTEMPTS"
DEFAULT_MODEL_ENV = "REACT_AGENT_DEFAULT_MODEL"
LOOP_GUARD_ENV = "REACT_AGENT_LOOP_GUARD"
FAST_PATH_ENV = "REACT_AGENT_FAST_PATH"
REDIS_URL_ENV = "REACT_AGENT_REDIS_URL"
GENERATION_TIMEOUT_ENV = "REACT_AGENT_GENERATION_TIMEOUT"

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_PARALLEL_ACTIONS = 5
DEFAULT_CONFIRM_TIMEOUT_S = 60.0
DEFAULT_THINKING_MAX_ATTEMPTS = 3
DEFAULT_GENERATION_TIMEOUT_S = 120.0


@dataclass(frozen=True)
class ThinkingOptions:
    """History windows used when building the thinking prompt."""

    history_messages: int = 10
    conversation_rounds: int = 3
    max_message_chars: int = 200
    # None means every recorded iteration
    action_history_iterations: int | None = None


@dataclass(frozen=True)
class AgentConfig:
    """Loop policy resolved once and passed explicitly to every stage."""

    default_model: str = DEFAULT_MODEL
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_parallel_actions: int = DEFAULT_MAX_PARALLEL_ACTIONS
    confirm_timeout_s: float = DEFAULT_CONFIRM_TIMEOUT_S
    thinking_max_attempts: int = DEFAULT_THINKING_MAX_ATTEMPTS
    generation_timeout_s: float = DEFAULT_GENERATION_TIMEOUT_S
    loop_guard: bool = True
    fast_path: bool = True
    redis_url: str | None = None
    generate_history_messages: int = 20
    summary_result_chars: int = 500
    summary_final_chars: int = 1000
    fast_path_result_chars: int = 1500
    direct_token_delay_ms: tuple[int, int] = (15, 25)

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Build typed config from REACT_AGENT_* environment variables."""
        return cls(
            default_model=os.environ.get(DEFAULT_MODEL_ENV, "").strip() or DEFAULT_MODEL,
            max_iterations=_env_int(MAX_ITERATIONS_ENV, DEFAULT_MAX_ITERATIONS),
            max_parallel_actions=_env_int(MAX_PARALLEL_ACTIONS_ENV, DEFAULT_MAX_PARALLEL_ACTIONS),
            confirm_timeout_s=_env_float(CONFIRM_TIMEOUT_ENV, DEFAULT_CONFIRM_TIMEOUT_S),
            thinking_max_attempts=_env_int(
                THINKING_MAX_ATTEMPTS_ENV, DEFAULT_THINKING_MAX_ATTEMPTS
            ),
            generation_timeout_s=_env_float(
                GENERATION_TIMEOUT_ENV, DEFAULT_GENERATION_TIMEOUT_S
            ),
            loop_guard=_env_bool(LOOP_GUARD_ENV, True),
            fast_path=_env_bool(FAST_PATH_ENV, True),
            redis_url=os.environ.get(REDIS_URL_ENV) or None,
        )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value < 1:
        logger.warning("Invalid %s=%r; expected positive integer. Defaulting to %d.", name, raw, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        value = 0.0
    if value <= 0:
        logger.warning("Invalid %s=%r; expected positive number. Defaulting to %s.", name, raw, default)
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    if raw:
        logger.warning("Invalid %s=%r; expected on/off boolean. Defaulting to %s.", name, raw, default)
    return default
