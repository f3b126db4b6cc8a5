"""Iteration state machine for the agent loop."""

from __future__ import annotations

import logging
from typing import Callable

from react_agent.errors import StateTransitionError
from react_agent.models import AgentState

logger = logging.getLogger(__name__)

# OBSERVING -> EXECUTING covers the answer-synthesis GENERATE run after
# observation (single-tool shortcut and summary pass).
TRANSITIONS: dict[AgentState, frozenset[AgentState]] = {
    AgentState.INITIAL: frozenset({AgentState.THINKING, AgentState.FAILED}),
    AgentState.THINKING: frozenset(
        {AgentState.EXECUTING, AgentState.COMPLETED, AgentState.FAILED}
    ),
    AgentState.EXECUTING: frozenset({AgentState.OBSERVING, AgentState.FAILED}),
    AgentState.OBSERVING: frozenset(
        {AgentState.REFLECTING, AgentState.COMPLETED, AgentState.EXECUTING, AgentState.FAILED}
    ),
    AgentState.REFLECTING: frozenset(
        {AgentState.THINKING, AgentState.EXECUTING, AgentState.COMPLETED, AgentState.FAILED}
    ),
    AgentState.COMPLETED: frozenset(),
    AgentState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({AgentState.COMPLETED, AgentState.FAILED})


class IterationStateMachine:
    """Tracks the loop phase and rejects any move the transition table forbids."""

    def __init__(self, on_change: Callable[[AgentState, AgentState], None] | None = None) -> None:
        self._state = AgentState.INITIAL
        self._history: list[AgentState] = [AgentState.INITIAL]
        self._on_change = on_change

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def history(self) -> list[AgentState]:
        return list(self._history)

    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def can_transition(self, target: AgentState) -> bool:
        return target in TRANSITIONS[self._state]

    def transition(self, target: AgentState) -> None:
        if not self.can_transition(target):
            raise StateTransitionError(self._state, target)
        previous = self._state
        self._state = target
        self._history.append(target)
        logger.debug("State %s -> %s", previous.value, target.value)
        if self._on_change is not None:
            self._on_change(previous, target)

    def fail(self) -> None:
        """Force FAILED from any non-terminal state."""
        if self.is_terminal():
            return
        self.transition(AgentState.FAILED)
