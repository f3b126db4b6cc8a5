"""Tests for react_agent.models: action validation and result invariants."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from react_agent.models import (
    ActionKind,
    ActionResult,
    AgentAction,
    DirectResponseParams,
    ErrorKind,
    FinalResult,
    GenerateParams,
    ReflectionResult,
    TerminationReason,
    ToolCallParams,
)


class TestAgentAction:
    def test_params_must_match_kind(self):
        with pytest.raises(ValidationError):
            AgentAction(kind=ActionKind.TOOL_CALL, params=GenerateParams(prompt="x"))

    def test_dict_params_validated_against_kind(self):
        action = AgentAction.model_validate(
            {"kind": "TOOL_CALL", "params": {"toolName": "weather", "toolParams": {"city": "Paris"}}}
        )
        assert isinstance(action.params, ToolCallParams)
        assert action.tool_name == "weather"

    def test_frozen(self):
        action = AgentAction.generate("p")
        with pytest.raises(ValidationError):
            action.name = "other"  # type: ignore[misc]

    def test_ids_unique(self):
        assert AgentAction.generate("p").id != AgentAction.generate("p").id

    @pytest.mark.parametrize(
        "action, terminal",
        [
            (AgentAction.direct_response("done"), True),
            (AgentAction.direct_response("more", is_complete=False), False),
            (AgentAction.complete(), True),
            (AgentAction.generate("p"), False),
            (AgentAction.tool_call("weather"), False),
        ],
    )
    def test_is_terminal(self, action, terminal):
        assert action.is_terminal is terminal

    def test_payload_bounds(self):
        with pytest.raises(ValidationError):
            GenerateParams(prompt="p", temperature=3.0)
        with pytest.raises(ValidationError):
            DirectResponseParams(content="")


class TestActionResult:
    def test_success_cannot_carry_error(self):
        with pytest.raises(ValueError):
            ActionResult(action=AgentAction.generate("p"), success=True, error="x")

    def test_failure_requires_error(self):
        with pytest.raises(ValueError):
            ActionResult(action=AgentAction.generate("p"), success=False)

    def test_constructors(self):
        action = AgentAction.tool_call("weather")
        ok = ActionResult.ok(action, "data", duration_ms=3, toolName="weather")
        assert ok.kind is ActionKind.TOOL_CALL
        assert ok.metadata == {"toolName": "weather"}
        failed = ActionResult.failure(action, "boom", ErrorKind.TOOL_CALL_ERROR)
        assert failed.error_kind is ErrorKind.TOOL_CALL_ERROR


class TestReflectionResult:
    def test_achieved_and_retry_exclusive(self):
        with pytest.raises(ValueError):
            ReflectionResult(goal_achieved=True, should_retry=True)

    def test_continue_excludes_others(self):
        with pytest.raises(ValueError):
            ReflectionResult(should_retry=True, should_continue=True)

    def test_abandon_carries_reason(self):
        verdict = ReflectionResult.abandon("rejected", ErrorKind.USER_REJECTED)
        assert not (verdict.goal_achieved or verdict.should_retry or verdict.should_continue)
        assert verdict.summary == "rejected"


def test_final_result_without_record():
    result = FinalResult(success=False, reason=TerminationReason.EXCEPTION, error="busy")
    assert result.iterations == 0
    assert result.messages == []
