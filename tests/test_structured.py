"""Tests for the bounded corrective retry around structured agent replies."""

from __future__ import annotations

import pytest

from teamflow.agents.structured import request_structured
from teamflow.errors import ProtocolError
from teamflow.gateway import Reply
from teamflow.protocol import parse_controller_decision

from . import replies
from .conftest import CONTROLLER


def _ask(rt, max_attempts: int = 3):
    return request_structured(
        rt,
        agent_id=CONTROLLER,
        actor="controller",
        label="CONTROLLER_DECISION",
        purpose="discussion",
        prompt="first prompt",
        retry_prompt="retry prompt",
        parse=parse_controller_decision,
        max_attempts=max_attempts,
    )


class TestRetryBound:
    def test_exactly_n_attempts_then_protocol_error(self, orch, gateway):
        gateway.script(CONTROLLER, "garbage", "still garbage", "more garbage", replies.decision("ask_user"))
        with pytest.raises(ProtocolError, match="still invalid after 3 attempts"):
            _ask(orch.rt)
        prompts = gateway.prompts_for(CONTROLLER)
        assert prompts == ["first prompt", "retry prompt", "retry prompt"]

    def test_each_attempt_gets_its_own_key(self, orch, gateway):
        gateway.script(CONTROLLER, "garbage", "garbage", "garbage")
        with pytest.raises(ProtocolError):
            _ask(orch.rt)
        keys = [c["idempotency_key"] for c in gateway.calls_for("agent")]
        assert keys == ["t1:team-controller:discussion:1:a1", "t1:team-controller:discussion:1:a2", "t1:team-controller:discussion:1:a3"]

    def test_success_on_second_attempt(self, orch, gateway, warnings_of):
        gateway.script(CONTROLLER, "garbage", replies.decision("keep_research", "digging"))
        res = _ask(orch.rt)
        assert res.attempts == 2
        assert res.value.action == "keep_research"
        assert warnings_of(orch.state) == ["WARNING: CONTROLLER_DECISION from team-controller is invalid (1/3), asking again"]

    def test_forbidden_tool_counts_as_failed_attempt(self, orch, gateway):
        gateway.script(
            CONTROLLER,
            Reply(text=replies.decision("ready_for_planning"), tool_names=["sessions_spawn"]),
            replies.decision("ready_for_planning"),
        )
        res = _ask(orch.rt)
        assert res.attempts == 2
        blocked = [e for e in orch.state.flow_events if e.type == "tool-policy-blocked"]
        assert len(blocked) == 1
        assert blocked[0].note == "sessions_spawn"

    def test_next_request_uses_next_sequence(self, orch, gateway):
        gateway.script(CONTROLLER, replies.decision("ask_user", "Which one?"), replies.decision("ask_user", "Which one?"))
        _ask(orch.rt)
        _ask(orch.rt)
        keys = [c["idempotency_key"] for c in gateway.calls_for("agent")]
        assert keys == ["t1:team-controller:discussion:1:a1", "t1:team-controller:discussion:2:a1"]
