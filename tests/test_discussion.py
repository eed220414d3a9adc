from __future__ import annotations

import pytest

from teamflow.orchestrator.convergence import parse_member_mention
from teamflow.orchestrator.discussion import normalize_decision, reply_looks_like_question
from teamflow.orchestrator.tool_policy import forbidden_tools
from teamflow.schema import ControllerDecision


def _decision(action, reply, **extra):
    return ControllerDecision.model_validate({"action": action, "reply": reply, **extra})


class TestQuestionSignal:
    @pytest.mark.parametrize(
        "text", ["Which database?", "需要确认预算吗", "Could you share the API schema", "预算多少？", "What is the deadline"]
    )
    def test_questions(self, text):
        assert reply_looks_like_question(text)

    @pytest.mark.parametrize("text", ["", "Drafting the plan now.", "   "])
    def test_statements(self, text):
        assert not reply_looks_like_question(text)


class TestNormalizeDecision:
    def test_question_reply_becomes_ask_user(self):
        d = normalize_decision(_decision("ready_for_planning", "Which region do we deploy to?"))
        assert d.action == "ask_user"
        assert d.reason.startswith("normalized: ready_for_planning")

    def test_missing_info_becomes_ask_user(self):
        d = normalize_decision(_decision("keep_research", "Checking.", missing_info=["budget"]))
        assert d.action == "ask_user"

    def test_controller_reason_is_kept(self):
        d = normalize_decision(_decision("ready_for_planning", "Please provide the budget.", reason="need budget"))
        assert (d.action, d.reason) == ("ask_user", "need budget")

    def test_plain_statement_is_untouched(self):
        d = _decision("ready_for_planning", "Drafting the plan now.")
        assert normalize_decision(d) is d


class TestMentions:
    def test_mention(self):
        assert parse_member_mention("@builder how long?") == ("builder", "how long?")

    def test_answer_prefix_is_dropped(self):
        assert parse_member_mention("@reviewer 回答： 可以") == ("reviewer", "可以")

    def test_no_mention(self):
        assert parse_member_mention("builder how long?") is None


class TestToolPolicy:
    def test_coordination_tools_blocked_while_talking(self):
        used = ["sessions_spawn", "Read", "agents_list", "sessions_spawn"]
        assert forbidden_tools("discussion", used) == ["sessions_spawn", "agents_list"]

    def test_execution_allows_everything(self):
        assert forbidden_tools("execution", ["sessions_spawn"]) == []
