"""Tests for parsing and validating the structured message types."""

from __future__ import annotations

import json

from teamflow.protocol import (
    parse_blueprint,
    parse_controller_decision,
    parse_digest,
    parse_plan,
    parse_report,
    parse_review,
    validate_plan,
)
from teamflow.schema.protocol import normalize_required_decisions

from . import replies


class TestControllerDecision:
    def test_aliases_are_normalized(self):
        text = 'CONTROLLER_DECISION: {"action": "ASK_USER", "message": "Which DB?", "openQuestions": ["db"]}'
        d = parse_controller_decision(text)
        assert d is not None
        assert d.action == "ask_user"
        assert d.reply == "Which DB?"
        assert d.questions == ["db"]

    def test_unknown_action_is_rejected(self):
        assert parse_controller_decision(replies.decision("go_fast")) is None

    def test_empty_reply_is_rejected(self):
        assert parse_controller_decision(replies.decision("keep_research", reply="")) is None

    def test_nested_payload_wrapper(self):
        text = json.dumps({"payload": {"action": "keep_research", "reply": "digging"}})
        d = parse_controller_decision(text)
        assert d is not None and d.action == "keep_research"


class TestReview:
    def test_approve_with_blockers_is_invalid(self):
        assert parse_review(replies.review("builder", "approve", blockers=["missing tests"])) is None

    def test_approve_with_decisions_is_invalid(self):
        text = replies.review("builder", "approve", required_decisions=[{"key": "db", "question": "Which DB?"}])
        assert parse_review(text) is None

    def test_revise_with_blockers(self):
        r = parse_review(replies.review("builder", "revise", blockers=["no rollback plan"]))
        assert r is not None
        assert r.blockers == ["no rollback plan"]

    def test_string_decisions_get_generated_keys(self):
        r = parse_review(replies.review("builder", "revise", required_decisions=["Pick a region"]))
        assert r is not None
        assert r.required_decisions[0].key == "pick-a-region-1"
        assert r.required_decisions[0].question == "Pick a region"


class TestRequiredDecisions:
    def test_alias_fields_and_first_key_wins(self):
        out = normalize_required_decisions(
            [
                {"id": "db", "prompt": "Which DB?", "defaultValue": "pg", "choices": ["pg", "mysql"]},
                {"key": "db", "question": "Again?"},
                {"key": "empty"},
                42,
            ]
        )
        assert out == [{"key": "db", "question": "Which DB?", "default_value": "pg", "options": ["pg", "mysql"]}]

    def test_non_list_is_empty(self):
        assert normalize_required_decisions("nope") == []


class TestDigestAndBlueprint:
    def test_digest(self):
        d = parse_digest(replies.digest("continue", "still open"))
        assert d is not None and d.status == "continue"

    def test_blueprint_requires_a_real_boolean(self):
        assert parse_blueprint(replies.blueprint(resolved="true")) is None
        assert parse_blueprint(replies.blueprint(resolved=None)) is None
        bp = parse_blueprint(replies.blueprint(resolved=False, must_fix=["x"]))
        assert bp is not None
        assert bp.required_decisions_resolved is False


class TestPlan:
    def test_assignments_alias_and_generated_task_ids(self):
        text = 'PLAN_JSON: {"goal": "g", "assignments": [{"agentId": "builder", "task": "build", "acceptanceCriteria": ["ok"]}]}'
        p = parse_plan(text)
        assert p is not None
        assert p.objective == "g"
        assert p.tasks[0].task_id == "task-1"
        assert p.tasks[0].instruction == "build"
        assert validate_plan(p) is None

    def test_missing_tasks_is_unparsable(self):
        assert parse_plan('PLAN: {"objective": "x"}') is None

    def test_duplicate_task_ids(self):
        p = parse_plan(replies.plan(replies.task("a", "builder"), replies.task("a", "reviewer")))
        assert validate_plan(p) == "PLAN.tasks[a] duplicates an earlier taskId"

    def test_task_needs_agent_or_role(self):
        p = parse_plan(replies.plan({"taskId": "a", "instruction": "x", "acceptance": ["y"]}))
        assert "requires agentId or role" in validate_plan(p)

    def test_empty_acceptance(self):
        p = parse_plan(replies.plan({"taskId": "a", "role": "builder", "instruction": "x", "acceptance": []}))
        assert "acceptance" in validate_plan(p)

    def test_none_plan(self):
        assert validate_plan(None) == "PLAN is empty"


class TestReport:
    def test_marker_is_required(self):
        body = json.dumps({"task_id": "t", "agent_id": "a", "status": "done", "result": ["x"]})
        assert parse_report(body) is None
        assert parse_report("REPORT: " + body) is not None

    def test_ids_default_from_dispatch(self):
        r = parse_report('REPORT: {"status": "completed", "summary": "all good"}', task_id="task-1", agent_id="builder")
        assert r is not None
        assert (r.task_id, r.agent_id, r.status) == ("task-1", "builder", "done")
        assert r.result == ["all good"]
        assert r.report_id == "task-1:builder:generated"

    def test_status_aliases(self):
        assert parse_report(replies.report("t", "a", status="failed")).status == "blocked"
        assert parse_report(replies.report("t", "a", status="in_progress")).status == "partial"

    def test_unknown_status_is_rejected(self):
        assert parse_report(replies.report("t", "a", status="maybe")) is None

    def test_nested_report_key(self):
        text = 'REPORT: {"report": {"task_id": "t", "agent_id": "a", "status": "done", "result": ["x"]}}'
        r = parse_report(text)
        assert r is not None and r.task_id == "t"
