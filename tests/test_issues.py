"""Tests for review merging and the issue lifecycle across rounds."""

from __future__ import annotations

from teamflow.orchestrator.issues import (
    default_for,
    issue_id,
    merge_blockers,
    merge_required_decisions,
    resolve_decision_issues,
    sync_issues,
)
from teamflow.schema import PeerReview, RequiredDecision


def _review(agent_id: str, verdict: str = "revise", **fields) -> PeerReview:
    return PeerReview(agent_id=agent_id, verdict=verdict, summary="s", **fields)


def _sync(previous, round_, reviews, resolved=None, suggestions=None):
    return sync_issues(
        previous,
        round_=round_,
        reviews=reviews,
        blockers=merge_blockers(reviews),
        decisions=merge_required_decisions([d for r in reviews for d in r.required_decisions]),
        suggestions=suggestions if suggestions is not None else [s for r in reviews for s in r.suggestions],
        resolved_decisions=resolved or {},
    )


class TestMerge:
    def test_blockers_deduplicated_in_first_seen_order(self):
        reviews = [_review("a", blockers=["B2", "B1"]), _review("b", blockers=["B1", "B3"])]
        assert merge_blockers(reviews) == ["B2", "B1", "B3"]

    def test_decisions_merged_by_key(self):
        merged = merge_required_decisions(
            [
                RequiredDecision(key="db", question="Which DB?", options=["pg"]),
                RequiredDecision(key="db", question="DB again?", default_value="mysql", options=["mysql", "pg"]),
            ]
        )
        assert len(merged) == 1
        assert merged[0].question == "Which DB?"
        assert merged[0].default_value == "mysql"
        assert merged[0].options == ["pg", "mysql"]

    def test_default_for(self):
        assert default_for(RequiredDecision(key="k", question="q", default_value="d", options=["o"])) == "d"
        assert default_for(RequiredDecision(key="k", question="q", options=["o"])) == "o"
        assert default_for(RequiredDecision(key="k", question="q")) == "accept-default"


class TestLifecycle:
    def test_blocker_opens_then_resolves_when_absent(self):
        round1 = _sync([], 1, [_review("a", blockers=["B1"])])
        b1 = next(i for i in round1 if i.kind == "blocker")
        assert (b1.state, b1.owner, b1.source_round) == ("open", "a", 1)

        round2 = _sync(round1, 2, [_review("a", "approve"), _review("b", "approve")])
        b1 = next(i for i in round2 if i.id == issue_id("blocker", "B1"))
        assert b1.state == "resolved"
        assert b1.source_round == 1

    def test_owner_and_source_round_stick(self):
        round1 = _sync([], 1, [_review("a", blockers=["B1"])])
        round2 = _sync(round1, 2, [_review("b", blockers=["B1"])])
        b1 = next(i for i in round2 if i.kind == "blocker")
        assert (b1.state, b1.owner, b1.source_round) == ("open", "a", 1)

    def test_resolved_decision_key_is_not_reopened(self):
        d = RequiredDecision(key="db", question="Which DB?")
        issues = _sync([], 1, [_review("a", required_decisions=[d])], resolved={"db": "pg"})
        assert issues[0].state == "resolved"

    def test_suggestion_keeps_state_when_absent(self):
        round1 = _sync([], 1, [_review("a", suggestions=["S1"])])
        s1 = next(i for i in round1 if i.kind == "suggestion")
        assert s1.state == "deferred"

        round2 = _sync(round1, 2, [_review("a", "approve")], suggestions=[])
        s1 = next(i for i in round2 if i.kind == "suggestion")
        assert s1.state == "deferred"

    def test_resolve_decision_issues(self):
        d = RequiredDecision(key="db", question="Which DB?")
        issues = _sync([], 1, [_review("a", blockers=["B1"], required_decisions=[d])])
        out = resolve_decision_issues(issues, {"db"})
        states = {i.kind: i.state for i in out}
        assert states == {"blocker": "open", "required-decision": "resolved"}

    def test_issue_ids(self):
        assert issue_id("required-decision", "Which DB?", "db") == "decision:db"
        assert issue_id("blocker", "No rollback plan!") == "blocker:no-rollback-plan"
