"""Tests for phase legality and the edge-specific guards."""

from __future__ import annotations

import itertools

import pytest

from teamflow.errors import PhaseTransitionError
from teamflow.orchestrator.governor import ALLOWED_EDGES, can_transition, ensure_transition, switch_phase
from teamflow.schema import ConvergenceIssue, TeamPlan, TeamTaskRuntime

PHASES = ["discussion", "planning", "team-setup", "convergence", "execution", "done"]


def _with_plan(rt) -> None:
    rt.state.plan = TeamPlan.model_validate(
        {"objective": "o", "tasks": [{"taskId": "a", "role": "builder", "instruction": "x", "acceptance": ["y"]}]}
    )
    rt.state.tasks = [TeamTaskRuntime(task_id="a", agent_id="builder", instruction="x")]


class TestEdges:
    @pytest.mark.parametrize("current,requested", [p for p in itertools.product(PHASES, PHASES) if p not in ALLOWED_EDGES])
    def test_illegal_pairs_are_rejected(self, orch, warnings_of, current, requested):
        rt = orch.rt
        rt.state.phase = current
        _with_plan(rt)
        assert switch_phase(rt, requested) is False
        assert rt.state.phase == current
        assert warnings_of(rt.state)[-1] == f"WARNING: Invalid phase transition: {current} -> {requested}"

    def test_staying_in_place_is_not_an_edge(self):
        for phase in PHASES:
            assert not can_transition(phase, phase)

    def test_ensure_transition_raises(self):
        with pytest.raises(PhaseTransitionError, match="Invalid phase transition: discussion -> execution"):
            ensure_transition("discussion", "execution")

    def test_legal_edge_records_flow_event(self, orch):
        rt = orch.rt
        assert switch_phase(rt, "planning") is True
        assert rt.state.phase == "planning"
        event = rt.state.flow_events[-1]
        assert event.type == "phase-transition"
        assert event.payload == {"from": "discussion", "to": "planning"}

    def test_execution_can_finish(self):
        assert can_transition("execution", "done")
        assert can_transition("done", "discussion")


class TestGuards:
    def test_discussion_to_convergence_needs_a_plan(self, orch, warnings_of):
        rt = orch.rt
        assert switch_phase(rt, "convergence") is False
        assert rt.state.phase == "discussion"
        assert "plan first" in warnings_of(rt.state)[-1]

        _with_plan(rt)
        assert switch_phase(rt, "convergence") is True

    def test_open_blocker_blocks_execution(self, orch, warnings_of):
        rt = orch.rt
        _with_plan(rt)
        rt.state.phase = "convergence"
        rt.state.convergence.issues = [
            ConvergenceIssue(id="blocker:x", kind="blocker", state="open", content="x"),
        ]
        assert switch_phase(rt, "execution") is False
        assert warnings_of(rt.state)[-1] == "WARNING: Blockers remain: 1"

    def test_open_decision_blocks_execution(self, orch, warnings_of):
        rt = orch.rt
        _with_plan(rt)
        rt.state.phase = "convergence"
        rt.state.convergence.issues = [
            ConvergenceIssue(id="decision:db", kind="required-decision", state="open", content="Which DB?", decision_key="db"),
        ]
        assert switch_phase(rt, "execution") is False
        assert warnings_of(rt.state)[-1] == "WARNING: Decision db unresolved"

    def test_busy_convergence_blocks_execution(self, orch, warnings_of):
        rt = orch.rt
        _with_plan(rt)
        rt.state.phase = "convergence"
        rt.state.convergence.mode = "review_run"
        assert switch_phase(rt, "execution") is False
        assert "busy" in warnings_of(rt.state)[-1]

    def test_resolved_items_do_not_block(self, orch):
        rt = orch.rt
        _with_plan(rt)
        rt.state.phase = "convergence"
        rt.state.convergence.issues = [
            ConvergenceIssue(id="blocker:x", kind="blocker", state="resolved", content="x"),
            ConvergenceIssue(id="suggestion:y", kind="suggestion", state="deferred", content="y"),
        ]
        assert switch_phase(rt, "execution") is True
