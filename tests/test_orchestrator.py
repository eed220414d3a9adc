"""End-to-end flows through TeamOrchestrator on the in-process gateway."""

from __future__ import annotations

from teamflow.errors import GatewayError
from teamflow.orchestrator import TeamOrchestrator

from . import replies
from .conftest import CONTROLLER


def _transitions(state):
    return [(e.payload["from"], e.payload["to"]) for e in state.flow_events if e.type == "phase-transition"]


class TestHappyPath:
    def test_discussion_to_done(self, orch, gateway):
        orch.submit_message("Build feature X")
        state = orch.state
        assert state.phase == "convergence"
        assert [t.task_id for t in state.tasks] == ["task-1"]
        assert state.tasks[0].agent_id == "builder"
        assert state.context.goal == "Build feature X"

        orch.submit_message("start review")
        assert state.convergence.last_blueprint_action == "ready_to_execute"

        assert orch.confirm_execution() is True
        assert state.phase == "done"
        assert state.tasks[0].status == "done"
        assert _transitions(state) == [
            ("discussion", "planning"),
            ("planning", "convergence"),
            ("convergence", "execution"),
            ("execution", "done"),
        ]
        keys = [p["idempotency_key"] for p in gateway.calls_for("agent") if p["agent_id"] == CONTROLLER]
        assert keys[:2] == ["t1:team-controller:discussion:1:a1", "t1:team-controller:planning:2:a1"]

    def test_plan_message_is_tagged(self, orch):
        orch.submit_message("Build feature X")
        plans = [m for m in orch.state.messages if m.kind == "plan"]
        assert len(plans) == 1
        assert plans[0].agent_id == CONTROLLER

    def test_new_request_after_done_restarts_discussion(self, orch, gateway):
        orch.submit_message("Build feature X")
        orch.submit_message("start review")
        orch.confirm_execution()
        gateway.script(CONTROLLER, replies.decision("ask_user", "Which feature next?"))
        orch.submit_message("Next one please")
        assert orch.phase == "discussion"
        assert _transitions(orch.state)[-1] == ("done", "discussion")


class TestDiscussion:
    def test_question_reply_is_normalized_to_ask_user(self, orch, gateway):
        gateway.script(CONTROLLER, replies.decision("ready_for_planning", "Which database should we use?"))
        orch.submit_message("Build feature X")
        state = orch.state
        assert state.phase == "discussion"
        event = [e for e in state.flow_events if e.type == "controller-decision"][-1]
        assert event.note == "normalized:ready_for_planning->ask_user"
        assert event.actor == "program"
        assert state.messages[-1].content == "Which database should we use?"

    def test_keep_research_runs_another_round(self, orch, gateway):
        gateway.script(CONTROLLER, replies.decision("keep_research", "Looking into the codebase."))
        orch.submit_message("Build feature X")
        assert orch.phase == "convergence"
        second = gateway.prompts_for(CONTROLLER)[1]
        assert "[DISCUSSION_LOOP_ROUND] 2" in second
        assert "Looking into the codebase." in second

    def test_round_limit(self, orch, gateway, settings, warnings_of):
        for _ in range(settings.discussion_max_rounds):
            gateway.script(CONTROLLER, replies.decision("keep_research", "Still digging."))
        orch.submit_message("Build feature X")
        assert orch.phase == "discussion"
        assert warnings_of(orch.state)[-1] == (
            "WARNING: Discussion reached the round limit (5) without a decision to move on"
        )

    def test_drift_is_counted_across_messages(self, orch, gateway, warnings_of):
        for _ in range(3):
            gateway.script(CONTROLLER, "hmm", "hmm", "hmm")
            orch.submit_message("Build feature X")
        state = orch.state
        assert state.drift_count == 3
        assert warnings_of(state)[-1] == "WARNING: Controller produced no usable decision for 3 rounds in a row"

        orch.submit_message("Build feature X")
        assert orch.state.drift_count == 0

    def test_convergence_without_plan_goes_through_planning(self, orch, gateway):
        gateway.script(CONTROLLER, replies.decision("ready_for_convergence", "Plan looks settled."))
        orch.submit_message("Build feature X")
        assert _transitions(orch.state) == [("discussion", "planning"), ("planning", "convergence")]

    def test_plan_breaking_a_rule_is_asked_again(self, orch, gateway, warnings_of):
        gateway.script(
            CONTROLLER,
            replies.decision("ready_for_planning", "Drafting."),
            "PLAN: " + '{"objective": "Ship", "tasks": [{"taskId": "task-1", "role": "builder", "instruction": "Do it", "acceptance": []}]}',
            replies.plan(replies.task("task-1", "builder")),
        )
        orch.submit_message("Build feature X")
        assert orch.phase == "convergence"
        prompts = gateway.prompts_for(CONTROLLER)
        assert len(prompts) == 3
        assert "broke a plan rule" in prompts[2]
        assert "PLAN from team-controller is invalid (1/2), asking again" in warnings_of(orch.state)[-1]
        assert [m.kind for m in orch.state.messages if m.agent_id == CONTROLLER].count("plan") == 1

    def test_plan_invalid_twice_returns_to_discussion(self, orch, gateway, warnings_of):
        duplicate = replies.plan(replies.task("task-1", "builder"), replies.task("task-1", "reviewer"))
        gateway.script(CONTROLLER, replies.decision("ready_for_planning", "Drafting."), duplicate, duplicate)
        orch.submit_message("Build feature X")
        assert orch.phase == "discussion"
        assert len(gateway.prompts_for(CONTROLLER)) == 3
        assert "duplicates an earlier taskId" in warnings_of(orch.state)[-1]

    def test_empty_message_is_ignored(self, orch, gateway):
        orch.submit_message("   ")
        assert orch.state.messages == []
        assert gateway.calls == []


class TestTeamSetup:
    def _plan_with_designer(self, orch, gateway):
        gateway.script(
            CONTROLLER,
            replies.decision("ready_for_planning", "Drafting."),
            replies.plan(replies.task("task-1", "builder"), replies.task("task-2", "designer")),
        )
        orch.submit_message("Build feature X")

    def test_missing_role_enters_team_setup(self, orch, gateway, warnings_of):
        self._plan_with_designer(orch, gateway)
        state = orch.state
        assert state.phase == "team-setup"
        assert [(r.role, r.task_ids) for r in state.pending_bootstrap.requests] == [("designer", ["task-2"])]
        assert state.pending_bootstrap.resolved == {"task-1": "builder"}
        assert state.tasks == []

        orch.submit_message("hello?")
        assert warnings_of(state)[-1] == "WARNING: Agent creation is pending; confirm or cancel it first"

    def test_confirm_creates_the_agent(self, orch, gateway, store):
        self._plan_with_designer(orch, gateway)
        assert orch.confirm_bootstrap() is True
        state = orch.state
        assert state.phase == "convergence"
        assert "designer" in state.team.member_ids
        assert [(t.task_id, t.agent_id) for t in state.tasks] == [("task-1", "builder"), ("task-2", "designer")]
        assert state.pending_bootstrap is None
        entry = next(e for e in store.read() if e.agent_id == "designer")
        assert (entry.role, entry.tags) == ("designer", ["designer"])
        send = gateway.calls_for("chat.send")[-1]
        assert send["session_key"] == "agent:designer:team:t1"
        assert send["deliver"] is False
        assert send["idempotency_key"] == "t1:designer:bootstrap"

    def test_confirm_after_partial_failure_reuses_created_agents(self, orch, gateway, monkeypatch, warnings_of):
        gateway.script(
            CONTROLLER,
            replies.decision("ready_for_planning", "Drafting."),
            replies.plan(
                replies.task("task-1", "builder"), replies.task("task-2", "designer"), replies.task("task-3", "writer")
            ),
        )
        orch.submit_message("Build feature X")
        assert orch.phase == "team-setup"

        names = []
        create = gateway.create_agent

        def flaky_create(name, workspace, model, emoji=None):
            names.append(name)
            if name == "writer" and names.count("writer") == 1:
                raise GatewayError("agents.create unavailable")
            return create(name, workspace, model, emoji)

        monkeypatch.setattr(gateway, "create_agent", flaky_create)
        assert orch.confirm_bootstrap() is False
        assert warnings_of(orch.state)[-1] == "WARNING: Bootstrap failed: agents.create unavailable"
        assert orch.phase == "team-setup"
        designer = orch.state.pending_bootstrap.requests[0]
        assert (designer.agent_id, designer.bootstrapped) == ("designer", True)

        assert orch.confirm_bootstrap() is True
        assert names == ["designer", "writer", "writer"]
        assert [a.id for a in gateway.agents].count("designer") == 1
        sends = [c["session_key"] for c in gateway.calls_for("chat.send")]
        assert sends.count("agent:designer:team:t1") == 1
        assert [(t.task_id, t.agent_id) for t in orch.state.tasks] == [
            ("task-1", "builder"),
            ("task-2", "designer"),
            ("task-3", "writer"),
        ]

    def test_cancel_returns_to_discussion(self, orch, gateway):
        self._plan_with_designer(orch, gateway)
        assert orch.cancel_bootstrap() is True
        assert orch.phase == "discussion"
        assert orch.state.pending_bootstrap is None
        assert gateway.calls_for("agents.create") == []

    def test_confirm_without_pending(self, orch, warnings_of):
        assert orch.confirm_bootstrap() is False
        assert warnings_of(orch.state)[-1] == "WARNING: No pending agent creation to confirm"


class TestRollback:
    def test_rollback_keeps_decisions(self, orch, gateway):
        orch.submit_message("Build feature X")
        conv = orch.state.convergence
        conv.resolved_decisions = {"db": "pg"}
        conv.assumptions = ["decision:db=pg"]
        conv.last_blueprint_action = "ask_user"
        assert orch.rollback_to_discussion() is True
        state = orch.state
        assert state.phase == "discussion"
        assert state.convergence.resolved_decisions == {"db": "pg"}
        assert state.convergence.assumptions == ["decision:db=pg"]
        assert state.convergence.last_blueprint_action is None

    def test_rollback_in_discussion_is_a_noop(self, orch):
        assert orch.rollback_to_discussion() is True
        assert orch.state.flow_events == []

    def test_execution_needs_convergence(self, orch, warnings_of):
        assert orch.confirm_execution() is False
        assert "only be confirmed from convergence" in warnings_of(orch.state)[-1]


class TestMembership:
    def test_add_member(self, orch, gateway, warnings_of):
        assert orch.add_member("nobody") is False
        assert warnings_of(orch.state)[-1] == "WARNING: Unknown agent: nobody"
        assert orch.add_member(CONTROLLER) is True
        assert CONTROLLER in orch.state.team.member_ids

    def test_remove_member_drops_tasks_and_session(self, orch, gateway):
        orch.submit_message("Build feature X")
        assert orch.remove_member("builder") is True
        state = orch.state
        assert "builder" not in state.team.member_ids
        assert state.tasks == []
        assert "builder" not in state.session_keys
        assert gateway.calls_for("sessions.delete") == [{"key": "agent:builder:team:t1"}]

    def test_controller_cannot_be_removed(self, orch, warnings_of):
        orch.add_member(CONTROLLER)
        assert orch.remove_member(CONTROLLER) is False
        assert "controller cannot be removed" in warnings_of(orch.state)[-1]

    def test_leave_team_twice(self, orch, gateway):
        orch.leave_team()
        assert len(gateway.calls_for("sessions.delete")) == 3
        orch.leave_team()
        assert len(gateway.calls_for("sessions.delete")) == 3


class TestObservation:
    def test_listeners_get_snapshots(self, orch):
        seen = []
        unsubscribe = orch.subscribe(seen.append)
        orch.submit_message("Build feature X")
        assert seen
        assert seen[-1].phase == "convergence"
        assert seen[-1] is not orch.state
        count = len(seen)
        unsubscribe()
        orch.submit_message("start review")
        assert len(seen) == count

    def test_reentrant_call_is_rejected(self, orch, warnings_of):
        fired = []

        def reenter(snapshot):
            if not fired:
                fired.append(True)
                orch.start_review()

        orch.subscribe(reenter)
        orch.submit_message("Build feature X")
        assert "WARNING: Team is busy; start_review rejected" in warnings_of(orch.state)
        assert orch.phase == "convergence"

    def test_state_can_be_resumed(self, orch, team, gateway, settings, store, clock):
        orch.submit_message("Build feature X")
        resumed = TeamOrchestrator(team, gateway=gateway, settings=settings, store=store, clock=clock, state=orch.snapshot())
        assert resumed.phase == "convergence"
        assert resumed.start_review() is True
        assert resumed.state.convergence.last_blueprint_action == "ready_to_execute"
