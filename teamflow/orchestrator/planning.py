from __future__ import annotations

import logging
from typing import Literal

from teamflow.agents.prompts import plan_retry, planning_prompt
from teamflow.agents.structured import request_structured
from teamflow.errors import TeamflowError
from teamflow.protocol import parse_plan, validate_plan
from teamflow.roles import resolve_plan_assignments
from teamflow.schema import PendingBootstrap, TeamPlan, TeamTaskRuntime
from teamflow.utils.text import now_iso, uniq

from .context import context_from_plan, wrap_with_context
from .governor import switch_phase
from .runtime import TeamRuntime

logger = logging.getLogger(__name__)

PersistOutcome = Literal["ok", "pending-bootstrap", "failed"]


def build_task_runtime(plan: TeamPlan, resolved: dict[str, str]) -> list[TeamTaskRuntime]:
    """One runtime record per plan task that has a resolved agent, in plan order."""
    return [
        TeamTaskRuntime(
            task_id=t.task_id,
            agent_id=resolved[t.task_id],
            instruction=t.instruction,
            acceptance=list(t.acceptance),
        )
        for t in plan.tasks
        if resolved.get(t.task_id)
    ]


def persist_plan(rt: TeamRuntime, plan: TeamPlan, resolved: dict[str, str], *, source_message: str) -> bool:
    """
    Make `plan` the team's plan. Resolved agents that are not members yet join the
    team, so every task's agent is a member. Returns False when no task is runnable.
    """
    tasks = build_task_runtime(plan, resolved)
    if not tasks:
        rt.warn("The plan has no task with a resolved agent; nothing to execute")
        return False
    with rt.lock:
        team = rt.state.team
        members = uniq([*team.member_ids, *(t.agent_id for t in tasks)])
        if members != team.member_ids:
            rt.state.team = team.model_copy(update={"member_ids": members, "updated_at": now_iso()})
        rt.state.plan = plan
        rt.state.tasks = tasks
        rt.state.pending_bootstrap = None
        rt.state.context = context_from_plan(
            rt.state.context,
            plan.objective,
            [f"{t.task_id}: {t.instruction}" for t in plan.tasks],
            uniq(t.role_hint for t in plan.tasks if t.role_hint),
            source_message,
        )
    rt.bind_members()
    rt.system(f"Plan accepted with {len(tasks)} task(s)")
    logger.info("team=%s plan persisted tasks=%d members=%d", rt.team_id, len(tasks), len(rt.state.team.member_ids))
    return True


def resolve_and_persist(rt: TeamRuntime, plan: TeamPlan, *, source_message: str) -> PersistOutcome:
    result = resolve_plan_assignments(
        plan,
        gateway=rt.gateway,
        store=rt.store,
        allow_create=rt.settings.auto_create_agents,
        default_model=rt.settings.default_model,
        dispatch_key=f"{rt.team_id}:roles:{rt.next_dispatch()}",
    )
    if result.pending_creations:
        with rt.lock:
            rt.state.pending_bootstrap = PendingBootstrap(
                plan=plan,
                source_message=source_message,
                resolved=result.resolved,
                requests=result.pending_creations,
            )
        roles = ", ".join(r.role for r in result.pending_creations)
        rt.system(f"{len(result.pending_creations)} role(s) have no agent yet ({roles}); confirm to create them")
        return "pending-bootstrap"
    if result.added_agent_ids:
        rt.system(f"Created {len(result.added_agent_ids)} agent(s): {', '.join(result.added_agent_ids)}")
    return "ok" if persist_plan(rt, plan, result.resolved, source_message=source_message) else "failed"


def run_planning_round(rt: TeamRuntime, message: str) -> None:
    """Ask the controller for a PLAN, resolve its roles and move on to convergence or team-setup."""
    controller = rt.state.team.controller_id
    runtime_message = wrap_with_context(message, rt.envelope())
    try:
        res = request_structured(
            rt,
            agent_id=controller,
            actor="controller",
            label="PLAN",
            purpose="planning",
            prompt=planning_prompt(runtime_message),
            retry_prompt=plan_retry(),
            parse=parse_plan,
            max_attempts=2,
            validate=validate_plan,
        )
    except TeamflowError as e:
        rt.warn(str(e))
        switch_phase(rt, "discussion")
        return

    rt.say("assistant", res.text, agent_id=controller, kind="plan")
    try:
        outcome = resolve_and_persist(rt, res.value, source_message=message)
    except TeamflowError as e:
        rt.warn(f"Role resolution failed: {e}")
        switch_phase(rt, "discussion")
        return

    if outcome == "ok":
        if switch_phase(rt, "convergence"):
            rt.state.convergence.mode = "chat"
            rt.system("Planning done. Send `start review` to begin convergence review.")
    elif outcome == "pending-bootstrap":
        switch_phase(rt, "team-setup")
    else:
        switch_phase(rt, "discussion")
