from __future__ import annotations

import logging

from teamflow.agents.prompts import bootstrap_prompt
from teamflow.errors import TeamflowError
from teamflow.gateway.base import AgentSummary
from teamflow.roles import RoleMetadataEntry, agent_slug, merge_roles_from_agents, resolve_plan_assignments, upsert_role
from teamflow.roles.resolver import AGENT_EMOJI
from teamflow.schema import PendingAgentCreation
from teamflow.utils.text import now_iso, uniq

from .governor import switch_phase
from .planning import persist_plan
from .runtime import TeamRuntime

logger = logging.getLogger(__name__)

BOOTSTRAP_TIMEOUT_MS = 120_000


def detect_created_agent_id(returned_id: str | None, before_ids: set[str], agents: list[AgentSummary], name: str) -> str | None:
    """Find the agent a create call produced: the returned id, else a new roster entry matching the name slug."""
    fresh = [a for a in agents if a.id not in before_ids]
    if returned_id and any(a.id == returned_id for a in agents):
        return returned_id
    expected = agent_slug(name)
    exact = next((a.id for a in fresh if a.id == expected), None)
    if exact:
        return exact
    return next((a.id for a in fresh if agent_slug(a.name or a.id) == expected), None)


def _create_agent(rt: TeamRuntime, request: PendingAgentCreation) -> str:
    before = {a.id for a in rt.gateway.list_agents()}
    returned = rt.gateway.create_agent(request.suggested_name, "", rt.settings.default_model, AGENT_EMOJI)
    agent_id = detect_created_agent_id(returned, before, rt.gateway.list_agents(), request.suggested_name)
    if not agent_id:
        raise TeamflowError(f"Agent {request.suggested_name} was not found after creation")
    with rt.lock:
        request.agent_id = agent_id
    logger.info("team=%s bootstrap created role=%s agent_id=%s", rt.team_id, request.role, agent_id)
    return agent_id


def _bootstrap_agent(rt: TeamRuntime, request: PendingAgentCreation, agent_id: str, objective: str) -> None:
    rt.gateway.send(
        rt.session_key(agent_id),
        bootstrap_prompt(role=request.role, summary=request.summary, task_ids=request.task_ids, objective=objective),
        deliver=False,
        idempotency_key=f"{rt.team_id}:{agent_id}:bootstrap",
        timeout_ms=BOOTSTRAP_TIMEOUT_MS,
    )

    metadata = merge_roles_from_agents(rt.store.read(), rt.gateway.list_agents())
    entry = next((e for e in metadata if e.agent_id == agent_id), None)
    metadata = upsert_role(
        metadata,
        RoleMetadataEntry(
            agent_id=agent_id,
            name=entry.name if entry else request.suggested_name,
            role=request.role,
            summary=request.summary,
            tags=[request.role],
            model=entry.model if entry else rt.settings.default_model,
            emoji=entry.emoji if entry else AGENT_EMOJI,
            updated_at=now_iso(),
        ),
    )
    rt.store.write(metadata)
    with rt.lock:
        request.bootstrapped = True
    rt.system(f"Created agent {agent_id} for role {request.role}")


def _fulfil(rt: TeamRuntime, request: PendingAgentCreation, objective: str) -> str:
    """Create and bootstrap one pending agent, skipping whatever an earlier attempt already did."""
    agent_id = request.agent_id or _create_agent(rt, request)
    if not request.bootstrapped:
        _bootstrap_agent(rt, request, agent_id, objective)
    return agent_id


def confirm_bootstrap(rt: TeamRuntime) -> bool:
    """
    Create every pending agent, add them to the team and persist the pending plan.
    Any failure leaves the team in team-setup. Requests record their agent as they
    progress, so the next confirmation resumes the batch without creating agents twice.
    """
    pending = rt.state.pending_bootstrap
    if rt.state.phase != "team-setup" or pending is None:
        rt.warn("No pending agent creation to confirm")
        return False

    created: list[str] = []
    try:
        for request in pending.requests:
            created.append(_fulfil(rt, request, pending.plan.objective))
        with rt.lock:
            team = rt.state.team
            rt.state.team = team.model_copy(
                update={"member_ids": uniq([*team.member_ids, *created]), "updated_at": now_iso()}
            )
        rt.bind_members()
        result = resolve_plan_assignments(
            pending.plan,
            gateway=rt.gateway,
            store=rt.store,
            allow_create=False,
            default_model=rt.settings.default_model,
            dispatch_key=f"{rt.team_id}:roles:{rt.next_dispatch()}",
        )
    except TeamflowError as e:
        rt.warn(f"Bootstrap failed: {e}")
        return False

    if result.pending_creations:
        roles = ", ".join(r.role for r in result.pending_creations)
        rt.warn(f"Bootstrap finished but roles are still unassigned: {roles}")
        return False
    resolved = {**pending.resolved, **result.resolved}
    if not persist_plan(rt, pending.plan, resolved, source_message=pending.source_message):
        return False
    if not switch_phase(rt, "convergence", note="bootstrap-confirmed"):
        return False
    rt.state.convergence.mode = "chat"
    rt.system(f"Created {len(created)} agent(s). Send `start review` to begin convergence review.")
    return True


def cancel_bootstrap(rt: TeamRuntime) -> bool:
    if rt.state.phase != "team-setup":
        rt.warn("No pending agent creation to cancel")
        return False
    with rt.lock:
        rt.state.pending_bootstrap = None
    switch_phase(rt, "discussion", note="bootstrap-cancelled")
    rt.system("Agent creation cancelled")
    return True
