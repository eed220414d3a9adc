from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from teamflow.gateway.base import AgentGateway, AgentSummary
from teamflow.schema import PendingAgentCreation, TeamPlan
from teamflow.utils.text import slugify

from .metadata import (
    MissingRole,
    RoleMetadataEntry,
    RoleMetadataStore,
    RoleSelection,
    is_role_metadata_weak,
    merge_roles_from_agents,
    select_roles_with_gateway,
    text_digest,
)

logger = logging.getLogger(__name__)

NAME_ATTEMPTS = 100
AGENT_EMOJI = "\U0001F916"


class RoleSelector(Protocol):
    def __call__(
        self, gateway: AgentGateway, goal: str, entries: list[RoleMetadataEntry], *, idempotency_key: str
    ) -> RoleSelection: ...


@dataclass
class ResolutionResult:
    resolved: dict[str, str] = field(default_factory=dict)  # task_id -> agent_id
    added_agent_ids: list[str] = field(default_factory=list)
    pending_creations: list[PendingAgentCreation] = field(default_factory=list)


def _norm(value: str) -> str:
    return (value or "").strip().lower()


def agent_slug(name: str) -> str:
    return slugify(name, fallback="agent")


def build_unique_agent_name(role: str, agents: list[AgentSummary], reserved: set[str]) -> str:
    """`role`, `role-2`, ... `role-100`, then `role-<epoch ms>`; reserves the slug it returns."""
    base = role.strip() or "team-role-agent"
    taken = {agent_slug(a.name or a.id) for a in agents} | {agent_slug(a.id) for a in agents} | reserved
    for attempt in range(NAME_ATTEMPTS):
        candidate = base if attempt == 0 else f"{base}-{attempt + 1}"
        slug = agent_slug(candidate)
        if slug not in taken:
            reserved.add(slug)
            return candidate
    fallback = f"{base}-{int(time.time() * 1000)}"
    reserved.add(agent_slug(fallback))
    return fallback


def exact_role_match(role_hint: str, entries: list[RoleMetadataEntry]) -> str | None:
    key = _norm(role_hint)
    if not key:
        return None
    for entry in entries:
        if key in {_norm(v) for v in (entry.agent_id, entry.name, entry.role, *entry.tags)}:
            return entry.agent_id
    return None


def pick_missing_role_summary(missing: list[MissingRole], role_hint: str) -> str:
    hint = _norm(role_hint)
    if not hint:
        return "Role is missing. Please create this specialist and define responsibilities."
    for item in missing:
        if _norm(item.role) == hint and item.summary:
            return item.summary
    for item in missing:
        role = _norm(item.role)
        if (hint in role or role in hint) and item.summary:
            return item.summary
    return f"{role_hint} role is missing. Please create and define clear responsibilities."


def resolve_plan_assignments(
    plan: TeamPlan,
    *,
    gateway: AgentGateway,
    store: RoleMetadataStore,
    allow_create: bool,
    default_model: str | None = None,
    selector: RoleSelector = select_roles_with_gateway,
    dispatch_key: str = "roles",
) -> ResolutionResult:
    """
    Map each plan task to a concrete agent. Matcher asks are keyed by
    `dispatch_key`, the objective and the task id. Per task, first match wins:

    1. an agent created earlier in this pass for the same role hint
    2. the task's explicit agentId, if that agent has strong metadata
    3. exact (case-insensitive) match of the role hint on id / name / role / tags
    4. the runtime's matcher over strong candidates
    5. creation disallowed: queue (or merge into) a PendingAgentCreation
    6. creation allowed: create the agent now and remember it for this role hint
    """
    agents = gateway.list_agents()
    metadata = merge_roles_from_agents(store.read(), agents)
    result = ResolutionResult()
    pending_by_role: dict[str, PendingAgentCreation] = {}
    created_by_role: dict[str, str] = {}
    reserved: set[str] = set()
    model = default_model or next((a.model for a in agents if a.model), None)
    objective_digest = text_digest(plan.objective)

    def known(agent_id: str) -> bool:
        return any(a.id == agent_id for a in agents)

    def strong() -> list[RoleMetadataEntry]:
        return [e for e in metadata if not is_role_metadata_weak(e)]

    for task in plan.tasks:
        role_hint = task.role_hint
        hint_key = _norm(role_hint)

        created = created_by_role.get(hint_key) if hint_key else None
        if created and known(created):
            result.resolved[task.task_id] = created
            continue

        if task.agent_id and known(task.agent_id) and task.agent_id in {e.agent_id for e in strong()}:
            result.resolved[task.task_id] = task.agent_id
            continue

        if not role_hint:
            continue

        match = exact_role_match(role_hint, strong())
        if match and known(match):
            result.resolved[task.task_id] = match
            continue

        candidates = strong()
        selection = (
            selector(
                gateway,
                f"{plan.objective}\nTask: {task.instruction}\nRole: {role_hint}",
                candidates,
                idempotency_key=f"{dispatch_key}:{objective_digest}:{task.task_id}",
            )
            if candidates
            else RoleSelection()
        )
        ranked = next((a for a in selection.selected_agent_ids if known(a)), None)
        if ranked:
            result.resolved[task.task_id] = ranked
            continue

        if not allow_create:
            role = selection.missing_roles[0].role if selection.missing_roles else role_hint
            role_key = _norm(role)
            existing = pending_by_role.get(role_key)
            if existing is not None:
                if task.task_id not in existing.task_ids:
                    existing.task_ids.append(task.task_id)
                continue
            pending_by_role[role_key] = PendingAgentCreation(
                role=role,
                summary=pick_missing_role_summary(selection.missing_roles, role),
                suggested_name=build_unique_agent_name(role, agents, reserved),
                task_ids=[task.task_id],
            )
            continue

        name = build_unique_agent_name(role_hint, agents, reserved)
        returned_id = gateway.create_agent(name, "", model, AGENT_EMOJI)
        agents = gateway.list_agents()
        agent_id = returned_id if returned_id and known(returned_id) else agent_slug(name)
        if not known(agent_id):
            logger.warning("created agent not found in roster name=%s", name)
            continue
        logger.info("agent created for role=%s agent_id=%s", role_hint, agent_id)
        result.added_agent_ids.append(agent_id)
        result.resolved[task.task_id] = agent_id
        created_by_role[hint_key] = agent_id
        metadata = merge_roles_from_agents(metadata, agents)

    if result.added_agent_ids:
        store.write(metadata)
    result.pending_creations = list(pending_by_role.values())
    return result
