from __future__ import annotations

import logging

from teamflow.errors import PhaseTransitionError
from teamflow.schema import TeamPhase, TeamState

from .runtime import TeamRuntime

logger = logging.getLogger(__name__)

ALLOWED_EDGES: frozenset[tuple[str, str]] = frozenset(
    {
        ("discussion", "planning"),
        ("discussion", "convergence"),
        ("planning", "discussion"),
        ("planning", "convergence"),
        ("planning", "team-setup"),
        ("team-setup", "convergence"),
        ("team-setup", "discussion"),
        ("convergence", "discussion"),
        ("convergence", "planning"),
        ("convergence", "execution"),
        ("execution", "discussion"),
        ("execution", "done"),
        ("done", "discussion"),
    }
)


def can_transition(current: TeamPhase, requested: TeamPhase) -> bool:
    return (current, requested) in ALLOWED_EDGES


def ensure_transition(current: TeamPhase, requested: TeamPhase) -> None:
    if not can_transition(current, requested):
        raise PhaseTransitionError(current, requested)


def transition_guard(state: TeamState, requested: TeamPhase) -> str | None:
    """Edge-specific preconditions. Returns the rejection reason, or None."""
    if state.phase == "discussion" and requested == "convergence":
        if state.plan is None or not state.tasks:
            return "No plan with runnable tasks yet; plan first"
    if state.phase == "convergence" and requested == "execution":
        conv = state.convergence
        blockers = conv.open_issues("blocker")
        if blockers:
            return f"Blockers remain: {len(blockers)}"
        decisions = conv.open_issues("required-decision")
        if decisions:
            keys = ", ".join(i.decision_key or i.id for i in decisions)
            return f"Decision {keys} unresolved"
        if conv.mode != "chat":
            return f"Convergence is busy ({conv.mode})"
    return None


def switch_phase(rt: TeamRuntime, requested: TeamPhase, *, note: str | None = None) -> bool:
    """
    Move the team to `requested`. Illegal edges and failed guards leave the phase
    untouched and append a visible warning. Staying in the same phase is not an
    edge either; callers that may already be there check first.
    """
    with rt.lock:
        current = rt.state.phase
        try:
            ensure_transition(current, requested)
        except PhaseTransitionError as e:
            rt.warn(str(e))
            return False
        reason = transition_guard(rt.state, requested)
        if reason:
            rt.warn(reason)
            return False
        rt.state.phase = requested
    logger.info("team=%s phase %s -> %s", rt.team_id, current, requested)
    rt.flow("phase-transition", "program", note=note or f"{current}->{requested}", payload={"from": current, "to": requested})
    return True
