from __future__ import annotations

from pydantic import BaseModel, Field

from .convergence import ConvergenceState
from .team import (
    PendingBootstrap,
    Team,
    TeamAuditRecord,
    TeamContext,
    TeamFlowEvent,
    TeamMemberRuntime,
    TeamMessage,
    TeamPhase,
    TeamPlan,
    TeamReport,
    TeamTaskRuntime,
)


class TeamState(BaseModel):
    """Canonical per-team orchestrator state. Owned by one TeamOrchestrator."""

    team: Team
    phase: TeamPhase = "discussion"

    # Planning artifacts
    plan: TeamPlan | None = None
    tasks: list[TeamTaskRuntime] = Field(default_factory=list)
    pending_bootstrap: PendingBootstrap | None = None

    # Execution / feedback
    reports: list[TeamReport] = Field(default_factory=list)
    context: TeamContext = Field(default_factory=TeamContext)
    member_runtime: dict[str, TeamMemberRuntime] = Field(default_factory=dict)
    convergence: ConvergenceState = Field(default_factory=ConvergenceState)

    # Control / routing
    session_keys: dict[str, str] = Field(default_factory=dict)  # agent_id -> session key
    dispatch_seq: int = 0
    drift_count: int = 0

    # Observability (append-only)
    messages: list[TeamMessage] = Field(default_factory=list)
    audit: list[TeamAuditRecord] = Field(default_factory=list)
    flow_events: list[TeamFlowEvent] = Field(default_factory=list)

    def task(self, task_id: str) -> TeamTaskRuntime | None:
        return next((t for t in self.tasks if t.task_id == task_id), None)

    def members(self) -> list[str]:
        """Non-controller participants."""
        return [m for m in self.team.member_ids if m != self.team.controller_id]
