from .convergence import ConvergenceIssue, ConvergenceState, ReviewRunState
from .protocol import (
    ControllerDecision,
    ConvergenceDigest,
    ExecutionBlueprint,
    PeerReview,
    RequiredDecision,
)
from .state import TeamState
from .team import (
    PendingAgentCreation,
    PendingBootstrap,
    PlanTask,
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

__all__ = [
    "ControllerDecision",
    "ConvergenceDigest",
    "ConvergenceIssue",
    "ConvergenceState",
    "ExecutionBlueprint",
    "PeerReview",
    "PendingAgentCreation",
    "PendingBootstrap",
    "PlanTask",
    "RequiredDecision",
    "ReviewRunState",
    "Team",
    "TeamAuditRecord",
    "TeamContext",
    "TeamFlowEvent",
    "TeamMemberRuntime",
    "TeamMessage",
    "TeamPhase",
    "TeamPlan",
    "TeamReport",
    "TeamState",
    "TeamTaskRuntime",
]
