from __future__ import annotations

import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from teamflow.utils.text import clean_str, now_iso, pick, str_list, uniq

TeamPhase = Literal["discussion", "planning", "team-setup", "convergence", "execution", "done"]
TaskStatus = Literal["pending", "running", "done", "partial", "blocked", "error", "missing-report"]
ReportStatus = Literal["done", "partial", "blocked"]
MemberStatus = Literal[
    "idle", "discussing", "planning", "waiting", "running", "done", "partial", "blocked", "error", "missing-report"
]
FlowEventType = Literal[
    "phase-transition",
    "controller-decision",
    "tool-policy-blocked",
    "review-collected",
    "convergence-digest",
    "convergence-round",
    "execution-blueprint",
    "action",
]
FlowActor = Literal["program", "controller", "member"]
MessageRole = Literal["user", "assistant", "system"]
MessageKind = Literal["normal", "plan", "report"]

_TASK_LIST_KEYS = ("tasks", "assignments", "memberAssignments", "member_assignments")

_REPORT_STATUS_ALIASES = {
    "done": "done",
    "completed": "done",
    "complete": "done",
    "success": "done",
    "blocked": "blocked",
    "failed": "blocked",
    "error": "blocked",
    "partial": "partial",
    "in_progress": "partial",
    "in-progress": "partial",
}


class Team(BaseModel):
    id: str
    name: str = ""
    controller_id: str
    member_ids: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)

    @field_validator("member_ids")
    @classmethod
    def _unique_members(cls, v: list[str]) -> list[str]:
        return uniq(m.strip() for m in v if m and m.strip())


class PlanTask(BaseModel):
    task_id: str = ""
    agent_id: str | None = None
    role: str | None = None
    instruction: str = ""
    acceptance: list[str] = Field(default_factory=list)
    depends_on: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("plan task must be an object")
        return {
            "task_id": clean_str(pick(data, "task_id", "taskId", "id")),
            "agent_id": clean_str(pick(data, "agent_id", "agentId")) or None,
            "role": clean_str(pick(data, "role", "agent_role", "agentRole")) or None,
            "instruction": clean_str(pick(data, "instruction", "task", "description", "task_description")),
            "acceptance": str_list(pick(data, "acceptance", "acceptance_criteria", "acceptanceCriteria")),
            "depends_on": str_list(pick(data, "depends_on", "dependsOn")),
        }

    @property
    def role_hint(self) -> str:
        return self.role or self.agent_id or ""


class TeamPlan(BaseModel):
    objective: str = ""
    scope: list[str] = Field(default_factory=list)
    tasks: list[PlanTask] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, TeamPlan):
            return data
        if not isinstance(data, dict):
            raise ValueError("plan must be an object")
        raw_tasks = pick(data, *_TASK_LIST_KEYS)
        if not isinstance(raw_tasks, list):
            raise ValueError("PLAN.tasks is required")
        tasks: list[Any] = []
        for i, t in enumerate(raw_tasks):
            if isinstance(t, PlanTask):
                t = t.model_dump()
            if isinstance(t, dict) and not clean_str(pick(t, "task_id", "taskId", "id")):
                t = {**t, "task_id": f"task-{i + 1}"}
            tasks.append(t)
        return {
            "objective": clean_str(pick(data, "objective", "goal")),
            "scope": str_list(pick(data, "scope", "inScope", "in_scope")),
            "tasks": tasks,
            "risks": str_list(pick(data, "risks", "riskList", "risk_list")),
        }

    def payload(self) -> dict[str, Any]:
        """JSON-ready form used inside agent prompts."""
        return self.model_dump(exclude_none=True)


class TeamTaskRuntime(BaseModel):
    task_id: str
    agent_id: str
    instruction: str
    acceptance: list[str] = Field(default_factory=list)
    status: TaskStatus = "pending"
    attempts: int = 0
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
    started_at: str | None = None
    finished_at: str | None = None
    run_id: str | None = None
    report_id: str | None = None
    last_error: str | None = None


class TeamReport(BaseModel):
    """
    Terminal status message an agent emits at the end of a task.

    Validation context may carry `task_id` / `agent_id` defaults; ids missing
    from the payload fall back to those, and a missing report id is generated.
    """

    report_id: str
    task_id: str
    agent_id: str
    status: ReportStatus
    result: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any, info: ValidationInfo) -> Any:
        if isinstance(data, TeamReport):
            return data
        if not isinstance(data, dict):
            raise ValueError("report must be an object")
        defaults = info.context or {}
        task_id = clean_str(pick(data, "task_id", "taskId")) or clean_str(defaults.get("task_id"))
        agent_id = clean_str(pick(data, "agent_id", "agentId")) or clean_str(defaults.get("agent_id"))
        raw_status = clean_str(data.get("status")).lower()
        status = _REPORT_STATUS_ALIASES.get(raw_status, raw_status)

        result = str_list(pick(data, "result", "results", "output"))
        if not result:
            result = str_list(data.get("summary"))

        report_id = clean_str(pick(data, "report_id", "reportId", "id"))
        if not report_id and task_id and agent_id:
            report_id = f"{task_id}:{agent_id}:generated"
        return {
            "report_id": report_id,
            "task_id": task_id,
            "agent_id": agent_id,
            "status": status,
            "result": result,
            "evidence": str_list(data.get("evidence")),
            "next_steps": str_list(pick(data, "next_steps", "nextSteps")),
            "risks": str_list(data.get("risks")),
        }


class TeamContext(BaseModel):
    """Shared team knowledge; decisions/artifacts only ever grow by set union."""

    goal: str = ""
    plan: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    status: str = ""
    decisions: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)
    artifacts: list[str] = Field(default_factory=list)
    updated_at: str = Field(default_factory=now_iso)


class TeamMemberRuntime(BaseModel):
    agent_id: str
    status: MemberStatus = "idle"
    current_task_id: str | None = None
    last_task_id: str | None = None
    last_run_id: str | None = None
    last_report_id: str | None = None
    last_duration_ms: int | None = None
    last_error: str | None = None
    updated_at: str = Field(default_factory=now_iso)


class TeamAuditRecord(BaseModel):
    team_id: str
    agent_id: str
    task_id: str
    run_id: str | None = None
    report_id: str | None = None
    status: TaskStatus
    ts: str = Field(default_factory=now_iso)
    error: str | None = None


class TeamFlowEvent(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    team_id: str
    phase: TeamPhase
    type: FlowEventType
    actor: FlowActor
    agent_id: str | None = None
    ts: str = Field(default_factory=now_iso)
    note: str | None = None
    payload: dict[str, Any] | None = None


class TeamMessage(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: MessageRole
    agent_id: str | None = None
    content: str
    kind: MessageKind = "normal"
    ts: str = Field(default_factory=now_iso)

    @model_validator(mode="after")
    def _detect_kind(self) -> "TeamMessage":
        if self.kind == "normal":
            head = self.content.lstrip().upper()
            if head.startswith("REPORT:"):
                self.kind = "report"
            elif head.startswith("PLAN:"):
                self.kind = "plan"
        return self


class PendingAgentCreation(BaseModel):
    role: str
    summary: str = ""
    suggested_name: str
    task_ids: list[str] = Field(default_factory=list)
    # agent_id is set once the agent exists; bootstrapped once its prompt and metadata are written
    agent_id: str | None = None
    bootstrapped: bool = False


class PendingBootstrap(BaseModel):
    plan: TeamPlan
    source_message: str = ""
    resolved: dict[str, str] = Field(default_factory=dict)  # task_id -> agent_id resolved before setup
    requests: list[PendingAgentCreation] = Field(default_factory=list)
