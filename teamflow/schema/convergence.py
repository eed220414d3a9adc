from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from .protocol import ConvergenceDigest, ExecutionBlueprint, PeerReview, RequiredDecision

ConvergenceMode = Literal["chat", "review_run", "decision_resolution"]
IssueKind = Literal["blocker", "required-decision", "suggestion"]
IssueState = Literal["open", "resolved", "deferred"]


class ConvergenceIssue(BaseModel):
    id: str
    kind: IssueKind
    state: IssueState
    content: str
    owner: str | None = None
    source_round: int = 1
    decision_key: str | None = None
    options: list[str] = Field(default_factory=list)
    default_value: str | None = None

    @field_validator("decision_key")
    @classmethod
    def _key_not_blank(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("decision_key must be non-empty")
        return v


class ConvergenceState(BaseModel):
    mode: ConvergenceMode = "chat"
    issues: list[ConvergenceIssue] = Field(default_factory=list)
    pending_decisions: list[RequiredDecision] = Field(default_factory=list)
    resolved_decisions: dict[str, str] = Field(default_factory=dict)
    assumptions: list[str] = Field(default_factory=list)
    last_reviews: list[PeerReview] = Field(default_factory=list)
    last_digest: ConvergenceDigest | None = None
    last_blueprint: ExecutionBlueprint | None = None
    last_blueprint_action: str | None = None

    def open_issues(self, kind: IssueKind | None = None) -> list[ConvergenceIssue]:
        return [i for i in self.issues if i.state == "open" and (kind is None or i.kind == kind)]

    def issues_by_kind(self) -> dict[str, list[ConvergenceIssue]]:
        out: dict[str, list[ConvergenceIssue]] = {"blocker": [], "required-decision": [], "suggestion": []}
        for issue in self.issues:
            out[issue.kind].append(issue)
        return out


class ReviewRunState(BaseModel):
    """LangGraph state for one convergence review run; each round reads and returns it."""

    plan: dict[str, Any] = Field(default_factory=dict)
    user_message: str = ""
    reviewers: list[str] = Field(default_factory=list)
    round: int = 0
    max_rounds: int = 3

    # Carried between rounds
    previous_blockers: list[str] = Field(default_factory=list)
    previous_decisions: list[RequiredDecision] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    issues: list[ConvergenceIssue] = Field(default_factory=list)
    resolved_decisions: dict[str, str] = Field(default_factory=dict)

    # Outputs of the latest round
    reviews: list[PeerReview] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    required_decisions: list[RequiredDecision] = Field(default_factory=list)
    digest: ConvergenceDigest | None = None
    digest_failed: bool = False
    cap_reached: bool = False

    # Observability
    trace: list[dict[str, Any]] = Field(default_factory=list)
