from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, Field, StrictBool, model_validator

from teamflow.utils.text import clean_str, pick, str_list

DecisionAction = Literal["keep_research", "ask_user", "ready_for_planning", "ready_for_convergence"]
ReviewVerdict = Literal["approve", "revise", "blocked"]
BlueprintAction = Literal["revise_plan", "ready_to_execute", "ask_user"]
DigestStatus = Literal["continue", "ready"]


def _as_dict(data: Any, what: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be an object")
    return data


def _first_text(data: dict[str, Any], *keys: str) -> str:
    # Falsy values fall through, so {"reply": "", "message": "x"} yields "x".
    for k in keys:
        v = clean_str(data.get(k))
        if v:
            return v
    return ""


def decision_key(text: str) -> str:
    slug = re.sub(r"[^a-z0-9\u4e00-\u9fff]+", "-", (text or "").strip().lower()).strip("-")
    return slug or "decision"


class RequiredDecision(BaseModel):
    key: str = Field(min_length=1)
    question: str = Field(min_length=1)
    default_value: str | None = None
    options: list[str] = Field(default_factory=list)


def normalize_required_decisions(raw: Any) -> list[dict[str, Any]]:
    """
    Accept the loose shapes agents produce for required decisions.

    - plain strings become {key: "<slug(question)>-<n>", question}
    - objects may use question|prompt|title|summary, key|id|name,
      default_value|defaultValue|default, options|choices
    - entries without a question are dropped; the first entry per key wins
    """
    if not isinstance(raw, list):
        return []
    seen: set[str] = set()
    out: list[dict[str, Any]] = []
    for index, item in enumerate(raw):
        if isinstance(item, RequiredDecision):
            item = item.model_dump()
        if isinstance(item, str):
            question = item.strip()
            if not question:
                continue
            key = f"{decision_key(question)}-{index + 1}"
            row: dict[str, Any] = {"key": key, "question": question, "options": []}
        elif isinstance(item, dict):
            question = _first_text(item, "question", "prompt", "title", "summary")
            if not question:
                continue
            key = clean_str(pick(item, "key", "id", "name")) or decision_key(question)
            row = {
                "key": key,
                "question": question,
                "default_value": clean_str(pick(item, "default_value", "defaultValue", "default")) or None,
                "options": str_list(pick(item, "options", "choices")),
            }
        else:
            continue
        if key in seen:
            continue
        seen.add(key)
        out.append(row)
    return out


class ControllerDecision(BaseModel):
    action: DecisionAction
    reply: str = Field(min_length=1)
    reason: str | None = None
    questions: list[str] = Field(default_factory=list)
    missing_info: list[str] = Field(default_factory=list)
    ready_reason: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, ControllerDecision):
            return data
        row = _as_dict(data, "CONTROLLER_DECISION")
        return {
            "action": clean_str(row.get("action")).lower(),
            "reply": _first_text(row, "reply", "user_message", "message", "question", "summary"),
            "reason": clean_str(row.get("reason")) or None,
            "questions": str_list(pick(row, "questions", "open_questions", "openQuestions")),
            "missing_info": str_list(pick(row, "missing_info", "missingInfo")),
            "ready_reason": clean_str(pick(row, "ready_reason", "readyReason")) or None,
        }


class PeerReview(BaseModel):
    agent_id: str = Field(min_length=1)
    verdict: ReviewVerdict
    summary: str = Field(min_length=1)
    blockers: list[str] = Field(default_factory=list)
    required_decisions: list[RequiredDecision] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, PeerReview):
            return data
        row = _as_dict(data, "REVIEW_JSON")
        return {
            "agent_id": clean_str(pick(row, "agent_id", "agentId")),
            "verdict": clean_str(row.get("verdict")).lower(),
            "summary": _first_text(row, "summary", "reply", "comment"),
            "blockers": str_list(pick(row, "blockers", "issues")),
            "required_decisions": normalize_required_decisions(
                pick(row, "required_decisions", "requiredDecisions", "questions")
            ),
            "suggestions": str_list(row.get("suggestions")),
        }

    @model_validator(mode="after")
    def _approve_gate(self) -> "PeerReview":
        if self.verdict == "approve" and (self.blockers or self.required_decisions):
            raise ValueError("verdict=approve requires empty blockers and required_decisions")
        return self


class ConvergenceDigest(BaseModel):
    status: DigestStatus
    summary: str = Field(min_length=1)
    agreements: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, ConvergenceDigest):
            return data
        row = _as_dict(data, "CONVERGENCE_DIGEST_JSON")
        return {
            "status": clean_str(row.get("status")).lower(),
            "summary": _first_text(row, "summary", "reply", "message"),
            "agreements": str_list(row.get("agreements")),
            "conflicts": str_list(row.get("conflicts")),
            "open_questions": str_list(pick(row, "open_questions", "openQuestions")),
        }


class ExecutionBlueprint(BaseModel):
    action: BlueprintAction
    reply: str = Field(min_length=1)
    reason: str | None = None
    must_fix: list[str] = Field(default_factory=list)
    required_decisions_resolved: StrictBool
    assumptions: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if isinstance(data, ExecutionBlueprint):
            return data
        row = _as_dict(data, "EXECUTION_BLUEPRINT")
        return {
            "action": clean_str(row.get("action")).lower(),
            "reply": _first_text(row, "reply", "user_message", "message", "summary"),
            "reason": clean_str(row.get("reason")) or None,
            "must_fix": str_list(pick(row, "must_fix", "mustFix")),
            "required_decisions_resolved": pick(row, "required_decisions_resolved", "requiredDecisionsResolved"),
            "assumptions": str_list(row.get("assumptions")),
        }
