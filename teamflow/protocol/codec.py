from __future__ import annotations

import logging
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from teamflow.schema import (
    ControllerDecision,
    ConvergenceDigest,
    ExecutionBlueprint,
    PeerReview,
    TeamPlan,
    TeamReport,
)
from teamflow.utils.json_extract import iter_json_objects

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

NESTED_KEYS = ("payload", "data", "result")

DECISION_LABELS = ("CONTROLLER_DECISION",)
PLAN_LABELS = ("PLAN_JSON", "PLAN")
REVIEW_LABELS = ("REVIEW_JSON", "REVIEW")
DIGEST_LABELS = ("CONVERGENCE_DIGEST_JSON", "CONVERGENCE_DIGEST", "DIGEST")
BLUEPRINT_LABELS = ("EXECUTION_BLUEPRINT", "BLUEPRINT")

_REPORT_MARKER = re.compile(r"REPORT\s*:\s*", flags=re.IGNORECASE)


def _validate(model: type[M], obj: Any, context: dict[str, Any] | None) -> M | None:
    try:
        return model.model_validate(obj, context=context)
    except ValidationError:
        return None


def parse_first(
    text: str,
    labels: tuple[str, ...],
    model: type[M],
    *,
    nested_keys: tuple[str, ...] = NESTED_KEYS,
    context: dict[str, Any] | None = None,
) -> M | None:
    """
    Return the first candidate object in `text` that validates as `model`, else None.

    A candidate that fails is retried once through the first wrapper key present
    (e.g. ``{"payload": {...}}``) before moving on to the next candidate.
    """
    for obj in iter_json_objects(text, labels):
        direct = _validate(model, obj, context)
        if direct is not None:
            return direct
        for key in nested_keys:
            if obj.get(key) is None:
                continue
            if isinstance(obj[key], dict):
                nested = _validate(model, obj[key], context)
                if nested is not None:
                    return nested
            break
    logger.debug("protocol parse failed model=%s labels=%s", model.__name__, ",".join(labels))
    return None


def parse_controller_decision(text: str) -> ControllerDecision | None:
    return parse_first(text, DECISION_LABELS, ControllerDecision)


def parse_plan(text: str) -> TeamPlan | None:
    return parse_first(text, PLAN_LABELS, TeamPlan)


def parse_review(text: str) -> PeerReview | None:
    return parse_first(text, REVIEW_LABELS, PeerReview)


def parse_digest(text: str) -> ConvergenceDigest | None:
    return parse_first(text, DIGEST_LABELS, ConvergenceDigest)


def parse_blueprint(text: str) -> ExecutionBlueprint | None:
    return parse_first(text, BLUEPRINT_LABELS, ExecutionBlueprint)


def parse_report(text: str, *, task_id: str = "", agent_id: str = "") -> TeamReport | None:
    """
    Reports must be announced with a ``REPORT:`` marker; a bare JSON object is not a report.
    Ids missing from the payload fall back to the dispatching task/agent.
    """
    m = _REPORT_MARKER.search(text or "")
    if m is None:
        return None
    report = parse_first(
        text[m.end():],
        (),
        TeamReport,
        nested_keys=("report",),
        context={"task_id": task_id, "agent_id": agent_id},
    )
    if report is None or validate_report(report) is not None:
        return None
    return report


def validate_plan(plan: TeamPlan | None) -> str | None:
    """Domain rules on top of schema validation. Returns an error string, or None when valid."""
    if plan is None:
        return "PLAN is empty"
    if not plan.objective:
        return "PLAN.objective is required"
    if not plan.tasks:
        return "PLAN.tasks is required"
    seen: set[str] = set()
    for task in plan.tasks:
        if not task.task_id:
            return "PLAN.tasks[].taskId is required"
        if task.task_id in seen:
            return f"PLAN.tasks[{task.task_id}] duplicates an earlier taskId"
        seen.add(task.task_id)
        if not task.instruction:
            return f"PLAN.tasks[{task.task_id}].instruction is required"
        if not task.role_hint:
            return f"PLAN.tasks[{task.task_id}] requires agentId or role"
        if not task.acceptance:
            return f"PLAN.tasks[{task.task_id}].acceptance must be a non-empty list"
    return None


def validate_report(report: TeamReport | None) -> str | None:
    if report is None:
        return "REPORT missing or unparsable"
    if not report.report_id:
        return "REPORT.reportId is required"
    if not report.task_id:
        return "REPORT.task_id is required"
    if not report.agent_id:
        return "REPORT.agent_id is required"
    return None
