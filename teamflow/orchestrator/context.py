from __future__ import annotations

import json
from typing import Any

from teamflow.schema import TeamContext, TeamReport, TeamState
from teamflow.utils.text import now_iso, uniq

SHARED_SUMMARY_DECISIONS = 8
LATEST_REPORTS = 10


def build_envelope(state: TeamState, names: dict[str, str] | None = None) -> dict[str, Any]:
    """Compact view of the team that accompanies every message sent to an agent."""
    names = names or {}
    ctx = state.context
    return {
        "team_id": state.team.id,
        "phase": state.phase,
        "goal": ctx.goal,
        "shared_summary": "\n".join(ctx.decisions[-SHARED_SUMMARY_DECISIONS:]),
        "open_questions": list(ctx.open_questions),
        "members": [{"agent_id": m, "name": names.get(m, m)} for m in state.team.member_ids],
        "latest_reports": [
            {"report_id": r.report_id, "agent_id": r.agent_id, "status": r.status, "result": r.result}
            for r in state.reports[-LATEST_REPORTS:]
        ],
    }


def wrap_with_context(raw_message: str, envelope: dict[str, Any]) -> str:
    return "\n".join(["[TEAM_CONTEXT]", json.dumps(envelope, ensure_ascii=False, indent=2), "", "[USER_MESSAGE]", raw_message.strip()])


def fold_report(context: TeamContext, report: TeamReport) -> TeamContext:
    """
    Merge a finished report into shared context. Only `done` reports count, and
    merging uses set-union so folding the same report twice is a no-op.
    """
    if report.status != "done":
        return context
    decisions = uniq([*context.decisions, *report.result])
    artifacts = uniq([*context.artifacts, *report.result])
    if decisions == context.decisions and artifacts == context.artifacts:
        return context
    return context.model_copy(update={"decisions": decisions, "artifacts": artifacts, "updated_at": now_iso()})


def context_from_plan(previous: TeamContext, plan_objective: str, plan_lines: list[str], roles: list[str], goal: str) -> TeamContext:
    return previous.model_copy(
        update={
            "goal": goal or previous.goal or plan_objective,
            "plan": plan_lines,
            "roles": roles,
            "status": "planned",
            "updated_at": now_iso(),
        }
    )
