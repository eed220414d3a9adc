from __future__ import annotations

import re

from teamflow.schema import ConvergenceIssue, PeerReview, RequiredDecision
from teamflow.schema.convergence import IssueKind
from teamflow.utils.text import uniq


def _issue_slug(text: str) -> str:
    slug = re.sub(r"[^a-z0-9\u4e00-\u9fff]+", "-", (text or "").strip().lower()).strip("-")
    return slug or "issue"


def issue_id(kind: IssueKind, content: str, decision_key: str | None = None) -> str:
    if kind == "required-decision" and decision_key:
        return f"decision:{_issue_slug(decision_key)}"
    prefix = {"blocker": "blocker", "suggestion": "suggestion"}.get(kind, "decision")
    return f"{prefix}:{_issue_slug(content)}"


def merge_blockers(reviews: list[PeerReview]) -> list[str]:
    return uniq(b for r in reviews for b in r.blockers)


def merge_required_decisions(items: list[RequiredDecision]) -> list[RequiredDecision]:
    """Dedupe by key; the first question/default wins and option sets are unioned."""
    by_key: dict[str, RequiredDecision] = {}
    for item in items:
        key = item.key.strip()
        prev = by_key.get(key)
        if prev is None:
            by_key[key] = item.model_copy(update={"key": key, "options": uniq(item.options)})
            continue
        by_key[key] = prev.model_copy(
            update={
                "default_value": prev.default_value or item.default_value,
                "options": uniq([*prev.options, *item.options]),
            }
        )
    return list(by_key.values())


def default_for(decision: RequiredDecision) -> str:
    if decision.default_value:
        return decision.default_value
    if decision.options:
        return decision.options[0]
    return "accept-default"


def sync_issues(
    previous: list[ConvergenceIssue],
    *,
    round_: int,
    reviews: list[PeerReview],
    blockers: list[str],
    decisions: list[RequiredDecision],
    suggestions: list[str],
    resolved_decisions: dict[str, str],
) -> list[ConvergenceIssue]:
    """
    Recompute the whole issue set for one round.

    - blockers present this round are open; absent ones become resolved
    - decisions present are open unless their key was resolved; absent ones become resolved
    - suggestions keep whatever state they had (new ones start deferred), present or not
    - owner is the first reviewer who raised the item, source_round the first round it appeared
    """
    existing = {i.id: i for i in previous}
    owners: dict[str, str] = {}
    for review in reviews:
        for b in review.blockers:
            owners.setdefault(issue_id("blocker", b), review.agent_id)
        for d in review.required_decisions:
            owners.setdefault(issue_id("required-decision", d.question, d.key), review.agent_id)
        for s in review.suggestions:
            owners.setdefault(issue_id("suggestion", s), review.agent_id)

    def carry(iid: str) -> tuple[str | None, int]:
        prev = existing.get(iid)
        return (prev.owner if prev and prev.owner else owners.get(iid)), (prev.source_round if prev else round_)

    nxt: dict[str, ConvergenceIssue] = {}
    for b in blockers:
        iid = issue_id("blocker", b)
        owner, first = carry(iid)
        nxt[iid] = ConvergenceIssue(id=iid, kind="blocker", state="open", content=b, owner=owner, source_round=first)
    for d in decisions:
        iid = issue_id("required-decision", d.question, d.key)
        owner, first = carry(iid)
        nxt[iid] = ConvergenceIssue(
            id=iid,
            kind="required-decision",
            state="resolved" if d.key in resolved_decisions else "open",
            content=d.question,
            owner=owner,
            source_round=first,
            decision_key=d.key,
            options=list(d.options),
            default_value=d.default_value,
        )
    for s in suggestions:
        iid = issue_id("suggestion", s)
        owner, first = carry(iid)
        prev = existing.get(iid)
        nxt[iid] = ConvergenceIssue(
            id=iid, kind="suggestion", state=prev.state if prev else "deferred", content=s, owner=owner, source_round=first
        )
    for iid, prev in existing.items():
        if iid in nxt:
            continue
        nxt[iid] = prev if prev.kind == "suggestion" else prev.model_copy(update={"state": "resolved"})
    return sorted(nxt.values(), key=lambda i: i.id)


def resolve_decision_issues(issues: list[ConvergenceIssue], keys: set[str]) -> list[ConvergenceIssue]:
    return [
        i.model_copy(update={"state": "resolved"}) if i.kind == "required-decision" and i.decision_key in keys else i
        for i in issues
    ]
