from __future__ import annotations

from teamflow.errors import ProtocolError
from teamflow.orchestrator.issues import merge_blockers, merge_required_decisions, sync_issues
from teamflow.orchestrator.runtime import TeamRuntime
from teamflow.protocol import parse_digest, parse_review
from teamflow.schema import PeerReview, ReviewRunState
from teamflow.utils.text import now_iso, uniq

from .prompts import digest_prompt, digest_retry, review_prompt, review_retry
from .structured import request_structured

FORMAT_FAILURE_BLOCKER = "invalid REVIEW_JSON"


def _ensure_state(state) -> ReviewRunState:
    if isinstance(state, ReviewRunState):
        return state
    return ReviewRunState.model_validate(state)


def _log(state: ReviewRunState, who: str, msg: str) -> ReviewRunState:
    state.trace.append({"ts": now_iso(), "node": who, "message": msg, "round": state.round})
    return state


def review_node(state: ReviewRunState, rt: TeamRuntime) -> ReviewRunState:
    """Collect one peer review per member, one member at a time, in roster order."""
    state = _ensure_state(state)
    state.round += 1
    rt.flow("convergence-round", "program", note=f"start:{state.round}", payload={"round": state.round})

    unresolved = None
    if state.round > 1:
        unresolved = {
            "blockers": state.previous_blockers,
            "required_decisions": [
                d.model_dump(exclude_none=True)
                for d in state.previous_decisions
                if d.key not in state.resolved_decisions
            ],
        }
    last_digest = state.digest.model_dump() if state.digest else None

    reviews: list[PeerReview] = []
    for agent_id in state.reviewers:
        try:
            res = request_structured(
                rt,
                agent_id=agent_id,
                actor="member",
                label="REVIEW_JSON",
                purpose=f"review-r{state.round}",
                prompt=review_prompt(
                    agent_id=agent_id,
                    round_=state.round,
                    plan=state.plan,
                    unresolved=unresolved,
                    resolved_decisions=state.resolved_decisions,
                    last_digest=last_digest,
                    user_message=state.user_message,
                ),
                retry_prompt=review_retry(agent_id),
                parse=parse_review,
                max_attempts=rt.settings.review_max_attempts,
            )
            review = res.value.model_copy(update={"agent_id": agent_id})
            rt.say("assistant", res.text, agent_id=agent_id)
        except ProtocolError as e:
            rt.warn(str(e))
            review = PeerReview(
                agent_id=agent_id, verdict="blocked", summary="review-format-invalid", blockers=[FORMAT_FAILURE_BLOCKER]
            )
        rt.flow(
            "review-collected",
            "member",
            agent_id=agent_id,
            note=review.verdict,
            payload={
                "round": state.round,
                "blockers": len(review.blockers),
                "required_decisions": len(review.required_decisions),
                "suggestions": len(review.suggestions),
            },
        )
        reviews.append(review)

    state.reviews = reviews
    return _log(state, "review", f"{len(reviews)} reviews collected")


def merge_node(state: ReviewRunState) -> ReviewRunState:
    """Fold this round's reviews into blockers / decisions / suggestions and recompute issues."""
    state = _ensure_state(state)
    blockers = merge_blockers(state.reviews)
    decisions = [
        d
        for d in merge_required_decisions([d for r in state.reviews for d in r.required_decisions])
        if d.key not in state.resolved_decisions
    ]
    suggestions = uniq([*state.suggestions, *(s for r in state.reviews for s in r.suggestions)])
    state.issues = sync_issues(
        state.issues,
        round_=state.round,
        reviews=state.reviews,
        blockers=blockers,
        decisions=decisions,
        suggestions=suggestions,
        resolved_decisions=state.resolved_decisions,
    )
    state.blockers = blockers
    state.required_decisions = decisions
    state.suggestions = suggestions
    return _log(state, "merge", f"blockers={len(blockers)} decisions={len(decisions)} suggestions={len(suggestions)}")


def digest_node(state: ReviewRunState, rt: TeamRuntime) -> ReviewRunState:
    state = _ensure_state(state)
    controller = rt.state.team.controller_id
    try:
        res = request_structured(
            rt,
            agent_id=controller,
            actor="controller",
            label="CONVERGENCE_DIGEST_JSON",
            purpose=f"digest-r{state.round}",
            prompt=digest_prompt(
                round_=state.round,
                plan=state.plan,
                reviews=[r.model_dump() for r in state.reviews],
                blockers=state.blockers,
                required_decisions=[d.model_dump(exclude_none=True) for d in state.required_decisions],
                user_message=state.user_message,
            ),
            retry_prompt=digest_retry(),
            parse=parse_digest,
            max_attempts=rt.settings.digest_max_attempts,
        )
    except ProtocolError as e:
        rt.warn(str(e))
        state.digest_failed = True
        return _log(state, "digest", "digest failed")

    digest = res.value
    rt.say("assistant", res.text, agent_id=controller)
    rt.flow(
        "convergence-digest",
        "controller",
        agent_id=controller,
        note=digest.status,
        payload={"round": state.round, "conflicts": len(digest.conflicts), "open_questions": len(digest.open_questions)},
    )
    state.digest = digest
    state.previous_blockers = list(state.blockers)
    state.previous_decisions = list(state.required_decisions)
    state.cap_reached = state.round >= state.max_rounds and digest.status == "continue"
    return _log(state, "digest", f"status={digest.status}")
