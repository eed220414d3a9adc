from __future__ import annotations

import logging

from teamflow.agents.prompts import controller_decision_prompt, controller_decision_retry, discussion_continuation
from teamflow.agents.structured import request_structured
from teamflow.errors import ProtocolError
from teamflow.protocol import parse_controller_decision
from teamflow.schema import ControllerDecision

from .context import wrap_with_context
from .governor import switch_phase
from .planning import run_planning_round
from .runtime import TeamRuntime

logger = logging.getLogger(__name__)

DRIFT_MAX_ROUNDS = 3

QUESTION_HINTS = (
    "需要确认",
    "请确认",
    "请提供",
    "请补充",
    "请选择",
    "是否",
    "which",
    "what",
    "could you",
    "please provide",
)


def reply_looks_like_question(text: str) -> bool:
    normalized = (text or "").strip()
    if not normalized:
        return False
    if "?" in normalized or "？" in normalized:
        return True
    lower = normalized.lower()
    return any(hint in lower for hint in QUESTION_HINTS)


def normalize_decision(decision: ControllerDecision) -> ControllerDecision:
    """
    A decision that still carries a question for the user is an `ask_user`,
    whatever action the controller picked.
    """
    if decision.action == "ask_user":
        return decision
    asks = reply_looks_like_question(decision.reply) or bool(decision.questions) or bool(decision.missing_info)
    if not asks:
        return decision
    return decision.model_copy(
        update={"action": "ask_user", "reason": decision.reason or f"normalized: {decision.action} with user-question signal"}
    )


def run_discussion(rt: TeamRuntime, message: str) -> None:
    """
    Controller discussion loop: up to `discussion_max_rounds` decision rounds,
    ending as soon as the controller asks the user something or the team moves on
    to planning / convergence.
    """
    controller = rt.state.team.controller_id
    max_rounds = rt.settings.discussion_max_rounds
    round_message = message

    for round_ in range(1, max_rounds + 1):
        rt.flow("action", "program", agent_id=controller, note=f"discussion-loop-round:{round_}")
        runtime_message = wrap_with_context(round_message, rt.envelope())
        try:
            res = request_structured(
                rt,
                agent_id=controller,
                actor="controller",
                label="CONTROLLER_DECISION",
                purpose="discussion",
                prompt=controller_decision_prompt(runtime_message),
                retry_prompt=controller_decision_retry(),
                parse=parse_controller_decision,
                max_attempts=rt.settings.decision_max_attempts,
            )
        except ProtocolError as e:
            with rt.lock:
                rt.state.drift_count += 1
                drift = rt.state.drift_count
            rt.warn(str(e))
            if drift >= DRIFT_MAX_ROUNDS:
                rt.warn(f"Controller produced no usable decision for {drift} rounds in a row")
            return

        raw = res.value
        decision = normalize_decision(raw)
        rt.say("assistant", decision.reply, agent_id=controller)
        note = decision.action if decision.action == raw.action else f"normalized:{raw.action}->{decision.action}"
        rt.flow(
            "controller-decision",
            "controller" if decision.action == raw.action else "program",
            agent_id=controller,
            note=note,
            payload={"round": round_, "attempts": res.attempts, "reason": decision.reason},
        )
        with rt.lock:
            rt.state.drift_count = 0
        logger.info("team=%s discussion round=%d action=%s", rt.team_id, round_, decision.action)

        if decision.action == "ready_for_planning":
            if switch_phase(rt, "planning"):
                run_planning_round(rt, message)
            return
        if decision.action == "ready_for_convergence":
            if rt.state.plan is not None and rt.state.tasks:
                if switch_phase(rt, "convergence"):
                    rt.state.convergence.mode = "chat"
                    rt.system("Plan is ready for convergence review. Send `start review` to begin.")
                return
            if switch_phase(rt, "planning"):
                run_planning_round(rt, message)
            return
        if decision.action == "ask_user":
            return

        if round_ < max_rounds:
            round_message = discussion_continuation(message, round_ + 1, decision.reply)

    rt.warn(f"Discussion reached the round limit ({max_rounds}) without a decision to move on")
