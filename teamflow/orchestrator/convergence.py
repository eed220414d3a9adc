from __future__ import annotations

import logging
import re

from teamflow.agents.prompts import blueprint_prompt, blueprint_retry, convergence_chat_message
from teamflow.agents.structured import request_structured
from teamflow.chains import build_review_graph
from teamflow.errors import TeamflowError
from teamflow.protocol import parse_blueprint
from teamflow.schema import ConvergenceState, ExecutionBlueprint, RequiredDecision, ReviewRunState
from teamflow.utils.text import slugify, uniq

from .context import wrap_with_context
from .governor import switch_phase
from .issues import default_for, resolve_decision_issues
from .runtime import TeamRuntime
from .tool_policy import forbidden_tools

logger = logging.getLogger(__name__)

START_REVIEW_COMMANDS = {"start review": "start", "开始会审": "start", "rerun review": "rerun", "重新会审": "rerun"}

_MENTION = re.compile(r"^@(\S+)\s+(?:回答\s*[:：]?\s*)?([\s\S]*)$")


def parse_member_mention(message: str) -> tuple[str, str] | None:
    """`@builder how long?` -> ("builder", "how long?")."""
    m = _MENTION.match(message.strip())
    if not m:
        return None
    return m.group(1).strip(), m.group(2).strip()


class ConvergenceEngine:
    """
    Multi-round peer review of the current plan, decision resolution and the
    execution blueprint gate. Modes: chat -> review_run -> (decision_resolution) -> chat.
    """

    def __init__(self, rt: TeamRuntime) -> None:
        self.rt = rt
        self.graph = build_review_graph(rt)

    @property
    def conv(self) -> ConvergenceState:
        return self.rt.state.convergence

    # -- review run -------------------------------------------------------------------

    def run_review(self, reason: str = "start", user_message: str = "") -> bool:
        rt = self.rt
        if rt.state.phase != "convergence":
            rt.warn(f"Review runs only in convergence (current phase: {rt.state.phase})")
            return False
        if self.conv.pending_decisions:
            rt.warn("Resolve the pending decisions before running another review")
            return False
        if self.conv.mode != "chat":
            rt.warn(f"Convergence is busy ({self.conv.mode})")
            return False
        if rt.state.plan is None or not rt.state.members():
            rt.warn("Nothing to review: the team needs a plan and at least one member")
            return False

        self.conv.mode = "review_run"
        rt.flow("action", "program", note=f"convergence-review:{reason}")
        state = ReviewRunState(
            plan=rt.state.plan.payload(),
            user_message=user_message,
            reviewers=rt.state.members(),
            max_rounds=rt.settings.convergence_max_rounds,
            suggestions=[i.content for i in self.conv.issues if i.kind == "suggestion"],
            issues=list(self.conv.issues),
            resolved_decisions=dict(self.conv.resolved_decisions),
        )
        try:
            final = self._run_graph(state)
        except TeamflowError as e:
            self.conv.mode = "chat"
            rt.warn(f"Review run failed: {e}")
            return False

        with rt.lock:
            self.conv.issues = final.issues
            self.conv.last_reviews = final.reviews
            self.conv.last_digest = final.digest
        for entry in final.trace[-12:]:
            logger.debug("review-run %s :: %s", entry.get("node"), entry.get("message"))

        if final.digest_failed:
            self.conv.mode = "chat"
            return False
        if final.cap_reached:
            rt.warn(f"Review reached the round limit ({final.max_rounds}) with open items; asking for a blueprint anyway")
            rt.flow("convergence-round", "program", note="cap", payload={"round": final.round})

        pending = [d for d in final.required_decisions if d.key not in self.conv.resolved_decisions]
        if pending:
            with rt.lock:
                self.conv.pending_decisions = [
                    d.model_copy(update={"default_value": default_for(d)}) for d in pending
                ]
                self.conv.mode = "decision_resolution"
            keys = ", ".join(d.key for d in pending)
            rt.system(f"{len(pending)} decision(s) need your input: {keys}")
            return True

        self._blueprint(final, user_message)
        return True

    def _run_graph(self, state: ReviewRunState) -> ReviewRunState:
        last = None
        for step in self.graph.stream(state, stream_mode="values"):
            last = step
        if last is None:
            last = self.graph.invoke(state)
        return ReviewRunState.model_validate(last)

    # -- blueprint --------------------------------------------------------------------

    def _blueprint(self, final: ReviewRunState, user_message: str) -> None:
        rt = self.rt
        controller = rt.state.team.controller_id
        blockers = self.conv.open_issues("blocker")
        open_decisions = self.conv.open_issues("required-decision")
        gate = {
            "must_fix": [i.content for i in blockers],
            "required_decisions_resolved": not open_decisions,
            "assumptions": list(self.conv.assumptions),
        }
        try:
            res = request_structured(
                rt,
                agent_id=controller,
                actor="controller",
                label="EXECUTION_BLUEPRINT",
                purpose="blueprint",
                prompt=blueprint_prompt(
                    plan=final.plan,
                    reviews=[r.model_dump() for r in final.reviews],
                    digest=final.digest.model_dump() if final.digest else None,
                    gate=gate,
                    user_message=user_message,
                ),
                retry_prompt=blueprint_retry(),
                parse=parse_blueprint,
                max_attempts=rt.settings.blueprint_max_attempts,
            )
        except TeamflowError as e:
            self.conv.mode = "chat"
            rt.warn(str(e))
            return

        blueprint: ExecutionBlueprint = res.value
        action = blueprint.action
        if blockers:
            action = "revise_plan"
        elif open_decisions:
            action = "ask_user"
        rt.say("assistant", blueprint.reply, agent_id=controller)
        rt.flow(
            "execution-blueprint",
            "controller" if action == blueprint.action else "program",
            agent_id=controller,
            note=action if action == blueprint.action else f"blueprint-gate:{blueprint.action}->{action}",
            payload={"must_fix": gate["must_fix"], "required_decisions_resolved": gate["required_decisions_resolved"]},
        )
        with rt.lock:
            self.conv.last_blueprint = blueprint
            self.conv.last_blueprint_action = action
            self.conv.assumptions = uniq([*self.conv.assumptions, *blueprint.assumptions])
            self.conv.mode = "chat"

        if action == "revise_plan":
            rt.system("Blockers remain; the plan goes back to planning")
            switch_phase(rt, "planning", note="blueprint:revise_plan")
        elif action == "ask_user":
            rt.system("The controller needs more input before execution")
        else:
            rt.system("Ready to execute. Confirm execution to start the tasks.")

    # -- decision resolution ------------------------------------------------------------

    def apply_filled_decisions(self, values: dict[str, str]) -> bool:
        rt = self.rt
        pending = self.conv.pending_decisions
        if not pending:
            rt.warn("No pending decisions")
            return False
        errors: list[str] = []
        for decision in pending:
            value = (values.get(decision.key) or "").strip()
            if not value:
                errors.append(f"{decision.key}: value is required")
            elif decision.options and value not in decision.options:
                errors.append(f"{decision.key}: must be one of ({', '.join(decision.options)})")
        if errors:
            rt.warn(f"Decision values rejected: {'; '.join(errors)}")
            return False
        self._resolve(pending, {d.key: values[d.key].strip() for d in pending})
        return True

    def apply_default_decisions(self) -> bool:
        pending = self.conv.pending_decisions
        if not pending:
            self.rt.warn("No pending decisions")
            return False
        self._resolve(pending, {d.key: default_for(d) for d in pending})
        return True

    def _resolve(self, pending: list[RequiredDecision], resolved: dict[str, str]) -> None:
        with self.rt.lock:
            self.conv.resolved_decisions = {**self.conv.resolved_decisions, **resolved}
            self.conv.assumptions = uniq([*self.conv.assumptions, *(f"decision:{k}={v}" for k, v in resolved.items())])
            self.conv.issues = resolve_decision_issues(self.conv.issues, set(resolved))
            self.conv.pending_decisions = []
            self.conv.mode = "chat"
        self.rt.system(f"Applied {len(resolved)} decision(s); run `rerun review` to continue")
        logger.info("team=%s decisions resolved keys=%s", self.rt.team_id, sorted(resolved))

    # -- chat ---------------------------------------------------------------------------

    def handle_message(self, message: str) -> None:
        """Route a user message sent during convergence."""
        text = message.strip()
        command = START_REVIEW_COMMANDS.get(text.lower())
        if command:
            self.run_review(command, text)
            return
        if self.conv.pending_decisions:
            self.rt.system("Decisions are pending; this message is answered as chat only")
        mention = parse_member_mention(text)
        if mention:
            target = self._resolve_member(mention[0])
            if target is None:
                self.rt.warn(f"No team member matches @{mention[0]}")
                return
            self.chat(target, mention[1], mode_tag="CONVERGENCE_MEMBER_CHAT_MODE")
            return
        self.chat(self.rt.state.team.controller_id, text, mode_tag="CONVERGENCE_CHAT_MODE")

    def _resolve_member(self, target: str) -> str | None:
        wanted = slugify(target, fallback="")
        for member_id in self.rt.state.team.member_ids:
            if member_id == target or slugify(member_id, fallback="") == wanted:
                return member_id
        return None

    def chat(self, agent_id: str, message: str, *, mode_tag: str) -> None:
        rt = self.rt
        runtime_message = wrap_with_context(convergence_chat_message(message, mode_tag=mode_tag), rt.envelope())
        key = rt.idempotency_key(agent_id, "convergence-chat", rt.next_dispatch(), 1)
        out = rt.run(agent_id, runtime_message, idempotency_key=key)
        blocked = forbidden_tools(rt.state.phase, out.tool_names)
        is_controller = agent_id == rt.state.team.controller_id
        actor = "controller" if is_controller else "member"
        if blocked:
            rt.warn(f"{agent_id} used tools not allowed in convergence: {', '.join(blocked)}")
            rt.flow("tool-policy-blocked", actor, agent_id=agent_id, note=", ".join(blocked))
            return
        rt.say("assistant", out.text or "(empty reply)", agent_id=agent_id)
        note = "convergence-chat-controller" if is_controller else "convergence-chat-member"
        rt.flow("action", actor, agent_id=agent_id, note=note)
