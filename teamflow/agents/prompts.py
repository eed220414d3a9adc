from __future__ import annotations

import json
from typing import Any

STRICT_JSON = "Return exactly one JSON object only. No markdown, no extra text."


def _dump(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2)


# -- controller decision -------------------------------------------------------------

DECISION_CONTRACT = "\n".join(
    [
        "Semantic contract:",
        "- ask_user: use when user input/confirmation is still required.",
        "- keep_research: internal research only, no question to user.",
        "- ready_for_planning: use only when no open questions remain.",
        "- ready_for_convergence: use only when no open questions remain and plan is ready for review.",
    ]
)


def controller_decision_prompt(runtime_message: str) -> str:
    return "\n".join(
        [
            runtime_message,
            "",
            "Return CONTROLLER_DECISION JSON only.",
            DECISION_CONTRACT,
            "Format:",
            '{"action":"keep_research|ask_user|ready_for_planning|ready_for_convergence","reply":"...",'
            '"reason":"optional","questions":[],"missing_info":[],"ready_reason":"optional"}',
        ]
    )


def controller_decision_retry() -> str:
    return "\n".join(
        [
            "Previous output failed CONTROLLER_DECISION validation.",
            STRICT_JSON,
            DECISION_CONTRACT,
            "Format:",
            "{",
            '  "action": "keep_research | ask_user | ready_for_planning | ready_for_convergence",',
            '  "reply": "one sentence for user",',
            '  "reason": "optional decision rationale",',
            '  "questions": ["optional question to user"],',
            '  "missing_info": ["optional missing item"],',
            '  "ready_reason": "optional readiness evidence"',
            "}",
        ]
    )


def discussion_continuation(original_message: str, round_: int, previous_reply: str) -> str:
    lines = [
        original_message,
        "",
        f"[DISCUSSION_LOOP_ROUND] {round_}",
        "Continue research and return CONTROLLER_DECISION JSON only.",
        "If information is sufficient, use action=ready_for_planning.",
        "If a plan already exists and members can start convergence review, use action=ready_for_convergence.",
        "If user input is still required, use action=ask_user and ask concrete questions.",
    ]
    if previous_reply.strip():
        lines += ["", "[PREVIOUS_REPLY]", previous_reply.strip()]
    return "\n".join(lines)


# -- plan ----------------------------------------------------------------------------


def planning_prompt(runtime_message: str) -> str:
    return f"{runtime_message}\n\nPlease return a strict PLAN JSON object."


def plan_retry() -> str:
    return "\n".join(
        [
            "The previous PLAN could not be parsed or broke a plan rule. Return exactly one PLAN JSON object, no Markdown code fences.",
            "Every task needs a unique taskId, an instruction, a role or agentId, and a non-empty acceptance list.",
            "Strict format:",
            "{",
            '  "objective": "goal",',
            '  "tasks": [',
            "    {",
            '      "taskId": "task-1",',
            '      "agentId": "agent-id (optional)",',
            '      "role": "role name (required when agentId is missing)",',
            '      "instruction": "what to do",',
            '      "acceptance": ["criterion 1", "criterion 2"]',
            "    }",
            "  ],",
            '  "risks": ["risk 1"]',
            "}",
        ]
    )


# -- convergence ---------------------------------------------------------------------

_ROUND_GOALS = {
    1: "Collect blockers, required_decisions, suggestions.",
    2: "Confirm unresolved blockers/required_decisions from previous round.",
}
_LATE_ROUND_GOAL = "Handle unresolved blockers/required_decisions only. Do not introduce unrelated new items."


def review_prompt(
    *,
    agent_id: str,
    round_: int,
    plan: dict[str, Any],
    unresolved: dict[str, Any] | None,
    resolved_decisions: dict[str, str],
    last_digest: dict[str, Any] | None,
    user_message: str,
) -> str:
    lines = [
        "[CONVERGENCE_ROUND]",
        str(round_),
        "",
        "[PLAN_JSON]",
        _dump(plan),
        "",
        "[ROUND_GOAL]",
        _ROUND_GOALS.get(round_, _LATE_ROUND_GOAL),
        "",
    ]
    if round_ > 1 and unresolved is not None:
        lines += ["[UNRESOLVED_FROM_PREVIOUS]", _dump(unresolved), ""]
    lines += ["[RESOLVED_DECISIONS]", _dump(resolved_decisions), ""]
    if last_digest:
        lines += ["[LAST_DIGEST]", _dump(last_digest), ""]
    lines += [
        "[USER_MESSAGE]",
        user_message,
        "",
        "Return REVIEW_JSON only.",
        "{",
        f'  "agent_id": "{agent_id}",',
        '  "verdict": "approve | revise | blocked",',
        '  "summary": "one sentence conclusion",',
        '  "blockers": ["blocking issue"],',
        '  "required_decisions": [{"key":"decision-key","question":"...","default_value":"...","options":["a","b"]}],',
        '  "suggestions": ["optional suggestion"]',
        "}",
        "verdict=approve ONLY when blockers=[] and required_decisions=[].",
    ]
    return "\n".join(lines)


def review_retry(agent_id: str) -> str:
    return "\n".join(
        [
            "Previous output failed REVIEW_JSON validation.",
            STRICT_JSON,
            "Rules:",
            "- blockers: hard blockers that must be fixed before execution.",
            "- required_decisions: user decisions needed before execution; include default values when possible.",
            "- suggestions: optional improvements, non-blocking.",
            "- verdict=approve ONLY when blockers=[] and required_decisions=[].",
            "Format:",
            "{",
            f'  "agent_id": "{agent_id}",',
            '  "verdict": "approve | revise | blocked",',
            '  "summary": "one sentence review conclusion",',
            '  "blockers": ["blocking issue 1"],',
            '  "required_decisions": [{"key":"api-provider","question":"Choose default AI provider",'
            '"default_value":"openai","options":["openai","claude"]}],',
            '  "suggestions": ["optional suggestion 1"]',
            "}",
        ]
    )


def digest_prompt(
    *,
    round_: int,
    plan: dict[str, Any],
    reviews: list[dict[str, Any]],
    blockers: list[str],
    required_decisions: list[dict[str, Any]],
    user_message: str,
) -> str:
    return "\n".join(
        [
            "[CONVERGENCE_ROUND]",
            str(round_),
            "",
            "[PLAN_JSON]",
            _dump(plan),
            "",
            "[REVIEWS]",
            _dump(reviews),
            "",
            "[MERGED]",
            _dump({"blockers": blockers, "required_decisions": required_decisions}),
            "",
            "[USER_MESSAGE]",
            user_message,
            "",
            "Return CONVERGENCE_DIGEST_JSON only.",
            '{"status":"continue | ready","summary":"one sentence digest","agreements":[],"conflicts":[],"open_questions":[]}',
        ]
    )


def digest_retry() -> str:
    return "\n".join(
        [
            "Previous output failed CONVERGENCE_DIGEST_JSON validation.",
            STRICT_JSON,
            "Format:",
            "{",
            '  "status": "continue | ready",',
            '  "summary": "one sentence digest",',
            '  "agreements": ["agreement 1"],',
            '  "conflicts": ["conflict 1"],',
            '  "open_questions": ["open question 1"]',
            "}",
        ]
    )


def blueprint_prompt(
    *,
    plan: dict[str, Any],
    reviews: list[dict[str, Any]],
    digest: dict[str, Any] | None,
    gate: dict[str, Any],
    user_message: str,
) -> str:
    return "\n".join(
        [
            "[PLAN_JSON]",
            _dump(plan),
            "",
            "[REVIEWS]",
            _dump(reviews),
            "",
            "[CONVERGENCE_DIGEST_JSON]",
            _dump(digest),
            "",
            "[PROGRAM_GATE]",
            _dump(gate),
            "",
            "[USER_MESSAGE]",
            user_message,
            "",
            "Return EXECUTION_BLUEPRINT JSON only.",
            "{",
            '  "action": "revise_plan | ready_to_execute | ask_user",',
            '  "reply": "one sentence for user",',
            '  "reason": "optional rationale",',
            '  "must_fix": ["blocking item 1"],',
            '  "required_decisions_resolved": true,',
            '  "assumptions": ["decision:x=y"]',
            "}",
        ]
    )


def blueprint_retry() -> str:
    return "\n".join(
        [
            "Previous output failed EXECUTION_BLUEPRINT validation.",
            STRICT_JSON,
            "Format:",
            "{",
            '  "action": "revise_plan | ready_to_execute | ask_user",',
            '  "reply": "one sentence for user",',
            '  "reason": "optional decision rationale",',
            '  "must_fix": ["blocking issue 1"],',
            '  "required_decisions_resolved": true,',
            '  "assumptions": ["use default decision X"]',
            "}",
        ]
    )


# -- execution -----------------------------------------------------------------------


def task_message(envelope: dict[str, Any], payload: dict[str, Any]) -> str:
    return "\n".join(["[TEAM_CONTEXT]", _dump(envelope), "", "[TEAM_TASK]", _dump(payload)])


def report_retry(task_id: str, agent_id: str) -> str:
    return "\n".join(
        [
            "Previous output failed REPORT validation.",
            'Return exactly one JSON object prefixed with "REPORT: ".',
            "No markdown, no extra text.",
            "Required fields:",
            "{",
            f'  "task_id": "{task_id}",',
            f'  "agent_id": "{agent_id}",',
            '  "status": "done | partial | blocked",',
            '  "result": ["short bullet 1"]',
            "}",
        ]
    )


# -- bootstrap -----------------------------------------------------------------------


def bootstrap_prompt(*, role: str, summary: str, task_ids: list[str], objective: str) -> str:
    return "\n".join(
        [
            "You are being created as a reusable specialist agent for multi-team collaboration.",
            f"Current team objective (context only): {objective}",
            f"Role to create: {role}",
            f"Role summary: {summary}",
            f"Related tasks in this team: {', '.join(task_ids)}",
            "",
            "Requirements:",
            "1. Stay reusable across projects and teams; do not hardcode this single objective.",
            "2. Define stable expertise boundaries, deliverable contracts and a collaboration protocol.",
            "3. End every task with a structured REPORT (done / partial / blocked).",
            "4. Keep text concise and executable.",
        ]
    )


# -- convergence chat ----------------------------------------------------------------


def convergence_chat_message(message: str, *, mode_tag: str) -> str:
    return "\n".join(
        [
            message,
            "",
            f"[{mode_tag}]",
            "This is normal user Q&A in convergence stage.",
            "Do not run member review in this turn.",
            "Answer briefly and concretely.",
        ]
    )
