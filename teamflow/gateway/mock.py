from __future__ import annotations

import json
import re
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from teamflow.errors import GatewayError, RpcTimeoutError
from teamflow.runtime.clock import ManualClock
from teamflow.utils.text import slugify

from .base import AgentSnapshot, AgentSummary, WaitResult

RPC_TIMEOUT = "rpc-timeout"  # scripted wait status that raises RpcTimeoutError


@dataclass
class Reply:
    """One scripted agent turn."""

    text: str = ""
    tool_names: list[str] = field(default_factory=list)
    wait_statuses: list[str] = field(default_factory=lambda: ["ok"])
    error: str | None = None
    run_id: str | None = None


Script = Union[str, Reply, Callable[[str, str], Union[str, Reply]]]


@dataclass
class _Run:
    agent_id: str
    session_key: str
    reply: Reply
    statuses: deque[str]


class MockGateway:
    """
    Deterministic in-process agent runtime.

    Scripted replies are consumed per agent in order (`script`). When an agent has
    no script left, a canned protocol reply is derived from the prompt, so a full
    discussion -> execution flow runs without any real agent behind it.
    """

    def __init__(self, *, agents: list[AgentSummary] | None = None, clock: ManualClock | None = None) -> None:
        self.clock = clock or ManualClock()
        self.agents: list[AgentSummary] = list(agents or [])
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.sessions: dict[str, AgentSnapshot] = {}
        self.send_replies: dict[str, deque[str]] = defaultdict(deque)
        self._scripts: dict[str, deque[Script]] = defaultdict(deque)
        self._runs: dict[str, _Run] = {}
        self._run_seq = 0

    # -- scripting -----------------------------------------------------------------

    def script(self, agent_id: str, *replies: Script) -> None:
        self._scripts[agent_id].extend(replies)

    def calls_for(self, method: str) -> list[dict[str, Any]]:
        return [params for m, params in self.calls if m == method]

    def prompts_for(self, agent_id: str) -> list[str]:
        return [p["message"] for p in self.calls_for("agent") if p["agent_id"] == agent_id]

    # -- AgentGateway ----------------------------------------------------------------

    def start(self, agent_id: str, session_key: str, message: str, idempotency_key: str) -> str:
        self.calls.append(
            ("agent", {"agent_id": agent_id, "session_key": session_key, "message": message, "idempotency_key": idempotency_key})
        )
        queue = self._scripts.get(agent_id)
        item: Script = queue.popleft() if queue else canned_reply
        if callable(item):
            item = item(agent_id, message)
        reply = item if isinstance(item, Reply) else Reply(text=item)
        self._run_seq += 1
        run_id = reply.run_id if reply.run_id is not None else f"run-{self._run_seq}"
        if run_id:
            self._runs[run_id] = _Run(agent_id, session_key, reply, deque(reply.wait_statuses or ["ok"]))
        return run_id

    def wait(self, run_id: str, timeout_ms: int, *, rpc_timeout_ms: int) -> WaitResult:
        self.calls.append(("agent.wait", {"run_id": run_id, "timeout_ms": timeout_ms, "rpc_timeout_ms": rpc_timeout_ms}))
        run = self._runs.get(run_id)
        if run is None:
            raise GatewayError(f"unknown runId: {run_id}")
        status = run.statuses.popleft() if len(run.statuses) > 1 else run.statuses[0]
        if status == RPC_TIMEOUT:
            self.clock.advance(rpc_timeout_ms)
            raise RpcTimeoutError("RPC timeout: agent.wait")
        if status == "timeout":
            self.clock.advance(timeout_ms)
            return WaitResult(status="timeout")
        if status in ("", "ok", "completed", "done", "success"):
            self.sessions[run.session_key] = AgentSnapshot(text=run.reply.text, tool_names=list(run.reply.tool_names))
        return WaitResult(status=status, error=run.reply.error)

    def latest_output(self, session_key: str, *, limit: int = 20) -> AgentSnapshot:
        self.calls.append(("chat.history", {"session_key": session_key, "limit": limit}))
        return self.sessions.get(session_key, AgentSnapshot())

    def send(
        self,
        session_key: str,
        message: str,
        *,
        deliver: bool = False,
        idempotency_key: str | None = None,
        timeout_ms: int | None = None,
    ) -> str:
        self.calls.append(
            ("chat.send", {"session_key": session_key, "message": message, "deliver": deliver, "idempotency_key": idempotency_key})
        )
        queue = self.send_replies.get(session_key)
        if queue:
            return queue.popleft()
        if session_key == "roles:matcher":
            return json.dumps({"selectedAgentIds": [], "missingRoles": []})
        return "ok"

    def delete_session(self, session_key: str) -> None:
        self.calls.append(("sessions.delete", {"key": session_key}))
        self.sessions.pop(session_key, None)

    def list_agents(self) -> list[AgentSummary]:
        self.calls.append(("agents.list", {}))
        return list(self.agents)

    def create_agent(self, name: str, workspace: str, model: str | None, emoji: str | None = None) -> str:
        self.calls.append(("agents.create", {"name": name, "workspace": workspace, "model": model, "emoji": emoji}))
        agent_id = slugify(name, fallback="agent")
        self.agents.append(AgentSummary(id=agent_id, name=name, model=model, emoji=emoji, workspace=workspace))
        return agent_id

    def update_agent(self, agent_id: str, **fields: object) -> None:
        self.calls.append(("agents.update", {"agent_id": agent_id, **fields}))


def _field(message: str, name: str) -> str:
    m = re.search(rf'"{name}"\s*:\s*"([^"]*)"', message)
    return m.group(1) if m else ""


def canned_reply(agent_id: str, message: str) -> str:
    """Well-formed protocol reply for whatever the prompt asks for."""
    if "EXECUTION_BLUEPRINT" in message:
        return "EXECUTION_BLUEPRINT: " + json.dumps(
            {
                "action": "ready_to_execute",
                "reply": "Plan reviewed; ready to execute.",
                "must_fix": [],
                "required_decisions_resolved": True,
                "assumptions": [],
            }
        )
    if "Return CONVERGENCE_DIGEST_JSON" in message or "failed CONVERGENCE_DIGEST_JSON" in message:
        return "CONVERGENCE_DIGEST_JSON: " + json.dumps(
            {"status": "ready", "summary": "Reviewers agree.", "agreements": [], "conflicts": [], "open_questions": []}
        )
    if "REVIEW_JSON" in message:
        return "REVIEW_JSON: " + json.dumps(
            {"agent_id": agent_id, "verdict": "approve", "summary": "Looks good.", "blockers": [], "required_decisions": [], "suggestions": []}
        )
    if "[TEAM_TASK]" in message or "failed REPORT validation" in message:
        task_id = _field(message, "task_id") or "task-1"
        return "REPORT: " + json.dumps(
            {"task_id": task_id, "agent_id": agent_id, "status": "done", "result": [f"{task_id} completed by {agent_id}"]}
        )
    if "CONTROLLER_DECISION" in message:
        return "CONTROLLER_DECISION: " + json.dumps(
            {"action": "ready_for_planning", "reply": "Information is sufficient; drafting the plan.", "reason": "mock"}
        )
    if "PLAN JSON" in message:
        return "PLAN: " + json.dumps(
            {
                "objective": "Deliver the requested change",
                "tasks": [
                    {"taskId": "task-1", "role": "builder", "instruction": "Implement the change", "acceptance": ["done"]}
                ],
            }
        )
    return f"[mock:{agent_id}] received {len(message)} chars"
