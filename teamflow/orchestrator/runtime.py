from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from teamflow.config import Settings
from teamflow.gateway.base import AgentGateway
from teamflow.roles import RoleMetadataStore
from teamflow.runtime import AgentOutput, Clock, run_agent
from teamflow.runtime.invoke import WaitMode
from teamflow.schema import (
    TeamAuditRecord,
    TeamFlowEvent,
    TeamMemberRuntime,
    TeamMessage,
    TeamState,
    TeamTaskRuntime,
)
from teamflow.schema.team import FlowActor, FlowEventType, MemberStatus, MessageKind, MessageRole
from teamflow.utils.text import now_iso

from .context import build_envelope

logger = logging.getLogger(__name__)

WARNING_PREFIX = "WARNING: "

Listener = Callable[[TeamState], None]


class TeamRuntime:
    """
    Per-team services shared by every orchestrator component: the canonical state,
    its lock, the gateway, and the append-only message / audit / flow streams.
    """

    def __init__(
        self,
        state: TeamState,
        *,
        gateway: AgentGateway,
        settings: Settings,
        store: RoleMetadataStore,
        clock: Clock | None = None,
    ) -> None:
        self.state = state
        self.gateway = gateway
        self.settings = settings
        self.store = store
        self.clock = clock
        self.lock = threading.RLock()
        self._listeners: list[Listener] = []

    @property
    def team_id(self) -> str:
        return self.state.team.id

    # -- sessions / dispatch -------------------------------------------------------

    def session_key(self, agent_id: str) -> str:
        with self.lock:
            return self.state.session_keys.setdefault(agent_id, f"agent:{agent_id}:team:{self.team_id}")

    def bind_members(self) -> None:
        for agent_id in [self.state.team.controller_id, *self.state.team.member_ids]:
            self.session_key(agent_id)

    def next_dispatch(self) -> int:
        """Reserve a sequence number for one logical request (all of its attempts share it)."""
        with self.lock:
            self.state.dispatch_seq += 1
            return self.state.dispatch_seq

    def idempotency_key(self, agent_id: str, purpose: str, seq: int, attempt: int) -> str:
        return f"{self.team_id}:{agent_id}:{purpose}:{seq}:a{attempt}"

    def run(self, agent_id: str, message: str, *, idempotency_key: str, mode: WaitMode = "idle") -> AgentOutput:
        return run_agent(
            self.gateway,
            self.settings,
            agent_id=agent_id,
            session_key=self.session_key(agent_id),
            message=message,
            idempotency_key=idempotency_key,
            mode=mode,
            clock=self.clock,
        )

    def envelope(self) -> dict[str, Any]:
        with self.lock:
            return build_envelope(self.state)

    # -- append-only streams ---------------------------------------------------------

    def say(
        self, role: MessageRole, content: str, *, agent_id: str | None = None, kind: MessageKind = "normal"
    ) -> TeamMessage:
        msg = TeamMessage(role=role, content=content, agent_id=agent_id, kind=kind)
        with self.lock:
            self.state.messages.append(msg)
        self.notify()
        return msg

    def system(self, text: str) -> None:
        self.say("system", text)

    def warn(self, text: str) -> None:
        logger.warning("team=%s %s", self.team_id, text)
        self.say("system", f"{WARNING_PREFIX}{text}")

    def flow(
        self,
        type_: FlowEventType,
        actor: FlowActor,
        *,
        agent_id: str | None = None,
        note: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        with self.lock:
            self.state.flow_events.append(
                TeamFlowEvent(
                    team_id=self.team_id,
                    phase=self.state.phase,
                    type=type_,
                    actor=actor,
                    agent_id=agent_id,
                    note=note,
                    payload=payload,
                )
            )
        logger.debug("flow team=%s type=%s actor=%s note=%s", self.team_id, type_, actor, note)
        self.notify()

    def audit(self, task: TeamTaskRuntime, *, error: str | None = None) -> None:
        with self.lock:
            self.state.audit.append(
                TeamAuditRecord(
                    team_id=self.team_id,
                    agent_id=task.agent_id,
                    task_id=task.task_id,
                    run_id=task.run_id,
                    report_id=task.report_id,
                    status=task.status,
                    error=error,
                )
            )
        self.notify()

    def set_member(self, agent_id: str, status: MemberStatus, **fields: Any) -> None:
        with self.lock:
            prev = self.state.member_runtime.get(agent_id) or TeamMemberRuntime(agent_id=agent_id)
            self.state.member_runtime[agent_id] = prev.model_copy(
                update={"status": status, "updated_at": now_iso(), **fields}
            )

    # -- change notifications ----------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> TeamState:
        with self.lock:
            return self.state.model_copy(deep=True)

    def notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            listener(snap)
