from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from teamflow.config import Settings
from teamflow.errors import GatewayError
from teamflow.gateway.base import AgentGateway

from .clock import Clock
from .waiter import wait_for_run, wait_for_run_with_progress

logger = logging.getLogger(__name__)

WaitMode = Literal["slice", "idle"]


@dataclass(frozen=True)
class AgentOutput:
    run_id: str
    text: str
    tool_names: list[str] = field(default_factory=list)


def start_run(gateway: AgentGateway, *, agent_id: str, session_key: str, message: str, idempotency_key: str) -> str:
    run_id = (gateway.start(agent_id, session_key, message, idempotency_key) or "").strip()
    if not run_id:
        raise GatewayError("agent returned empty runId")
    return run_id


def run_agent(
    gateway: AgentGateway,
    settings: Settings,
    *,
    agent_id: str,
    session_key: str,
    message: str,
    idempotency_key: str,
    mode: WaitMode = "idle",
    clock: Clock | None = None,
) -> AgentOutput:
    """Start a run, wait for it, and collect the agent's final visible output."""
    run_id = start_run(
        gateway, agent_id=agent_id, session_key=session_key, message=message, idempotency_key=idempotency_key
    )
    if mode == "slice":
        wait_for_run(
            gateway,
            run_id,
            wait_slice_ms=settings.wait_slice_ms,
            max_wait_ms=settings.wait_max_ms,
            rpc_buffer_ms=settings.rpc_buffer_ms,
            clock=clock,
        )
    else:
        wait_for_run_with_progress(
            gateway,
            run_id,
            session_key,
            wait_slice_ms=settings.wait_slice_ms,
            idle_timeout_ms=settings.idle_timeout_ms,
            rpc_buffer_ms=settings.rpc_buffer_ms,
            clock=clock,
        )
    snapshot = gateway.latest_output(session_key, limit=20)
    return AgentOutput(run_id=run_id, text=snapshot.text, tool_names=list(snapshot.tool_names))


def delete_sessions(gateway: AgentGateway, session_keys: list[str]) -> None:
    for key in session_keys:
        try:
            gateway.delete_session(key)
        except GatewayError as e:
            # Leaving a team twice must not fail.
            logger.info("delete_session ignored key=%s error=%s", key, e)
