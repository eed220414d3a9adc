from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class WaitResult:
    status: str  # "" | ok | completed | done | success | timeout | error | failed | aborted | ...
    error: str | None = None


@dataclass(frozen=True)
class AgentSnapshot:
    """Most recent assistant reply visible in a session."""

    text: str = ""
    tool_names: list[str] = field(default_factory=list)

    def fingerprint(self) -> str:
        tools = [t.strip() for t in self.tool_names if t.strip()]
        return f"{self.text}|{','.join(tools)}"


@dataclass(frozen=True)
class AgentSummary:
    id: str
    name: str
    model: str | None = None
    emoji: str | None = None
    workspace: str | None = None


class AgentGateway(Protocol):
    """RPC surface of the external agent-hosting runtime."""

    def start(self, agent_id: str, session_key: str, message: str, idempotency_key: str) -> str:
        """Begin an invocation and return its run id (may be empty on a misbehaving runtime)."""
        raise NotImplementedError

    def wait(self, run_id: str, timeout_ms: int, *, rpc_timeout_ms: int) -> WaitResult:
        """One polling step. Raises RpcTimeoutError when the RPC itself times out."""
        raise NotImplementedError

    def latest_output(self, session_key: str, *, limit: int = 20) -> AgentSnapshot:
        raise NotImplementedError

    def send(
        self,
        session_key: str,
        message: str,
        *,
        deliver: bool = False,
        idempotency_key: str | None = None,
        timeout_ms: int | None = None,
    ) -> str:
        raise NotImplementedError

    def delete_session(self, session_key: str) -> None:
        """Best effort; a missing session is not an error."""
        raise NotImplementedError

    def list_agents(self) -> list[AgentSummary]:
        raise NotImplementedError

    def create_agent(self, name: str, workspace: str, model: str | None, emoji: str | None = None) -> str:
        """Create an agent; returns its id, or "" when the runtime does not report one."""
        raise NotImplementedError

    def update_agent(self, agent_id: str, **fields: object) -> None:
        raise NotImplementedError
