from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from teamflow.errors import GatewayError, RpcTimeoutError

from .base import AgentSnapshot, AgentSummary, WaitResult
from .history import latest_assistant_snapshot, read_send_output

logger = logging.getLogger(__name__)

DEFAULT_RPC_TIMEOUT_MS = 30_000


class HttpGateway:
    """
    JSON-over-HTTP client for the agent-hosting runtime.

    Every call is ``POST {base_url}/rpc`` with ``{"method": ..., "params": ...}``;
    the runtime answers ``{"success": bool, "result": ..., "error": str}``.
    """

    def __init__(self, *, base_url: str, token: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token

    @retry(
        reraise=True,
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=0.6, min=0.6, max=6),
        retry=retry_if_exception_type(httpx.ConnectError),
    )
    def _post(self, payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        with httpx.Client(timeout=timeout_s) as client:
            r = client.post(f"{self.base_url}/rpc", json=payload, headers=headers)
            r.raise_for_status()
            return r.json()

    def rpc(self, method: str, params: dict[str, Any] | None = None, timeout_ms: int | None = None) -> Any:
        timeout_s = (timeout_ms or DEFAULT_RPC_TIMEOUT_MS) / 1000.0
        try:
            data = self._post({"method": method, "params": params or {}}, timeout_s)
        except httpx.TimeoutException as e:
            raise RpcTimeoutError(f"RPC timeout: {method}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"RPC failed: {method}: {e}") from e
        if not data.get("success"):
            raise GatewayError(str(data.get("error") or f"RPC failed: {method}"))
        return data.get("result")

    def start(self, agent_id: str, session_key: str, message: str, idempotency_key: str) -> str:
        result = self.rpc(
            "agent",
            {"agentId": agent_id, "sessionKey": session_key, "message": message, "idempotencyKey": idempotency_key},
        )
        run_id = (result or {}).get("runId") if isinstance(result, dict) else None
        return run_id.strip() if isinstance(run_id, str) else ""

    def wait(self, run_id: str, timeout_ms: int, *, rpc_timeout_ms: int) -> WaitResult:
        result = self.rpc("agent.wait", {"runId": run_id, "timeoutMs": timeout_ms}, rpc_timeout_ms) or {}
        status = result.get("status")
        error = result.get("error")
        return WaitResult(
            status=status.lower() if isinstance(status, str) else "",
            error=error.strip() if isinstance(error, str) and error.strip() else None,
        )

    def latest_output(self, session_key: str, *, limit: int = 20) -> AgentSnapshot:
        result = self.rpc("chat.history", {"sessionKey": session_key, "limit": limit}) or {}
        messages = result.get("messages") if isinstance(result, dict) else None
        return latest_assistant_snapshot(messages if isinstance(messages, list) else None)

    def send(
        self,
        session_key: str,
        message: str,
        *,
        deliver: bool = False,
        idempotency_key: str | None = None,
        timeout_ms: int | None = None,
    ) -> str:
        params: dict[str, Any] = {"sessionKey": session_key, "message": message, "deliver": deliver}
        if idempotency_key:
            params["idempotencyKey"] = idempotency_key
        return read_send_output(self.rpc("chat.send", params, timeout_ms))

    def delete_session(self, session_key: str) -> None:
        try:
            self.rpc("sessions.delete", {"key": session_key, "deleteTranscript": True})
        except GatewayError as e:
            # Deleting a session that is already gone is a no-op.
            logger.info("sessions.delete ignored key=%s error=%s", session_key, e)

    def list_agents(self) -> list[AgentSummary]:
        result = self.rpc("agents.list", {}) or {}
        rows = result.get("agents") if isinstance(result, dict) else result
        agents: list[AgentSummary] = []
        for row in rows or []:
            if not isinstance(row, dict) or not str(row.get("id") or "").strip():
                continue
            agent_id = str(row["id"]).strip()
            agents.append(
                AgentSummary(
                    id=agent_id,
                    name=str(row.get("name") or agent_id),
                    model=row.get("model"),
                    emoji=row.get("emoji"),
                    workspace=row.get("workspace"),
                )
            )
        return agents

    def create_agent(self, name: str, workspace: str, model: str | None, emoji: str | None = None) -> str:
        params: dict[str, Any] = {"name": name, "workspace": workspace}
        if model:
            params["model"] = model
        if emoji:
            params["emoji"] = emoji
        result = self.rpc("agents.create", params) or {}
        agent_id = result.get("agentId") or result.get("id") if isinstance(result, dict) else None
        return str(agent_id).strip() if agent_id else ""

    def update_agent(self, agent_id: str, **fields: object) -> None:
        self.rpc("agents.update", {"agentId": agent_id, **fields})
