from __future__ import annotations

import logging

from teamflow.errors import GatewayError, NoProgressError, RpcTimeoutError, RunFailedError, RunTimeoutError
from teamflow.gateway.base import AgentGateway, WaitResult

from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"", "ok", "completed", "done", "success"})
ERROR_STATUSES = frozenset({"error", "failed", "aborted"})
MIN_SLICE_MS = 1000


def _classify(run_id: str, result: WaitResult, round_: int) -> bool:
    """True when the run finished successfully; False to keep waiting. Raises on explicit failure."""
    status = (result.status or "").lower()
    if status in SUCCESS_STATUSES:
        logger.info("agent.wait ok run_id=%s round=%d status=%s", run_id, round_, status or "ok")
        return True
    if status == "timeout":
        logger.info("agent.wait timeout-slice run_id=%s round=%d, continue waiting", run_id, round_)
        return False
    if status in ERROR_STATUSES:
        raise RunFailedError(run_id, status, result.error or f"agent.wait returned {status}")
    logger.warning("agent.wait unknown-status run_id=%s round=%d status=%s, continue waiting", run_id, round_, status or "empty")
    return False


def wait_for_run(
    gateway: AgentGateway,
    run_id: str,
    *,
    wait_slice_ms: int,
    max_wait_ms: int,
    rpc_buffer_ms: int,
    clock: Clock | None = None,
) -> WaitResult:
    """
    Slice mode: poll `agent.wait` in slices until the run ends or `max_wait_ms` elapses.

    - each poll waits min(slice, remaining) (at least 1s) with an RPC timeout of slice + buffer
    - an RPC-level timeout is "not done yet" while time remains; any other RPC error propagates
    """
    clock = clock or SystemClock()
    started = clock.now_ms()
    round_ = 0
    while clock.now_ms() - started < max_wait_ms:
        round_ += 1
        elapsed = clock.now_ms() - started
        slice_ms = max(MIN_SLICE_MS, min(wait_slice_ms, max_wait_ms - elapsed))
        rpc_timeout_ms = slice_ms + rpc_buffer_ms
        logger.debug(
            "agent.wait start run_id=%s round=%d wait_ms=%d rpc_timeout_ms=%d elapsed_ms=%d",
            run_id, round_, slice_ms, rpc_timeout_ms, elapsed,
        )
        try:
            result = gateway.wait(run_id, slice_ms, rpc_timeout_ms=rpc_timeout_ms)
        except RpcTimeoutError:
            if clock.now_ms() - started < max_wait_ms:
                logger.warning("agent.wait rpc-timeout run_id=%s round=%d, continue waiting", run_id, round_)
                continue
            raise
        if _classify(run_id, result, round_):
            return result
    raise RunTimeoutError(f"Timed out waiting for agent run after {max_wait_ms}ms")


def wait_for_run_with_progress(
    gateway: AgentGateway,
    run_id: str,
    session_key: str,
    *,
    wait_slice_ms: int,
    idle_timeout_ms: int,
    rpc_buffer_ms: int,
    clock: Clock | None = None,
) -> WaitResult:
    """
    Idle mode: no wall-clock cap, but the agent's visible output (reply text plus
    tool names) must change at least every `idle_timeout_ms`.
    """
    clock = clock or SystemClock()
    last_progress = clock.now_ms()
    fingerprint = _fingerprint(gateway, session_key)
    round_ = 0

    def refresh() -> None:
        nonlocal fingerprint, last_progress
        current = _fingerprint(gateway, session_key)
        if current is not None and current != fingerprint:
            fingerprint = current
            last_progress = clock.now_ms()
            logger.debug("agent.wait progress run_id=%s round=%d", run_id, round_)

    while True:
        idle = clock.now_ms() - last_progress
        if idle >= idle_timeout_ms:
            raise NoProgressError(f"Timed out with no progress after {idle_timeout_ms}ms")
        round_ += 1
        slice_ms = max(MIN_SLICE_MS, min(wait_slice_ms, idle_timeout_ms - idle))
        try:
            result = gateway.wait(run_id, slice_ms, rpc_timeout_ms=slice_ms + rpc_buffer_ms)
        except RpcTimeoutError:
            logger.warning("agent.wait rpc-timeout run_id=%s round=%d, continue waiting", run_id, round_)
            refresh()
            continue
        if _classify(run_id, result, round_):
            return result
        refresh()


def _fingerprint(gateway: AgentGateway, session_key: str) -> str | None:
    try:
        return gateway.latest_output(session_key).fingerprint()
    except GatewayError as e:
        logger.debug("snapshot unavailable session=%s error=%s", session_key, e)
        return None
