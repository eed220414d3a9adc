from __future__ import annotations


class TeamflowError(Exception):
    """Base class for failures raised by the orchestrator core."""


class GatewayError(TeamflowError):
    """The agent-hosting runtime rejected or failed an RPC."""


class RpcTimeoutError(GatewayError):
    """A single RPC exceeded its transport timeout (the run itself may still be alive)."""


class RunFailedError(TeamflowError):
    """A run reached an explicit failure status (error / failed / aborted)."""

    def __init__(self, run_id: str, status: str, reason: str) -> None:
        super().__init__(reason)
        self.run_id = run_id
        self.status = status


class RunTimeoutError(TeamflowError):
    """Slice-mode wait exceeded its wall-clock cap."""


class NoProgressError(TeamflowError):
    """Idle-mode wait saw no change in the agent's visible output for too long."""


class PhaseTransitionError(TeamflowError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Invalid phase transition: {current} -> {requested}")
        self.current = current
        self.requested = requested


class ProtocolError(TeamflowError):
    """A structured reply stayed invalid after every corrective retry."""
