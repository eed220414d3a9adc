from .base import AgentGateway, AgentSnapshot, AgentSummary, WaitResult
from .factory import build_gateway
from .http import HttpGateway
from .mock import MockGateway, Reply

__all__ = [
    "AgentGateway",
    "AgentSnapshot",
    "AgentSummary",
    "HttpGateway",
    "MockGateway",
    "Reply",
    "WaitResult",
    "build_gateway",
]
