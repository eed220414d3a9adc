from .runtime import TeamRuntime
from .team import TeamOrchestrator

__all__ = ["TeamOrchestrator", "TeamRuntime"]
