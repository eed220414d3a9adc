from .config import Settings, load_settings
from .orchestrator import TeamOrchestrator

__all__ = ["Settings", "TeamOrchestrator", "load_settings"]
