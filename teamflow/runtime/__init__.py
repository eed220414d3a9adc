from .clock import Clock, ManualClock, SystemClock
from .invoke import AgentOutput, delete_sessions, run_agent, start_run
from .waiter import wait_for_run, wait_for_run_with_progress

__all__ = [
    "AgentOutput",
    "Clock",
    "ManualClock",
    "SystemClock",
    "delete_sessions",
    "run_agent",
    "start_run",
    "wait_for_run",
    "wait_for_run_with_progress",
]
