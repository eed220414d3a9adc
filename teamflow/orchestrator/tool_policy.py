from __future__ import annotations

from teamflow.schema import TeamPhase
from teamflow.utils.text import uniq

_COORDINATION_PREFIXES = ("sessions_", "subagents", "agent", "gateway", "nodes", "cron")

# Talking phases must not spawn agents or touch the runtime on the controller's own initiative.
PHASE_FORBIDDEN_TOOL_PREFIXES: dict[str, tuple[str, ...]] = {
    "discussion": _COORDINATION_PREFIXES,
    "planning": _COORDINATION_PREFIXES,
    "convergence": _COORDINATION_PREFIXES,
}


def forbidden_tools(phase: TeamPhase, used_tools: list[str]) -> list[str]:
    prefixes = PHASE_FORBIDDEN_TOOL_PREFIXES.get(phase, ())
    if not prefixes:
        return []
    names = (t.strip().lower() for t in used_tools)
    return uniq(n for n in names if n and n.startswith(prefixes))
