from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from teamflow.schema import TeamState


@dataclass(frozen=True)
class RunLogPaths:
    run_id: str
    jsonl_path: Path


@dataclass(frozen=True)
class StreamCursor:
    """How much of each append-only team stream has already been written."""

    messages: int = 0
    flow_events: int = 0
    audit: int = 0


def make_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def init_run_log(log_dir: Path, run_id: str) -> RunLogPaths:
    log_dir.mkdir(parents=True, exist_ok=True)
    return RunLogPaths(run_id=run_id, jsonl_path=log_dir / f"run_{run_id}.jsonl")


def append_snapshot(
    paths: RunLogPaths,
    state: TeamState,
    *,
    cursor: StreamCursor | None = None,
    extra: dict[str, Any] | None = None,
) -> StreamCursor:
    """
    Append one JSONL line for `state`.

    The append-only streams (messages, flow events, audit) are written as deltas
    since `cursor`; everything else is dumped in full. Returns the new cursor.
    """
    cursor = cursor or StreamCursor()
    payload: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "run_id": paths.run_id,
        "team_id": state.team.id,
        "phase": state.phase,
        "state": state.model_dump(mode="json", exclude={"messages", "flow_events", "audit"}),
        "new_messages": [m.model_dump(mode="json") for m in state.messages[cursor.messages :]],
        "new_flow_events": [e.model_dump(mode="json") for e in state.flow_events[cursor.flow_events :]],
        "new_audit": [a.model_dump(mode="json") for a in state.audit[cursor.audit :]],
    }
    if extra:
        payload.update(extra)
    with paths.jsonl_path.open("a", encoding="utf-8", newline="\n") as f:
        f.write(json.dumps(payload, ensure_ascii=False) + "\n")
    return StreamCursor(messages=len(state.messages), flow_events=len(state.flow_events), audit=len(state.audit))
