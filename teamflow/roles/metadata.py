from __future__ import annotations

import json
import logging
import re
import hashlib
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field, field_validator

from teamflow.errors import GatewayError
from teamflow.gateway.base import AgentGateway, AgentSummary
from teamflow.utils.files import write_text_atomic
from teamflow.utils.json_extract import extract_first_json_object
from teamflow.utils.text import clean_str, now_iso, str_list, uniq

logger = logging.getLogger(__name__)

MATCHER_SESSION = "roles:matcher"
MATCHER_TIMEOUT_MS = 45_000


class RoleMetadataEntry(BaseModel):
    agent_id: str
    name: str
    role: str
    summary: str = ""
    tags: list[str] = Field(default_factory=list)
    model: str | None = None
    emoji: str | None = None
    updated_at: str = Field(default_factory=now_iso)

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, v: list[str]) -> list[str]:
        return uniq(t.strip() for t in v if t and t.strip())

    def core(self) -> tuple[Any, ...]:
        return (self.agent_id, self.name, self.role, self.summary, self.model, self.emoji, tuple(self.tags))


class MissingRole(BaseModel):
    role: str
    summary: str


class RoleSelection(BaseModel):
    selected_agent_ids: list[str] = Field(default_factory=list)
    missing_roles: list[MissingRole] = Field(default_factory=list)
    raw_output: str | None = None


def default_role_summary(name: str) -> str:
    return f"{name} handles tasks in its specialty and reports outcomes."


def is_role_metadata_weak(entry: RoleMetadataEntry) -> bool:
    """Weak = no tags and an empty or auto-generated summary. Weak agents are never auto-assigned."""
    if entry.tags:
        return False
    summary = entry.summary.strip()
    if not summary:
        return True
    return summary in (default_role_summary(entry.name or entry.agent_id), default_role_summary(entry.agent_id))


def merge_roles_from_agents(current: list[RoleMetadataEntry], agents: list[AgentSummary]) -> list[RoleMetadataEntry]:
    """One entry per roster agent; known role/summary/tags survive, roster fields win."""
    by_id = {e.agent_id: e for e in current}
    ts = now_iso()
    merged: list[RoleMetadataEntry] = []
    for agent in agents:
        prev = by_id.get(agent.id)
        name = agent.name or agent.id
        entry = RoleMetadataEntry(
            agent_id=agent.id,
            name=name,
            role=(prev.role if prev and prev.role else name),
            summary=(prev.summary if prev and prev.summary else default_role_summary(name)),
            tags=list(prev.tags) if prev else [],
            model=agent.model or (prev.model if prev else None),
            emoji=agent.emoji or (prev.emoji if prev else None),
            updated_at=ts,
        )
        if prev is not None and prev.core() == entry.core():
            entry.updated_at = prev.updated_at or ts
        merged.append(entry)
    return merged


def upsert_role(entries: list[RoleMetadataEntry], entry: RoleMetadataEntry) -> list[RoleMetadataEntry]:
    out = [e for e in entries if e.agent_id != entry.agent_id]
    out.append(entry)
    return out


class RoleMetadataStore(Protocol):
    def read(self) -> list[RoleMetadataEntry]:
        raise NotImplementedError

    def write(self, entries: list[RoleMetadataEntry]) -> None:
        raise NotImplementedError


class InMemoryRoleMetadataStore:
    def __init__(self, entries: list[RoleMetadataEntry] | None = None) -> None:
        self.entries = list(entries or [])
        self.writes = 0

    def read(self) -> list[RoleMetadataEntry]:
        return [e.model_copy() for e in self.entries]

    def write(self, entries: list[RoleMetadataEntry]) -> None:
        self.entries = [e.model_copy() for e in entries]
        self.writes += 1


class FileRoleMetadataStore:
    """
    Markdown file holding a fenced JSON block:

        # ROLES_METADATA
        ```json
        {"version": 1, "updatedAt": "...", "roles": [...]}
        ```

    Writes are skipped when the core fields are unchanged.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> list[RoleMetadataEntry]:
        if not self.path.exists():
            return []
        return parse_roles_markdown(self.path.read_text(encoding="utf-8"))

    def write(self, entries: list[RoleMetadataEntry]) -> None:
        current = {e.agent_id: e.core() for e in self.read()}
        if current == {e.agent_id: e.core() for e in entries}:
            return
        write_text_atomic(self.path, build_roles_markdown(entries))


def build_roles_markdown(entries: list[RoleMetadataEntry]) -> str:
    payload = {
        "version": 1,
        "updatedAt": now_iso(),
        "roles": [
            {
                "agentId": e.agent_id,
                "name": e.name,
                "role": e.role,
                "summary": e.summary,
                "tags": e.tags,
                "model": e.model,
                "emoji": e.emoji,
                "updatedAt": e.updated_at,
            }
            for e in entries
        ],
    }
    return "\n".join(
        [
            "# ROLES_METADATA",
            "",
            "Role metadata for team orchestration (not read by the agent runtime).",
            "",
            "```json",
            json.dumps(payload, ensure_ascii=False, indent=2),
            "```",
            "",
        ]
    )


def parse_roles_markdown(content: str) -> list[RoleMetadataEntry]:
    m = re.search(r"```json\s*([\s\S]*?)```", content, flags=re.IGNORECASE)
    try:
        data = json.loads(m.group(1)) if m else extract_first_json_object(content)
    except ValueError:
        return []
    rows = data.get("roles") if isinstance(data, dict) else None
    entries: list[RoleMetadataEntry] = []
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        agent_id = clean_str(row.get("agentId") or row.get("agent_id"))
        if not agent_id:
            continue
        name = clean_str(row.get("name")) or agent_id
        entries.append(
            RoleMetadataEntry(
                agent_id=agent_id,
                name=name,
                role=clean_str(row.get("role")) or name,
                summary=clean_str(row.get("summary")),
                tags=str_list(row.get("tags")),
                model=clean_str(row.get("model")) or None,
                emoji=clean_str(row.get("emoji")) or None,
                updated_at=clean_str(row.get("updatedAt")) or now_iso(),
            )
        )
    return entries


def text_digest(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:12]


def select_roles_with_gateway(
    gateway: AgentGateway, goal: str, entries: list[RoleMetadataEntry], *, idempotency_key: str | None = None
) -> RoleSelection:
    """
    Ask the runtime's matcher session to rank candidates for `goal`.
    Without an explicit `idempotency_key` the key is derived from the goal, so a repeated ask is deduplicated.
    Any failure degrades to an empty selection; the caller then queues or creates an agent.
    """
    if not entries:
        return RoleSelection()
    candidates = [
        {"agentId": e.agent_id, "name": e.name, "role": e.role, "tags": e.tags, "summary": e.summary} for e in entries
    ]
    prompt = "\n".join(
        [
            "You are a team-building assistant. Pick the best-fitting members for the goal from the candidates.",
            "Return JSON only, no Markdown.",
            'Format: {"selectedAgentIds":["..."],"missingRoles":[{"role":"...","summary":"..."}]}',
            f"Goal: {goal}",
            f"Candidates: {json.dumps(candidates, ensure_ascii=False)}",
            "If no candidate fits, describe the missing role in missingRoles.",
        ]
    )
    try:
        output = gateway.send(
            MATCHER_SESSION,
            prompt,
            deliver=False,
            idempotency_key=idempotency_key or f"roles:{text_digest(goal)}",
            timeout_ms=MATCHER_TIMEOUT_MS,
        )
    except GatewayError as e:
        logger.warning("role matcher unavailable: %s", e)
        return RoleSelection()
    try:
        data = extract_first_json_object(output)
    except ValueError:
        return RoleSelection(raw_output=output)

    known = {e.agent_id for e in entries}
    selected = [a for a in str_list(data.get("selectedAgentIds") or data.get("selected_agent_ids")) if a in known]
    missing: list[MissingRole] = []
    raw_missing = data.get("missingRoles") or data.get("missing_roles")
    for row in raw_missing if isinstance(raw_missing, list) else []:
        if not isinstance(row, dict):
            continue
        role = clean_str(row.get("role"))
        if not role:
            continue
        summary = clean_str(row.get("summary")) or f"{role} role is missing, please create it."
        missing.append(MissingRole(role=role, summary=summary))
    return RoleSelection(selected_agent_ids=selected, missing_roles=missing, raw_output=output)
