from __future__ import annotations

from typing import Any

from .base import AgentSnapshot


def read_message_text(message: dict[str, Any] | None) -> str:
    if not message:
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [b.get("text") for b in content if isinstance(b, dict)]
        return "\n".join(p for p in parts if isinstance(p, str))
    return ""


def _tool_names_from_block(block: Any) -> list[str]:
    if not isinstance(block, dict):
        return []
    if str(block.get("type") or "").lower() == "tool_use":
        name = str(block.get("name") or "").strip()
        return [name] if name else []
    tool_name = str(block.get("tool_name") or "").strip()
    if tool_name:
        return [tool_name]
    calls = block.get("tool_calls")
    if isinstance(calls, list):
        names = []
        for call in calls:
            fn = call.get("function") if isinstance(call, dict) else None
            name = str((fn or {}).get("name") or "").strip()
            if name:
                names.append(name)
        return names
    return []


def read_message_tool_names(message: dict[str, Any] | None) -> list[str]:
    if not message or not isinstance(message.get("content"), list):
        return []
    return [n for block in message["content"] for n in _tool_names_from_block(block)]


def _is_assistant(message: Any) -> bool:
    return isinstance(message, dict) and str(message.get("role") or "").lower() == "assistant"


def latest_assistant_snapshot(messages: list[dict[str, Any]] | None) -> AgentSnapshot:
    """
    Pick the newest assistant message that has text or tool calls.
    Falls back to the first non-empty message of any role when no assistant spoke yet.
    """
    if not messages:
        return AgentSnapshot()
    for message in reversed(messages):
        if not _is_assistant(message):
            continue
        text = read_message_text(message).strip()
        tools = read_message_tool_names(message)
        if text or tools:
            return AgentSnapshot(text=text, tool_names=tools)
    for message in messages:
        text = read_message_text(message if isinstance(message, dict) else None).strip()
        if text:
            return AgentSnapshot(text=text)
    return AgentSnapshot()


def read_send_output(result: Any) -> str:
    """chat.send replies come back either as a bare string or wrapped in one of a few keys."""
    if isinstance(result, str):
        return result.strip()
    if isinstance(result, dict):
        for key in ("output", "message", "text", "response", "content"):
            v = result.get(key)
            if isinstance(v, str) and v.strip():
                return v.strip()
            if isinstance(v, (dict, list)):
                text = read_message_text({"content": v} if isinstance(v, list) else v)
                if text.strip():
                    return text.strip()
    return ""
