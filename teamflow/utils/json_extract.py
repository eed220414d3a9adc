from __future__ import annotations

import json
import re
from typing import Any, Iterator

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```", flags=re.IGNORECASE)


def iter_json_candidates(text: str, labels: tuple[str, ...] | list[str] = ()) -> Iterator[str]:
    """
    Yield substrings of `text` that look like complete JSON objects, in priority order.

    Order:
    - a reply that is itself an object (`{...}` with only whitespace around)
    - objects following a label marker, e.g. ``PLAN: {...}`` (every occurrence, per label)
    - objects inside fenced code blocks (```json ... ``` or plain ```)
    - the first top-level `{` anywhere in the text

    Duplicates are yielded once.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return
    seen: set[str] = set()

    def emit(frag: str | None) -> Iterator[str]:
        if frag and frag not in seen:
            seen.add(frag)
            yield frag

    if trimmed.startswith("{"):
        yield from emit(extract_balanced_object(trimmed, 0))

    for label in labels:
        for m in re.finditer(rf"{re.escape(label)}\s*:\s*", trimmed, flags=re.IGNORECASE):
            start = trimmed.find("{", m.end())
            if start >= 0:
                yield from emit(extract_balanced_object(trimmed, start))

    for m in _FENCED.finditer(trimmed):
        block = m.group(1).strip()
        start = block.find("{")
        if start >= 0:
            yield from emit(extract_balanced_object(block, start))

    yield from emit(extract_balanced_object(trimmed, trimmed.find("{")))


def iter_json_objects(text: str, labels: tuple[str, ...] | list[str] = ()) -> Iterator[dict[str, Any]]:
    """Decode each candidate; candidates that are not valid JSON objects are skipped."""
    for frag in iter_json_candidates(text, labels):
        try:
            obj = json.loads(frag)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            yield obj


def extract_first_json_object(text: str, labels: tuple[str, ...] | list[str] = ()) -> dict[str, Any]:
    for obj in iter_json_objects(text, labels):
        return obj
    raise ValueError("no JSON object found in text")


def extract_balanced_object(s: str, start_idx: int) -> str | None:
    """
    Return the smallest substring starting at start_idx that forms a balanced JSON object.
    Handles strings/escapes so braces inside strings don't count.
    """
    if start_idx < 0 or start_idx >= len(s) or s[start_idx] != "{":
        return None
    depth = 0
    in_str = False
    esc = False
    for j in range(start_idx, len(s)):
        ch = s[j]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return s[start_idx : j + 1]
    return None
