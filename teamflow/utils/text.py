from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Iterable


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def slugify(value: str, *, fallback: str = "item") -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").strip().lower()).strip("-")
    return slug or fallback


def uniq(items: Iterable[str]) -> list[str]:
    """Order-preserving de-duplication."""
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def clean_str(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def str_list(value: Any) -> list[str]:
    """
    Normalize a loosely-typed model field into a list of non-empty strings.

    - "a"           -> ["a"]
    - ["a", "", 3]  -> ["a", "3"]
    - {"k": "v"}    -> ['{"k": "v"}']  (objects are kept as compact JSON)
    """
    if value is None:
        return []
    if isinstance(value, str):
        v = value.strip()
        return [v] if v else []
    if not isinstance(value, (list, tuple)):
        value = [value]
    out: list[str] = []
    for item in value:
        if isinstance(item, (dict, list)):
            out.append(json.dumps(item, ensure_ascii=False))
            continue
        s = clean_str(item)
        if s:
            out.append(s)
    return out


def pick(data: dict[str, Any], *keys: str) -> Any:
    """First present, non-None value among `keys`."""
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return None
