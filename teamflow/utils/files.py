from __future__ import annotations

from pathlib import Path


def write_text_atomic(path: Path, content: str) -> None:
    """Write via a sibling temp file + replace so readers never see a half-written file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content, encoding="utf-8", newline="\n")
    tmp.replace(path)
