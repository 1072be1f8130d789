from __future__ import annotations

import json
from pathlib import Path


def read_text_file(path: str | Path) -> str:
    return Path(path).read_text(encoding="utf-8").strip()


def read_int_list(path: str | Path) -> list[int]:
    """Read a JSON array of integers (e.g. reference audio codes)."""

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of integers.")

    values: list[int] = []
    for item in data:
        # bool is an int subclass; reject it explicitly.
        if isinstance(item, bool) or not isinstance(item, int):
            raise ValueError(f"{path}: expected integers, got {item!r}.")
        values.append(item)
    return values
