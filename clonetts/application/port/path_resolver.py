from __future__ import annotations

from pathlib import Path
from typing import Protocol


class PathResolver(Protocol):
    def resolve(self, path: str) -> Path:
        ...
