from __future__ import annotations

from pathlib import Path


class MountPathResolver:
    """Resolves model and reference paths against a base directory.

    Absolute paths are returned unchanged; ``~`` is expanded.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self.base_dir = Path(base_dir).expanduser() if base_dir else Path.cwd()

    def resolve(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.base_dir / candidate
