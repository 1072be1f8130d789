from __future__ import annotations

from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Callable


class Logger:
    """Line logger shared by the pipeline, the CLI and the window.

    Lines are kept in memory so a subscriber attached late (the Qt worker is
    created after the pipeline starts loading) still sees everything. Safe to
    call from worker threads.
    """

    def __init__(
        self,
        *,
        log_dir: Path = Path("logs"),
        on_emit: Callable[[str], None] | None = None,
        max_lines: int | None = 10_000,
    ):
        self.log_dir = log_dir
        self.max_lines = max_lines
        self._on_emit: Callable[[str], None] | None = None

        self._lock = Lock()
        self._lines: list[str] = []
        self._started_at = datetime.now()

        # Set via property to keep replay behavior consistent.
        self.on_emit = on_emit

    @property
    def on_emit(self) -> Callable[[str], None] | None:
        return self._on_emit

    @on_emit.setter
    def on_emit(self, callback: Callable[[str], None] | None) -> None:
        with self._lock:
            # Only replay buffered logs when the first subscriber is attached.
            should_replay = self._on_emit is None and callback is not None
            self._on_emit = callback
            replay = list(self._lines) if should_replay else []

        if callback is not None:
            for line in replay:
                callback(line)

    @property
    def lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def log(self, message: str) -> None:
        if not message:
            return

        with self._lock:
            self._lines.append(message)
            if self.max_lines is not None and len(self._lines) > self.max_lines:
                del self._lines[: len(self._lines) - self.max_lines]
            callback = self._on_emit

        if callback:
            callback(message)

    def warning(self, message: str) -> None:
        self.log(f"[WARN] {message}")

    def error(self, message: str) -> None:
        self.log(f"[ERROR] {message}")

    def save(self) -> Path:
        self.log_dir.mkdir(parents=True, exist_ok=True)

        filename = self._started_at.strftime("%Y-%m-%d_%H-%M-%S.txt")
        path = self.log_dir / filename

        path.write_text("\n".join(self.lines), encoding="utf-8")
        return path
