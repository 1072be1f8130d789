from __future__ import annotations

from typing import Protocol


class PhonemeModel(Protocol):
    def config_errors(self) -> list[str]:
        """Return human-readable problems that prevent loading (e.g. unset paths)."""
        ...

    def load(self) -> None:
        """Load the model; raises on failure. Called from a worker thread."""
        ...

    def infer(self, word: str, lang: str) -> str:
        """Phonemize a single word (no punctuation or whitespace)."""
        ...

    def close(self) -> None:
        ...
