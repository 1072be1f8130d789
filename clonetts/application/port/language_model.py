from __future__ import annotations

from collections.abc import Iterator
from typing import Protocol

from clonetts.domain.vo.generation import GeneratedToken, GenerationParams


class LanguageModel(Protocol):
    def config_errors(self) -> list[str]:
        ...

    def load(self) -> None:
        ...

    def stream(self, prompt: str, params: GenerationParams) -> Iterator[GeneratedToken]:
        """Yield generated tokens one by one.

        The caller decides when to stop; it may abandon the iterator early.
        """
        ...

    def close(self) -> None:
        ...
