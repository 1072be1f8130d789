from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple


@dataclass(frozen=True)
class GenerationParams:
    temperature: float = 1.0
    top_k: int = 50
    top_p: float = 1.0
    min_p: float = 0.0
    repeat_penalty: float = 1.0
    max_tokens: int = 2048


class GeneratedToken(NamedTuple):
    text: str
    # Set when the model itself signals end of generation (EOS/EOG).
    is_end: bool = False
