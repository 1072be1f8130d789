from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias

import numpy as np

# Fixed by the codec.
SAMPLE_RATE = 24_000
HOP_LENGTH = 480

AudioFrame: TypeAlias = np.ndarray


def empty_frame() -> AudioFrame:
    return np.zeros(0, dtype=np.float32)


@dataclass(frozen=True)
class DecodeRequest:
    sequence_index: int
    code_text: str
