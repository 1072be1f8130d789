from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

import numpy as np

AudioArray = np.ndarray


class CodecDecoder(Protocol):
    def config_errors(self) -> list[str]:
        ...

    def load(self) -> None:
        ...

    def decode(self, codes: Sequence[int]) -> AudioArray:
        """Decode speech codes into float32 PCM samples at 24 kHz."""
        ...

    def close(self) -> None:
        ...
