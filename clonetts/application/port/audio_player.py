from __future__ import annotations

from typing import Protocol

import numpy as np

AudioArray = np.ndarray


class AudioPlayer(Protocol):
    @property
    def is_playing(self) -> bool:
        """True while queued audio has not finished playing."""
        ...

    def play(self, audio: AudioArray) -> None:
        """Queue audio for playback without blocking."""
        ...

    def interrupt(self) -> None:
        ...

    def close(self) -> None:
        ...
