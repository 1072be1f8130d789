from __future__ import annotations

from threading import Lock

import numpy as np

from clonetts.domain.vo.audio import AudioFrame, empty_frame


class BufferingPlayer:
    """Player that keeps frames in memory instead of playing them (``--no-playback``)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._frames: list[AudioFrame] = []
        self.closed = False

    @property
    def is_playing(self) -> bool:
        return False

    @property
    def frames(self) -> list[AudioFrame]:
        with self._lock:
            return list(self._frames)

    def play(self, audio: np.ndarray) -> None:
        with self._lock:
            self._frames.append(np.asarray(audio, dtype=np.float32).reshape(-1))

    def waveform(self) -> AudioFrame:
        with self._lock:
            if not self._frames:
                return empty_frame()
            return np.concatenate(self._frames)

    def clear(self) -> None:
        with self._lock:
            self._frames.clear()

    def interrupt(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True
