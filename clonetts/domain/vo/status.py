from __future__ import annotations

from enum import Enum


class StageStatus(Enum):
    INIT = "init"
    LOADING = "loading"
    READY = "ready"
    GENERATING = "generating"
    ERROR = "error"


class PipelineStatus(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    PHONEMIZING_REFERENCE = "phonemizing_reference"
    PHONEMIZING_PROMPT = "phonemizing_prompt"
    GENERATING = "generating"
    DECODING = "decoding"
    PLAYING = "playing"
    ERROR = "error"

    @property
    def is_busy(self) -> bool:
        return self in _BUSY_STATUSES


_BUSY_STATUSES = frozenset(
    {
        PipelineStatus.PHONEMIZING_PROMPT,
        PipelineStatus.GENERATING,
        PipelineStatus.DECODING,
        PipelineStatus.PLAYING,
    }
)
