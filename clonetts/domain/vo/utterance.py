from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ReferenceClone:
    reference_transcript: str
    reference_audio_text: str


@dataclass(frozen=True)
class UtteranceRequest:
    text: str
    clone: ReferenceClone | None = None


@dataclass(frozen=True)
class ReferenceVoice:
    """Priming context held between utterances once the reference is encoded."""

    transcript_phonemes: str
    audio_text: str
    codes: tuple[int, ...] = field(default=(), repr=False)


@dataclass(frozen=True)
class ClonePrompt:
    prompt_phonemes: str
    transcript_phonemes: str
    audio_text: str

    def is_complete(self) -> bool:
        return bool(self.prompt_phonemes and self.transcript_phonemes and self.audio_text)
