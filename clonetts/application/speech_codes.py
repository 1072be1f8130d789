from __future__ import annotations

import re
from collections.abc import Iterable

SPEECH_CODE_PATTERN = re.compile(r"<\|speech_(\d+)\|>")

TEXT_PROMPT_START = "<|TEXT_PROMPT_START|>"
TEXT_PROMPT_END = "<|TEXT_PROMPT_END|>"
SPEECH_GENERATION_START = "<|SPEECH_GENERATION_START|>"
SPEECH_GENERATION_END = "<|SPEECH_GENERATION_END|>"


def format_speech_codes(codes: Iterable[int]) -> str:
    return "".join(f"<|speech_{int(code)}|>" for code in codes)


def extract_speech_codes(text: str) -> list[int]:
    """Pull the integer codes out of marker text; anything else is ignored."""
    return [int(match) for match in SPEECH_CODE_PATTERN.findall(text or "")]


def build_clone_prompt(*, prompt_phonemes: str, transcript_phonemes: str, audio_text: str) -> str:
    user = (
        "user: Convert the text to speech:"
        f"{TEXT_PROMPT_START}{transcript_phonemes} {prompt_phonemes}{TEXT_PROMPT_END}"
    )
    assistant = f"assistant:{SPEECH_GENERATION_START}{audio_text}"
    return f"{user}\n{assistant}"
