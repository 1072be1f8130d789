from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from clonetts.application.background_runner import CancellationToken
from clonetts.application.port.language_model import LanguageModel
from clonetts.application.speech_codes import SPEECH_GENERATION_END
from clonetts.domain.vo.generation import GenerationParams


class StopPredicate(Protocol):
    def __call__(self, text: str, generated_count: int) -> bool:
        ...


class SpeechEndPredicate:
    """Stops at the designated end-of-speech marker token."""

    def __init__(self, end_marker: str = SPEECH_GENERATION_END) -> None:
        self.end_marker = end_marker

    def __call__(self, text: str, generated_count: int) -> bool:
        return text.strip() == self.end_marker


def run_generation(
    model: LanguageModel,
    prompt: str,
    params: GenerationParams,
    token: CancellationToken,
    *,
    stop: StopPredicate,
    on_token: Callable[[str], None] | None = None,
) -> str:
    """Drive ``model`` until an end condition and return the produced text.

    Ends on the model's own end marker, on ``stop``, at ``params.max_tokens``,
    or when ``token`` is cancelled (checked before every step). The end token
    itself is never emitted.
    """

    pieces: list[str] = []
    stream = model.stream(prompt, params)
    try:
        for generated in stream:
            if token.cancelled:
                break
            if generated.is_end or stop(generated.text, len(pieces)):
                break

            pieces.append(generated.text)
            if on_token is not None:
                on_token(generated.text)

            if params.max_tokens > 0 and len(pieces) >= params.max_tokens:
                break
    finally:
        close = getattr(stream, "close", None)
        if callable(close):
            close()

    return "".join(pieces)
