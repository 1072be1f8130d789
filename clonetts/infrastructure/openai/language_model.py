from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from openai import OpenAI, OpenAIError

from clonetts.application.errors import TokenGenerationError
from clonetts.application.speech_codes import SPEECH_GENERATION_END
from clonetts.domain.vo.generation import GeneratedToken, GenerationParams
from clonetts.utils.logger import Logger


class OpenAICompletionModel:
    """Speech-token backbone served by an OpenAI-compatible completions endpoint.

    Intended for llama.cpp's ``llama-server`` (or any server exposing
    ``/v1/completions`` with the backbone loaded). Sampling knobs that the
    OpenAI schema lacks are passed through ``extra_body``.
    """

    def __init__(
        self,
        *,
        client: OpenAI,
        model: str | None,
        stop: list[str] | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._stop = stop if stop is not None else [SPEECH_GENERATION_END]
        self._logger = logger

    def config_errors(self) -> list[str]:
        return [] if self._model else ["backbone model"]

    def load(self) -> None:
        # Fail early when the server is unreachable.
        try:
            self._client.models.list()
        except OpenAIError as e:
            raise TokenGenerationError(str(e)) from e
        self._log(f"[Backbone] Using completions server model: {self._model}")

    def stream(self, prompt: str, params: GenerationParams) -> Iterator[GeneratedToken]:
        try:
            response = self._client.completions.create(
                model=str(self._model),
                prompt=prompt,
                max_tokens=params.max_tokens,
                temperature=params.temperature,
                top_p=params.top_p,
                stop=self._stop,
                stream=True,
                extra_body=self._extra_body(params),
            )
        except OpenAIError as e:
            raise TokenGenerationError(str(e)) from e

        return self._iterate(response)

    def close(self) -> None:
        pass

    def _iterate(self, response: Any) -> Iterator[GeneratedToken]:
        try:
            for chunk in response:
                choices = chunk.choices
                if not choices:
                    continue

                choice = choices[0]
                text = choice.text or ""
                if text:
                    yield GeneratedToken(text=text)
                if choice.finish_reason:
                    yield GeneratedToken(text="", is_end=True)
                    return
        except OpenAIError as e:
            raise TokenGenerationError(str(e)) from e
        finally:
            close = getattr(response, "close", None)
            if callable(close):
                close()

    @staticmethod
    def _extra_body(params: GenerationParams) -> dict[str, Any]:
        return {
            "top_k": params.top_k,
            "min_p": params.min_p,
            "repeat_penalty": params.repeat_penalty,
        }

    def _log(self, message: str) -> None:
        if self._logger:
            self._logger.log(message)
