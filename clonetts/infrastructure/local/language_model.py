from __future__ import annotations

import codecs
from collections.abc import Iterator
from pathlib import Path
from threading import Lock
from typing import TYPE_CHECKING

from clonetts.application.errors import FatalEngineError, TokenGenerationError
from clonetts.application.port.path_resolver import PathResolver
from clonetts.domain.vo.generation import GeneratedToken, GenerationParams
from clonetts.utils.logger import Logger

if TYPE_CHECKING:
    from llama_cpp import Llama


class LlamaCppLanguageModel:
    def __init__(
        self,
        *,
        model_path: str | None,
        path_resolver: PathResolver,
        n_ctx: int = 2048,
        n_gpu_layers: int = 0,
        logger: Logger | None = None,
    ) -> None:
        self.model_path = model_path
        self.path_resolver = path_resolver
        self.n_ctx = n_ctx
        self.n_gpu_layers = n_gpu_layers
        self._logger = logger

        self._lock = Lock()
        self._model: Llama | None = None

    def config_errors(self) -> list[str]:
        return [] if self.model_path else ["backbone model"]

    def load(self) -> None:
        if not self.model_path:
            raise TokenGenerationError("Backbone model path is not set.")

        try:
            from llama_cpp import Llama as _Llama
        except ModuleNotFoundError as e:
            raise TokenGenerationError(
                "Local backbone requires 'llama-cpp-python'. "
                "Install it with: pip install -e .[local-llm]"
            ) from e

        model_path: Path = self.path_resolver.resolve(self.model_path)
        self._log(
            "[Backbone] Loading GGUF model: "
            f"path={model_path}, n_ctx={self.n_ctx}, n_gpu_layers={self.n_gpu_layers}"
        )
        try:
            model = _Llama(
                model_path=str(model_path),
                n_ctx=self.n_ctx,
                n_gpu_layers=self.n_gpu_layers,
                verbose=False,
            )
        except (OSError, ValueError, RuntimeError) as e:
            raise TokenGenerationError(f"Failed to load backbone: {e}") from e

        with self._lock:
            self._model = model

    def stream(self, prompt: str, params: GenerationParams) -> Iterator[GeneratedToken]:
        with self._lock:
            model = self._model
        if model is None:
            raise FatalEngineError("Backbone model is not loaded.")

        try:
            prompt_tokens = model.tokenize(prompt.encode("utf-8"), add_bos=True, special=True)
        except (RuntimeError, ValueError) as e:
            raise TokenGenerationError(str(e)) from e

        return self._iterate(model, prompt_tokens, params)

    def close(self) -> None:
        with self._lock:
            model = self._model
            self._model = None
        if model is not None:
            close = getattr(model, "close", None)
            if callable(close):
                close()

    def _iterate(self, model: Llama, prompt_tokens: list[int], params: GenerationParams) -> Iterator[GeneratedToken]:
        eos = model.token_eos()
        generator = model.generate(
            prompt_tokens,
            temp=params.temperature,
            top_k=params.top_k,
            top_p=params.top_p,
            min_p=params.min_p,
            repeat_penalty=params.repeat_penalty,
            reset=True,
        )
        # Multi-byte characters can be split across tokens.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        try:
            for token in generator:
                if token == eos:
                    yield GeneratedToken(text="", is_end=True)
                    return
                piece = decoder.decode(model.detokenize([token], special=True))
                if piece:
                    yield GeneratedToken(text=piece)
        except (RuntimeError, ValueError) as e:
            raise TokenGenerationError(str(e)) from e
        finally:
            generator.close()

    def _log(self, message: str) -> None:
        if self._logger:
            self._logger.log(message)
