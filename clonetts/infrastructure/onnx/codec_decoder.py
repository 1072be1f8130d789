from __future__ import annotations

from collections.abc import Sequence
from threading import Lock
from typing import Any, Callable

import numpy as np
import onnxruntime as ort

from clonetts.application.errors import AudioDecodeError, FatalEngineError
from clonetts.application.port.path_resolver import PathResolver
from clonetts.utils.logger import Logger


class OnnxCodecDecoder:
    """Neural codec decoder: speech codes in, 24 kHz float32 PCM out."""

    INPUT_NAME = "codes"
    INT16_SCALE = 32768.0

    def __init__(
        self,
        *,
        model_path: str | None,
        path_resolver: PathResolver,
        providers: Sequence[str] | None = None,
        session_factory: Callable[..., Any] | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.model_path = model_path
        self.path_resolver = path_resolver
        self.providers = list(providers) if providers else ["CPUExecutionProvider"]
        self._session_factory = session_factory or ort.InferenceSession
        self._logger = logger

        self._lock = Lock()
        self._session: Any = None

    def config_errors(self) -> list[str]:
        return [] if self.model_path else ["decoder model"]

    def load(self) -> None:
        if not self.model_path:
            raise AudioDecodeError("Decoder model path is not set.")

        model_path = self.path_resolver.resolve(self.model_path)
        try:
            session = self._session_factory(str(model_path), providers=self.providers)
        except Exception as e:
            raise AudioDecodeError(f"Failed to create decoder session: {e}") from e

        with self._lock:
            self._session = session
        self._log(f"[Decoder] Session ready: {model_path.name}")

    def decode(self, codes: Sequence[int]) -> np.ndarray:
        with self._lock:
            session = self._session
        if session is None:
            # Released under a running decode; nothing will recover it.
            raise FatalEngineError("Decoder session is not available.")

        if len(codes) == 0:
            return np.zeros(0, dtype=np.float32)

        inputs = {self.INPUT_NAME: np.asarray(codes, dtype=np.int32).reshape(1, 1, -1)}
        try:
            outputs = session.run(None, inputs)
        except Exception as e:
            raise AudioDecodeError(str(e)) from e

        return to_float_pcm(outputs[0])

    def close(self) -> None:
        with self._lock:
            self._session = None

    def _log(self, message: str) -> None:
        if self._logger:
            self._logger.log(message)


def to_float_pcm(output: Any) -> np.ndarray:
    audio = np.asarray(output)
    if np.issubdtype(audio.dtype, np.integer):
        return (audio.astype(np.float32) / OnnxCodecDecoder.INT16_SCALE).reshape(-1)
    return audio.astype(np.float32).reshape(-1)
