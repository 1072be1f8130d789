from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from threading import Lock
from typing import Any, Callable

import numpy as np
import onnxruntime as ort

from clonetts.application.errors import FatalEngineError, PhonemizerError
from clonetts.application.port.path_resolver import PathResolver
from clonetts.utils.logger import Logger


class PhonemeTokenizer:
    """Character tokenizer and phoneme decoder of the grapheme-to-phoneme model."""

    def __init__(
        self,
        *,
        text_symbols: Mapping[str, int],
        phoneme_symbols: Mapping[str, str],
        char_repeats: int = 1,
        languages: Sequence[str] = (),
    ) -> None:
        self.text_symbols = dict(text_symbols)
        self.phoneme_symbols = {str(key): value for key, value in phoneme_symbols.items()}
        self.char_repeats = max(1, int(char_repeats))
        self.languages = list(languages)

    @classmethod
    def from_json(cls, path: str | Path) -> "PhonemeTokenizer":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a JSON object.")
        try:
            return cls(
                text_symbols=data["text_symbols"],
                phoneme_symbols=data["phoneme_symbols"],
                char_repeats=data.get("char_repeats", 1),
                languages=data.get("languages", []),
            )
        except KeyError as e:
            raise ValueError(f"{path}: missing key {e}.") from e

    def encode(self, text: str, lang: str) -> list[int]:
        sequence: list[int] = []

        start = self.text_symbols.get(f"<{lang}>")
        if start is not None:
            sequence.append(start)

        for char in text.lower():
            index = self.text_symbols.get(char)
            if index is None:
                continue
            sequence.extend([index] * self.char_repeats)

        end = self.text_symbols.get("<end>")
        if end is not None:
            sequence.append(end)
        return sequence

    def decode(self, tokens: Sequence[int]) -> str:
        phonemes: list[str] = []
        for token in tokens:
            phoneme = self.phoneme_symbols.get(str(int(token)))
            if phoneme is None:
                continue
            # Specials: <start>, <end>, <lang> and the blank.
            if phoneme.startswith("<") or phoneme == "_":
                continue
            phonemes.append(phoneme)
        return "".join(phonemes)


def collapse_argmax(logits: np.ndarray) -> list[int]:
    """Greedy CTC-style decode of ``[1, T, V]`` logits: argmax, then drop repeats."""

    steps = np.asarray(logits)
    if steps.ndim == 3:
        steps = steps[0]
    if steps.ndim != 2:
        raise ValueError(f"Expected logits of shape [1, T, V]. Got shape={np.shape(logits)!r}")

    best = steps.argmax(axis=-1)
    tokens: list[int] = []
    for index in best.tolist():
        if not tokens or tokens[-1] != index:
            tokens.append(int(index))
    return tokens


class OnnxPhonemeModel:
    INPUT_NAME = "text"

    def __init__(
        self,
        *,
        model_path: str | None,
        config_path: str | None,
        path_resolver: PathResolver,
        providers: Sequence[str] | None = None,
        session_factory: Callable[..., Any] | None = None,
        logger: Logger | None = None,
    ) -> None:
        self.model_path = model_path
        self.config_path = config_path
        self.path_resolver = path_resolver
        self.providers = list(providers) if providers else ["CPUExecutionProvider"]
        self._session_factory = session_factory or ort.InferenceSession
        self._logger = logger

        self._lock = Lock()
        self._session: Any = None
        self._tokenizer: PhonemeTokenizer | None = None

    def config_errors(self) -> list[str]:
        errors: list[str] = []
        if not self.model_path:
            errors.append("phonemizer model")
        if not self.config_path:
            errors.append("phonemizer tokenizer config")
        return errors

    def load(self) -> None:
        if not self.model_path or not self.config_path:
            raise PhonemizerError("Phonemizer paths are not set.")

        model_path = self.path_resolver.resolve(self.model_path)
        config_path = self.path_resolver.resolve(self.config_path)

        try:
            tokenizer = PhonemeTokenizer.from_json(config_path)
            session = self._session_factory(str(model_path), providers=self.providers)
        except (OSError, ValueError) as e:
            raise PhonemizerError(f"Failed to load phonemizer: {e}") from e
        except Exception as e:
            raise PhonemizerError(f"Failed to create phonemizer session: {e}") from e

        with self._lock:
            self._tokenizer = tokenizer
            self._session = session
        self._log(f"[Phonemizer] Session ready: {model_path.name}")

    def infer(self, word: str, lang: str) -> str:
        with self._lock:
            session = self._session
            tokenizer = self._tokenizer
        if session is None or tokenizer is None:
            raise FatalEngineError("Phonemizer model is not loaded.")

        tokens = tokenizer.encode(word, lang)
        inputs: dict[str, Any] = {self.INPUT_NAME: np.asarray([tokens], dtype=np.int64)}
        try:
            outputs = session.run(None, inputs)
        except Exception as e:
            raise PhonemizerError(str(e)) from e

        return tokenizer.decode(collapse_argmax(outputs[0]))

    def close(self) -> None:
        with self._lock:
            self._session = None
            self._tokenizer = None

    def _log(self, message: str) -> None:
        if self._logger:
            self._logger.log(message)
