"""Word-level glue around the phoneme model.

Text is split on punctuation and whitespace, which pass through untouched.
Each remaining word is looked up in the pronunciation dictionary (exact form
first, then lower-cased) and only falls back to model inference when the
dictionary has no entry.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from pathlib import Path

from clonetts.application.background_runner import CancellationToken
from clonetts.application.errors import FatalEngineError
from clonetts.utils.logger import Logger

DEFAULT_LANGUAGE = "en_us"

_SPLIT_PATTERN = re.compile(r"([().,:?!/–\s])")
_PASSTHROUGH = frozenset({"(", ")", ".", ",", ":", "?", "!", "/", "–", " ", "-"})


def split_segments(text: str) -> list[str]:
    return [part for part in _SPLIT_PATTERN.split(text) if part]


def is_passthrough(segment: str) -> bool:
    return segment in _PASSTHROUGH or segment.isspace()


class PronunciationDictionary:
    """User-supplied pronunciations, keyed by language then word."""

    def __init__(self, entries: Mapping[str, Mapping[str, str]] | None = None) -> None:
        self._entries: dict[str, dict[str, str]] = {
            lang: dict(words) for lang, words in (entries or {}).items()
        }

    @classmethod
    def load(cls, path: str | Path | None, *, logger: Logger | None = None) -> "PronunciationDictionary":
        if not path or not Path(path).is_file():
            if logger:
                logger.warning(
                    f"[Phonemizer] Dictionary file not found at {path}. Proceeding without dictionary."
                )
            return cls()

        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
            raise ValueError(f"{path}: expected an object of {{language: {{word: phonemes}}}}.")

        if logger:
            logger.log(f"[Phonemizer] Loaded dictionary from {path}")
        return cls(data)

    def lookup(self, word: str, lang: str) -> str | None:
        words = self._entries.get(lang)
        if not words:
            return None
        if word in words:
            return words[word]
        return words.get(word.lower())

    def __len__(self) -> int:
        return sum(len(words) for words in self._entries.values())


def phonemize_text(
    text: str,
    *,
    lang: str,
    infer: Callable[[str, str], str],
    dictionary: PronunciationDictionary | None = None,
    token: CancellationToken | None = None,
    logger: Logger | None = None,
) -> str:
    parts: list[str] = []
    for segment in split_segments(text):
        if token is not None:
            token.raise_if_cancelled()

        if is_passthrough(segment):
            parts.append(segment)
            continue

        if dictionary is not None:
            known = dictionary.lookup(segment, lang)
            if known is not None:
                parts.append(known)
                continue

        try:
            parts.append(infer(segment, lang))
        except FatalEngineError:
            raise
        except (RuntimeError, ValueError, OSError) as e:
            # Keep the word so the rest of the sentence still gets spoken.
            if logger:
                logger.error(f"[Phonemizer] Inference error for word '{segment}': {e}")
            parts.append(segment)

    return "".join(parts)
