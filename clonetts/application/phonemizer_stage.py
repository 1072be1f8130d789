from __future__ import annotations

from concurrent.futures import Executor
from typing import NamedTuple

from clonetts.application.background_runner import CancellationToken
from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.engine_stage import EngineStage
from clonetts.application.observers import Broadcast
from clonetts.application.port.phoneme_model import PhonemeModel
from clonetts.application.text_segmenter import (
    DEFAULT_LANGUAGE,
    PronunciationDictionary,
    phonemize_text,
)
from clonetts.utils.logger import Logger


class _PhonemizePayload(NamedTuple):
    text: str
    lang: str
    dictionary: PronunciationDictionary


class PhonemizerStage(EngineStage[PhonemeModel]):
    WARMUP_TEXT = "warmup"

    def __init__(
        self,
        *,
        engine: PhonemeModel,
        consumer: ConsumerExecutor,
        pool: Executor,
        dictionary_path: str | None = None,
        language: str = DEFAULT_LANGUAGE,
        logger: Logger | None = None,
    ) -> None:
        super().__init__(name="Phonemizer", engine=engine, consumer=consumer, pool=pool, logger=logger)
        self.dictionary_path = dictionary_path
        self.language = language
        self.response_generated: Broadcast[str] = Broadcast()
        self._dictionary = PronunciationDictionary()

    def phonemize(self, text: str) -> bool:
        if not text or not text.strip():
            self._log("empty prompt")
            return False

        if not self.is_loaded:
            self._log("model not loaded")
            return False

        if not self.state.begin_work():
            return False

        payload = _PhonemizePayload(text=text, lang=self.language, dictionary=self._dictionary)
        return self._dispatch(payload, self._run_phonemize, self._on_phonemized, failed_result="")

    def _load(self, token: CancellationToken) -> PronunciationDictionary:
        self.engine.load()
        dictionary = PronunciationDictionary.load(self.dictionary_path, logger=self.logger)
        phonemize_text(
            self.WARMUP_TEXT,
            lang=self.language,
            infer=self.engine.infer,
            dictionary=dictionary,
            token=token,
            logger=self.logger,
        )
        return dictionary

    def _adopt(self, resource: PronunciationDictionary) -> None:
        self._dictionary = resource

    def _on_reset(self) -> None:
        self._dictionary = PronunciationDictionary()

    def _run_phonemize(self, payload: _PhonemizePayload, token: CancellationToken) -> str:
        return phonemize_text(
            payload.text,
            lang=payload.lang,
            infer=self.engine.infer,
            dictionary=payload.dictionary,
            token=token,
            logger=self.logger,
        )

    def _on_phonemized(self, phonemes: str) -> None:
        self.response_generated.emit(phonemes)
        self.state.end_work()
