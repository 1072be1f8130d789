from __future__ import annotations

from concurrent.futures import Executor
from typing import NamedTuple

from clonetts.application.background_runner import CancellationToken
from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.engine_stage import EngineStage
from clonetts.application.generation_loop import SpeechEndPredicate, StopPredicate, run_generation
from clonetts.application.observers import Broadcast
from clonetts.application.port.language_model import LanguageModel
from clonetts.application.speech_codes import build_clone_prompt
from clonetts.domain.vo.generation import GenerationParams
from clonetts.domain.vo.status import StageStatus
from clonetts.domain.vo.utterance import ClonePrompt
from clonetts.utils.logger import Logger


class _GenerationPayload(NamedTuple):
    epoch: int
    prompt: str
    params: GenerationParams


class TokenGeneratorStage(EngineStage[LanguageModel]):
    """Clone-conditioned speech token generation.

    Tokens are broadcast on ``token_streamed`` as they arrive (marshaled onto
    the consumer), then the full text on ``response_generated``. The stage is
    back to READY only after ``response_generated`` observers have run.
    """

    def __init__(
        self,
        *,
        engine: LanguageModel,
        consumer: ConsumerExecutor,
        pool: Executor,
        params: GenerationParams | None = None,
        stop_predicate: StopPredicate | None = None,
        logger: Logger | None = None,
    ) -> None:
        super().__init__(name="Backbone", engine=engine, consumer=consumer, pool=pool, logger=logger)
        self.params = params or GenerationParams()
        self.stop_predicate: StopPredicate = stop_predicate or SpeechEndPredicate()
        self.token_streamed: Broadcast[str] = Broadcast()
        self.response_generated: Broadcast[str] = Broadcast()

    def prompt_with_clone(self, clone: ClonePrompt) -> bool:
        if not clone.is_complete():
            self._log("invalid prompt")
            return False

        if not self.is_loaded:
            self._log("model not loaded")
            return False

        if not self.state.begin_work():
            return False

        prompt = build_clone_prompt(
            prompt_phonemes=clone.prompt_phonemes,
            transcript_phonemes=clone.transcript_phonemes,
            audio_text=clone.audio_text,
        )
        payload = _GenerationPayload(epoch=self._epoch, prompt=prompt, params=self.params)
        return self._dispatch(payload, self._run_generation, self._on_generated, failed_result="")

    def stop(self) -> bool:
        if self.status is not StageStatus.GENERATING:
            self._log("already stopped")
            return False

        self._log("stop requested")
        self.runner.cancel()
        return True

    def _run_generation(self, payload: _GenerationPayload, token: CancellationToken) -> str:
        def on_token(text: str) -> None:
            self.consumer.post(self._on_token, payload.epoch, text)

        return run_generation(
            self.engine,
            payload.prompt,
            payload.params,
            token,
            stop=self.stop_predicate,
            on_token=on_token,
        )

    def _on_token(self, epoch: int, text: str) -> None:
        if epoch != self._epoch:
            return
        self.token_streamed.emit(text)

    def _on_generated(self, response: str) -> None:
        if not response:
            self._log("not generating any token")
        self.response_generated.emit(response)
        self.state.end_work()
