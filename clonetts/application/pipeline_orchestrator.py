from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor
from functools import partial
from typing import NamedTuple

from clonetts.application.background_runner import BackgroundTaskRunner, CancellationToken
from clonetts.application.consumer_executor import ConsumerExecutor, Waiter
from clonetts.application.decoder_stage import DecoderStage
from clonetts.application.engine_stage import EngineStage
from clonetts.application.errors import ReferenceVoiceError
from clonetts.application.observers import Broadcast
from clonetts.application.overlap_add import OverlapAddReconstructor
from clonetts.application.phonemizer_stage import PhonemizerStage
from clonetts.application.port.audio_player import AudioPlayer
from clonetts.application.port.path_resolver import PathResolver
from clonetts.application.speech_codes import extract_speech_codes, format_speech_codes
from clonetts.application.stream_assembler import StreamAssembler
from clonetts.application.token_generator_stage import TokenGeneratorStage
from clonetts.domain.vo.audio import HOP_LENGTH, AudioFrame
from clonetts.domain.vo.status import PipelineStatus, StageStatus
from clonetts.domain.vo.utterance import ClonePrompt, ReferenceClone, ReferenceVoice, UtteranceRequest
from clonetts.utils.logger import Logger
from clonetts.utils.text import read_int_list, read_text_file


class _ReferenceFiles(NamedTuple):
    codes: tuple[int, ...]
    transcript: str


class _ReferencePaths(NamedTuple):
    audio_tokens: str
    transcript: str


class PipelineOrchestrator:
    """Sequences phonemizer, token generator and decoder for each utterance.

    Public methods may be called from any thread; they post onto the consumer,
    which owns every piece of mutable state below. ``shutdown`` is the exception:
    it blocks and must run after the consumer has stopped (or on it).
    """

    def __init__(
        self,
        *,
        phonemizer: PhonemizerStage,
        generator: TokenGeneratorStage,
        decoder: DecoderStage,
        player: AudioPlayer,
        consumer: ConsumerExecutor,
        pool: Executor,
        path_resolver: PathResolver,
        reference_audio_tokens_path: str | None,
        reference_transcript_path: str | None,
        chunk_size: int = StreamAssembler.DEFAULT_CHUNK_SIZE,
        overlap: int = 0,
        hop_length: int = HOP_LENGTH,
        logger: Logger | None = None,
    ) -> None:
        self.phonemizer = phonemizer
        self.generator = generator
        self.decoder = decoder
        self.player = player
        self.consumer = consumer
        self.path_resolver = path_resolver
        self.reference_audio_tokens_path = reference_audio_tokens_path
        self.reference_transcript_path = reference_transcript_path
        self.logger = logger

        self.status_changed: Broadcast[PipelineStatus] = Broadcast()
        self.frame_delivered: Broadcast[AudioFrame] = Broadcast()
        self.utterance_finished: Broadcast[UtteranceRequest] = Broadcast()
        self.utterance_aborted: Broadcast[str] = Broadcast()

        self._status = PipelineStatus.IDLE
        self._epoch = 0
        self._waiters: list[Waiter] = []
        self._reference: ReferenceVoice | None = None
        self._reference_transcript = ""
        self._pending_codes: tuple[int, ...] = ()
        self._request: UtteranceRequest | None = None

        self._assembler = StreamAssembler(self._submit_window, chunk_size=chunk_size, overlap=overlap)
        self._reconstructor = OverlapAddReconstructor(chunk_size * hop_length) if overlap > 0 else None
        self._reference_runner: BackgroundTaskRunner[_ReferencePaths, _ReferenceFiles | None] = (
            BackgroundTaskRunner(consumer=consumer, pool=pool, name="Reference", logger=logger)
        )

        for stage in self.stages:
            stage.subscribe_status(partial(self._on_stage_status, stage.name))
        self.phonemizer.response_generated.subscribe(self._on_phonemes)
        self.generator.token_streamed.subscribe(self._on_token)
        self.generator.response_generated.subscribe(self._on_generated)
        self.decoder.frame_decoded.subscribe(self._on_frame)

    @property
    def stages(self) -> tuple[EngineStage, ...]:
        return (self.phonemizer, self.generator, self.decoder)

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def reference(self) -> ReferenceVoice | None:
        return self._reference

    @property
    def current_request(self) -> UtteranceRequest | None:
        return self._request

    def config_errors(self) -> list[str]:
        errors: list[str] = []
        if not self.reference_audio_tokens_path:
            errors.append("reference audio tokens")
        if not self.reference_transcript_path:
            errors.append("reference transcript")
        for stage in self.stages:
            errors.extend(f"{stage.name}: {error}" for error in stage.config_errors())
        return errors

    def initialize(self) -> None:
        self.consumer.post(self._initialize)

    def prompt(self, text: str) -> None:
        self.consumer.post(self._prompt, text)

    def stop(self) -> None:
        self.consumer.post(self._stop)

    def reset(self) -> None:
        self.consumer.post(self._reset)

    def shutdown(self, timeout: float | None = 5.0) -> None:
        self._log("Shutting down")
        self._epoch += 1
        self._cancel_waiters()
        self._reference_runner.stop(timeout)
        for stage in self.stages:
            stage.teardown(timeout)
        self.player.close()

    # Initialization

    def _initialize(self) -> None:
        if self._status is not PipelineStatus.IDLE:
            self._log(f"invalid status for initialize: {self._status.value}")
            return

        errors = self.config_errors()
        if errors:
            for error in errors:
                self._log(f"path not set: {error}")
            return

        self._set_status(PipelineStatus.INITIALIZING)
        for stage in self.stages:
            stage.initialize()

        self._await(self._stages_settled, self._on_stages_loaded)

    def _stages_settled(self) -> bool:
        statuses = [stage.status for stage in self.stages]
        if all(status is StageStatus.READY for status in statuses):
            return True
        return any(status in (StageStatus.INIT, StageStatus.ERROR) for status in statuses)

    def _on_stages_loaded(self) -> None:
        failed = [stage.name for stage in self.stages if stage.status is not StageStatus.READY]
        if failed:
            self._fail(f"failed to load: {', '.join(failed)}")
            return

        self._set_status(PipelineStatus.PHONEMIZING_REFERENCE)
        paths = _ReferencePaths(
            audio_tokens=str(self.reference_audio_tokens_path),
            transcript=str(self.reference_transcript_path),
        )
        self._reference_runner.run_background(
            paths,
            self._read_reference,
            partial(self._on_reference_read, self._epoch),
            failed_result=None,
        )

    def _read_reference(self, paths: _ReferencePaths, token: CancellationToken) -> _ReferenceFiles:
        try:
            codes = read_int_list(self.path_resolver.resolve(paths.audio_tokens))
            token.raise_if_cancelled()
            transcript = read_text_file(self.path_resolver.resolve(paths.transcript))
        except (OSError, ValueError) as e:
            raise ReferenceVoiceError(str(e)) from e
        return _ReferenceFiles(codes=tuple(codes), transcript=transcript)

    def _on_reference_read(self, epoch: int, files: _ReferenceFiles | None) -> None:
        if epoch != self._epoch or self._status is not PipelineStatus.PHONEMIZING_REFERENCE:
            return
        if files is None:
            self._fail("could not read the reference voice")
            return
        if not files.codes or not files.transcript:
            self._fail("reference voice is empty")
            return

        self._log(f"Reference voice: {len(files.codes)} codes")
        self._reference_transcript = files.transcript
        self._pending_codes = files.codes
        if not self.phonemizer.phonemize(files.transcript):
            self._fail("could not phonemize the reference transcript")

    def _on_reference_phonemes(self, phonemes: str) -> None:
        if not phonemes:
            self._fail("reference transcript produced no phonemes")
            return

        codes = self._pending_codes
        self._pending_codes = ()
        self._reference = ReferenceVoice(
            transcript_phonemes=phonemes,
            audio_text=format_speech_codes(codes),
            codes=codes,
        )
        self._log("Reference voice encoded")
        self._await(
            lambda: self.phonemizer.status is not StageStatus.GENERATING,
            lambda: self._set_status(PipelineStatus.READY),
        )

    # Utterance

    def _prompt(self, text: str) -> None:
        if not text or not text.strip():
            self._log("empty prompt")
            return
        if self._status is not PipelineStatus.READY or self._reference is None:
            self._log(f"invalid status for prompt: {self._status.value}")
            return

        self._request = UtteranceRequest(
            text=text,
            clone=ReferenceClone(
                reference_transcript=self._reference_transcript,
                reference_audio_text=self._reference.audio_text,
            ),
        )
        self._assembler.reset()
        if self._reconstructor is not None:
            self._reconstructor.reset()

        self._log(f"Prompt: {text}")
        self._set_status(PipelineStatus.PHONEMIZING_PROMPT)
        if not self.phonemizer.phonemize(text):
            self._abort_utterance("phonemizer rejected the prompt")

    def _on_prompt_phonemes(self, phonemes: str) -> None:
        if not phonemes or self._reference is None:
            self._abort_utterance("prompt produced no phonemes")
            return

        clone = ClonePrompt(
            prompt_phonemes=phonemes,
            transcript_phonemes=self._reference.transcript_phonemes,
            audio_text=self._reference.audio_text,
        )
        self._set_status(PipelineStatus.GENERATING)
        if not self.generator.prompt_with_clone(clone):
            self._abort_utterance("generator rejected the prompt")
            return

        self._await(
            lambda: self.generator.status is not StageStatus.GENERATING,
            self._on_generation_done,
        )

    def _on_generation_done(self) -> None:
        self._set_status(PipelineStatus.DECODING)
        self._await(
            lambda: self.decoder.status is not StageStatus.GENERATING,
            self._on_decoding_done,
        )

    def _on_decoding_done(self) -> None:
        if self._reconstructor is not None:
            self._deliver(self._reconstructor.flush())

        self._set_status(PipelineStatus.PLAYING)
        self._await(lambda: not self.player.is_playing, self._finish_utterance)

    def _finish_utterance(self) -> None:
        request = self._request
        self._request = None
        self._set_status(PipelineStatus.READY)
        self._log("Utterance finished")
        if request is not None:
            self.utterance_finished.emit(request)

    def _abort_utterance(self, reason: str) -> None:
        self._log(reason)
        self._request = None
        self._assembler.reset()
        self._await(
            lambda: all(stage.status is not StageStatus.GENERATING for stage in self.stages),
            partial(self._on_utterance_aborted, reason),
        )

    def _on_utterance_aborted(self, reason: str) -> None:
        self._set_status(PipelineStatus.READY)
        self.utterance_aborted.emit(reason)

    # Stage events

    def _on_phonemes(self, phonemes: str) -> None:
        if self._status is PipelineStatus.PHONEMIZING_REFERENCE:
            self._on_reference_phonemes(phonemes)
        elif self._status is PipelineStatus.PHONEMIZING_PROMPT:
            self._on_prompt_phonemes(phonemes)

    def _on_token(self, text: str) -> None:
        if self._status is not PipelineStatus.GENERATING:
            return
        if self._reconstructor is None:
            self._assembler.push(text)
            return
        # Overlap-add strides count codes, so each window slot holds exactly one.
        for code in extract_speech_codes(text):
            self._assembler.push(format_speech_codes([code]))

    def _on_generated(self, response: str) -> None:
        if self._status is PipelineStatus.GENERATING:
            self._assembler.finish()

    def _submit_window(self, code_text: str) -> None:
        if self.decoder.decode(code_text) is None:
            self._log("decoder rejected a window")

    def _on_frame(self, item: tuple[int, AudioFrame]) -> None:
        if self._status not in (PipelineStatus.GENERATING, PipelineStatus.DECODING):
            return

        index, frame = item
        if self._reconstructor is not None:
            # Empty frames still occupy their stride so later frames stay aligned.
            self._deliver(self._reconstructor.push(frame))
            return

        if frame.size == 0:
            self._log(f"frame {index} is empty")
            return
        self._deliver(frame)

    def _deliver(self, samples: AudioFrame) -> None:
        if samples.size == 0:
            return
        self.frame_delivered.emit(samples)
        self.player.play(samples)

    def _on_stage_status(self, name: str, status: StageStatus) -> None:
        if status is StageStatus.ERROR:
            self._fail(f"{name} stage reported an error")

    # Stop, error, reset

    def _stop(self) -> None:
        if self.generator.status is not StageStatus.GENERATING:
            self._log("not generating; nothing to stop")
            return
        self.generator.stop()

    def _fail(self, reason: str) -> None:
        if self._status is PipelineStatus.ERROR:
            return

        self._log_error(reason)
        self._epoch += 1
        self._cancel_waiters()
        self._reference_runner.cancel()
        for stage in self.stages:
            stage.cancel()
        self._assembler.reset()
        if self._reconstructor is not None:
            self._reconstructor.reset()
        self.player.interrupt()
        self._request = None
        self._set_status(PipelineStatus.ERROR)

    def _reset(self) -> None:
        self._log("Reset")
        self._epoch += 1
        self._cancel_waiters()
        self._reference_runner.stop(5.0)
        self.player.interrupt()
        for stage in self.stages:
            stage.reset()
        self._assembler.reset()
        if self._reconstructor is not None:
            self._reconstructor.reset()
        self._reference = None
        self._reference_transcript = ""
        self._pending_codes = ()
        self._request = None
        self._set_status(PipelineStatus.IDLE)

    # Helpers

    def _await(self, predicate: Callable[[], bool], callback: Callable[[], None]) -> None:
        epoch = self._epoch

        def fire() -> None:
            if epoch == self._epoch:
                callback()

        self._waiters = [waiter for waiter in self._waiters if waiter.active]
        self._waiters.append(self.consumer.when(predicate, fire))

    def _cancel_waiters(self) -> None:
        for waiter in self._waiters:
            waiter.cancel()
        self._waiters.clear()

    def _set_status(self, status: PipelineStatus) -> None:
        if self._status is status:
            return
        self._status = status
        self._log(f"Status: {status.value}")
        self.status_changed.emit(status)

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.log(f"[Pipeline] {message}")

    def _log_error(self, message: str) -> None:
        if self.logger:
            self.logger.error(f"[Pipeline] {message}")
