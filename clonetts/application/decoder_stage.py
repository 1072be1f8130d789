from __future__ import annotations

from concurrent.futures import Executor
from functools import partial

import numpy as np

from clonetts.application.background_runner import CancellationToken
from clonetts.application.consumer_executor import ConsumerExecutor
from clonetts.application.engine_stage import EngineStage
from clonetts.application.observers import Broadcast
from clonetts.application.port.codec_decoder import CodecDecoder
from clonetts.application.reorder_buffer import ReorderBuffer
from clonetts.application.speech_codes import extract_speech_codes
from clonetts.domain.vo.audio import AudioFrame, DecodeRequest, empty_frame
from clonetts.domain.vo.status import StageStatus
from clonetts.utils.logger import Logger


class DecoderStage(EngineStage[CodecDecoder]):
    """Codec decoding with pipelined submissions and in-order delivery.

    ``decode`` may be called while earlier decodes are still running. Frames
    are broadcast on ``frame_decoded`` as ``(sequence_index, frame)`` strictly
    in submission order; the stage returns to READY once nothing is pending.
    """

    def __init__(
        self,
        *,
        engine: CodecDecoder,
        consumer: ConsumerExecutor,
        pool: Executor,
        logger: Logger | None = None,
    ) -> None:
        super().__init__(name="Decoder", engine=engine, consumer=consumer, pool=pool, logger=logger)
        self.frame_decoded: Broadcast[tuple[int, AudioFrame]] = Broadcast()
        self._buffer: ReorderBuffer[AudioFrame] = ReorderBuffer()

    @property
    def pending_count(self) -> int:
        return self._buffer.pending_count

    def decode(self, code_text: str) -> int | None:
        if not code_text:
            self._log("wrong codes")
            return None

        if not self.is_loaded:
            self._log("model not loaded")
            return None

        if self.status not in (StageStatus.READY, StageStatus.GENERATING):
            self._log(f"invalid status for decode: {self.status.value}")
            return None

        self.state.begin_work(pipelined=True)
        index = self._buffer.allocate()
        request = DecodeRequest(sequence_index=index, code_text=code_text)
        self._dispatch(
            request,
            self._run_decode,
            partial(self._on_decoded, index),
            failed_result=empty_frame(),
        )
        return index

    def _on_reset(self) -> None:
        self._buffer.clear()

    def fail(self, error: BaseException | str) -> None:
        self._buffer.clear()
        super().fail(error)

    def _run_decode(self, request: DecodeRequest, token: CancellationToken) -> AudioFrame:
        codes = extract_speech_codes(request.code_text)
        if not codes:
            self._log(f"no speech codes in request {request.sequence_index}")
            return empty_frame()

        token.raise_if_cancelled()
        audio = self.engine.decode(codes)
        return np.asarray(audio, dtype=np.float32).reshape(-1)

    def _on_decoded(self, index: int, frame: AudioFrame) -> None:
        self._buffer.record(index, frame)

        for ready_index, ready_frame in self._buffer.drain():
            self.frame_decoded.emit((ready_index, ready_frame))

        if self._buffer.pending_count == 0:
            self.state.end_work()
