from __future__ import annotations

from dataclasses import dataclass
from queue import Empty, Queue
from threading import Event, Lock, Thread

import numpy as np
import sounddevice as sd

from clonetts.domain.vo.audio import SAMPLE_RATE
from clonetts.utils.logger import Logger


@dataclass(frozen=True)
class _PlaybackRequest:
    audio: np.ndarray
    generation: int


class Speaker:
    """Queued, non-blocking playback on the default output device.

    ``play`` returns immediately; ``is_playing`` stays true until every queued
    frame has been written (or dropped by ``interrupt``).
    """

    def __init__(
        self,
        *,
        sample_rate: int = SAMPLE_RATE,
        prime_silence_ms: int = 200,
        chunk_size: int = 1024,
        logger: Logger | None = None,
    ):
        self.sample_rate = sample_rate
        self.prime_silence_ms = prime_silence_ms
        self.chunk_size = chunk_size
        self._logger = logger

        self._queue: Queue[_PlaybackRequest | None] = Queue()
        self._stream_lock = Lock()
        self._stream: sd.OutputStream | None = None
        self._stream_device: int | None = None

        self._state_lock = Lock()
        self._pending = 0
        # Requests queued before the latest interrupt are skipped.
        self._generation = 0

        self._worker_thread: Thread | None = None
        self._shutdown_event = Event()

    @property
    def is_playing(self) -> bool:
        with self._state_lock:
            return self._pending > 0

    def play(self, audio: np.ndarray) -> None:
        audio_float = np.asarray(audio, dtype=np.float32).reshape(-1, 1)
        if audio_float.size == 0 or self._shutdown_event.is_set():
            return

        self._ensure_worker_started()

        with self._state_lock:
            self._pending += 1
            generation = self._generation
        self._queue.put(_PlaybackRequest(audio=audio_float, generation=generation))

    def interrupt(self) -> None:
        """Drop queued audio and cut the current frame short (best-effort)."""
        with self._state_lock:
            self._generation += 1

        while True:
            try:
                request = self._queue.get_nowait()
            except Empty:
                break
            if request is not None:
                self._done()

    def close(self) -> None:
        """Stop background thread and close audio stream."""
        self._shutdown_event.set()
        self.interrupt()

        # Unblock worker if it's waiting for a request.
        self._queue.put(None)

        if self._worker_thread is not None:
            self._worker_thread.join(timeout=1.0)
            self._worker_thread = None

        with self._stream_lock:
            if self._stream is not None:
                try:
                    self._stream.close()
                finally:
                    self._stream = None
                    self._stream_device = None

    def _ensure_worker_started(self) -> None:
        if self._worker_thread is not None:
            return

        self._worker_thread = Thread(target=self._worker_loop, name="clonetts-speaker", daemon=True)
        self._worker_thread.start()

    def _default_output_device(self) -> int | None:
        device = sd.default.device
        if isinstance(device, (list, tuple)) and len(device) >= 2:
            out_dev = device[1]
            return out_dev if isinstance(out_dev, int) and out_dev >= 0 else None
        return None

    def _ensure_stream_ready(self) -> None:
        """Ensure OutputStream is open; reopen if default device changed."""

        desired_device = self._default_output_device()

        with self._stream_lock:
            if self._stream is not None and self._stream_device == desired_device:
                return

            if self._stream is not None:
                try:
                    self._stream.close()
                finally:
                    self._stream = None
                    self._stream_device = None

            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=desired_device,
            )
            self._stream.start()
            self._stream_device = desired_device

            # Prime the device/mixer path with a short silence to avoid
            # startup clicks/pops on some environments.
            prime_frames = int(self.sample_rate * (self.prime_silence_ms / 1000.0))
            if prime_frames > 0:
                silence = np.zeros((prime_frames, 1), dtype=np.float32)
                try:
                    self._stream.write(silence)
                except (sd.PortAudioError, OSError, RuntimeError, ValueError):
                    # If priming fails, continue; playback may still work.
                    pass

    def _is_current(self, generation: int) -> bool:
        with self._state_lock:
            return generation == self._generation

    def _write_audio(self, request: _PlaybackRequest) -> None:
        audio = request.audio
        for i in range(0, len(audio), self.chunk_size):
            if self._shutdown_event.is_set() or not self._is_current(request.generation):
                break

            chunk = audio[i : i + self.chunk_size]
            try:
                self._ensure_stream_ready()
                with self._stream_lock:
                    if self._stream is None:
                        break
                    self._stream.write(chunk)
            except (sd.PortAudioError, OSError, RuntimeError, ValueError):
                # If the stream becomes invalid (device change, etc.), attempt
                # to reopen once and retry this chunk.
                try:
                    self._ensure_stream_ready()
                    with self._stream_lock:
                        assert self._stream is not None
                        self._stream.write(chunk)
                except (sd.PortAudioError, OSError, RuntimeError, ValueError) as e:
                    self._log(f"[Speaker] Playback error: {e}")
                    break

    def _worker_loop(self) -> None:
        while not self._shutdown_event.is_set():
            request = self._queue.get()
            if request is None:
                continue

            try:
                if self._is_current(request.generation):
                    self._write_audio(request)
            finally:
                self._done()

    def _done(self) -> None:
        with self._state_lock:
            self._pending = max(0, self._pending - 1)

    def _log(self, message: str) -> None:
        if self._logger:
            self._logger.log(message)
