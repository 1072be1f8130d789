from __future__ import annotations

from collections.abc import Callable
from typing import Any


class StreamAssembler:
    """Batches streamed generation tokens into decode-sized windows.

    Window ``i`` starts at token ``i * chunk_size`` and spans
    ``chunk_size + overlap`` tokens, so consecutive windows share ``overlap``
    tokens and decoded frames line up for overlap-add with a constant stride.
    With ``overlap == 0`` a window is flushed every ``chunk_size`` tokens and the
    buffer is cleared.
    """

    DEFAULT_CHUNK_SIZE = 480

    def __init__(
        self,
        submit: Callable[[str], Any],
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = 0,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive.")
        if overlap < 0:
            raise ValueError("overlap must not be negative.")

        self._submit = submit
        self.chunk_size = chunk_size
        self.overlap = overlap

        self._buffer: list[str] = []
        # Tokens in the buffer that no submitted window has covered yet.
        self._unsubmitted = 0
        self.submitted_windows = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def push(self, token: str) -> None:
        self._buffer.append(token)
        self._unsubmitted += 1

        window = self.chunk_size + self.overlap
        if len(self._buffer) >= window:
            codes = "".join(self._buffer[:window])
            self._buffer = self._buffer[self.chunk_size :]
            self._unsubmitted = 0
            self._emit(codes)

    def finish(self) -> None:
        """Flush what is left at end of stream; never submits an empty window."""

        if self._unsubmitted > 0:
            codes = "".join(self._buffer)
            self._buffer.clear()
            self._unsubmitted = 0
            self._emit(codes)
        else:
            self._buffer.clear()

    def reset(self) -> None:
        self._buffer.clear()
        self._unsubmitted = 0

    def _emit(self, codes: str) -> None:
        if not codes:
            return
        self.submitted_windows += 1
        self._submit(codes)
