from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from clonetts.domain.vo.audio import AudioFrame, empty_frame


def frame_weights(length: int) -> np.ndarray:
    """Per-sample weights for a frame of ``length`` samples.

    ``t = j / (length + 1)`` for ``j = 1..length`` keeps every weight strictly
    positive, so a sample covered by a single frame always normalizes back to
    itself.
    """

    t = np.arange(1, length + 1, dtype=np.float64) / (length + 1)
    return np.abs(0.5 - (t - 0.5))


def overlap_add(frames: Sequence[AudioFrame], stride: int) -> AudioFrame:
    """Merge frames placed ``stride`` samples apart into one waveform.

    Overlapping samples are the weighted average of their contributions;
    samples covered by one frame are copied unchanged; samples covered by none
    are silence.
    """

    if stride <= 0:
        raise ValueError("stride must be positive.")

    reconstructor = OverlapAddReconstructor(stride)
    parts = [reconstructor.push(frame) for frame in frames]
    parts.append(reconstructor.flush())
    return np.concatenate(parts) if parts else empty_frame()


class OverlapAddReconstructor:
    """Incremental overlap-add for frames arriving in order.

    Frame ``i`` starts at ``stride * i``. After frame ``i`` is pushed, every
    sample before ``stride * (i + 1)`` is final (no later frame reaches it), so
    ``push`` returns exactly those samples and ``flush`` returns the tail.
    """

    def __init__(self, stride: int) -> None:
        if stride <= 0:
            raise ValueError("stride must be positive.")
        self.stride = stride
        self.reset()

    @property
    def frames_pushed(self) -> int:
        return self._count

    def reset(self) -> None:
        self._count = 0
        # Absolute sample index of the first unreleased sample.
        self._base = 0
        # Absolute end of the furthest frame seen so far.
        self._extent = 0
        self._weighted = np.zeros(0, dtype=np.float64)
        self._weight_sum = np.zeros(0, dtype=np.float64)
        self._raw = np.zeros(0, dtype=np.float64)
        self._coverage = np.zeros(0, dtype=np.int32)

    def push(self, frame: AudioFrame) -> AudioFrame:
        samples = np.asarray(frame, dtype=np.float64).reshape(-1)
        offset = self.stride * self._count
        self._count += 1

        length = samples.shape[0]
        if length > 0:
            end = offset + length
            self._grow(end)
            start = offset - self._base
            stop = start + length
            weights = frame_weights(length)
            self._weighted[start:stop] += weights * samples
            self._weight_sum[start:stop] += weights
            self._raw[start:stop] += samples
            self._coverage[start:stop] += 1
            self._extent = max(self._extent, end)

        return self._release(min(self.stride * self._count, self._extent))

    def flush(self) -> AudioFrame:
        tail = self._release(self._extent)
        self.reset()
        return tail

    def _grow(self, end: int) -> None:
        missing = (end - self._base) - self._weighted.shape[0]
        if missing <= 0:
            return
        self._weighted = np.concatenate([self._weighted, np.zeros(missing, dtype=np.float64)])
        self._weight_sum = np.concatenate([self._weight_sum, np.zeros(missing, dtype=np.float64)])
        self._raw = np.concatenate([self._raw, np.zeros(missing, dtype=np.float64)])
        self._coverage = np.concatenate([self._coverage, np.zeros(missing, dtype=np.int32)])

    def _release(self, boundary: int) -> AudioFrame:
        count = boundary - self._base
        if count <= 0:
            return empty_frame()

        self._grow(boundary)
        weighted = self._weighted[:count]
        weight_sum = self._weight_sum[:count]

        out = np.zeros(count, dtype=np.float64)
        np.divide(weighted, weight_sum, out=out, where=weight_sum > 0)
        single = self._coverage[:count] == 1
        out[single] = self._raw[:count][single]

        self._weighted = self._weighted[count:]
        self._weight_sum = self._weight_sum[count:]
        self._raw = self._raw[count:]
        self._coverage = self._coverage[count:]
        self._base = boundary
        return out.astype(np.float32)
