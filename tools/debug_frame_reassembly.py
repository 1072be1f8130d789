from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

import numpy as np

# Allow running as a script: `python tools/debug_frame_reassembly.py`
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from clonetts.application.overlap_add import OverlapAddReconstructor  # noqa: E402
from clonetts.application.reorder_buffer import ReorderBuffer  # noqa: E402
from clonetts.domain.vo.audio import SAMPLE_RATE  # noqa: E402


def _make_test_audio(sample_rate: int, duration_s: float) -> np.ndarray:
    """A slow glide from 220 Hz to 660 Hz: seams and dropped frames are easy to hear."""

    n = int(sample_rate * duration_s)
    freq = np.linspace(220.0, 660.0, n)
    phase = 2.0 * np.pi * np.cumsum(freq) / float(sample_rate)
    return (0.3 * np.sin(phase)).astype(np.float32)


def _cut_frames(audio: np.ndarray, stride: int, overlap: int) -> list[np.ndarray]:
    # Each frame covers its own stride plus the next ``overlap`` samples, like a decode window.
    return [audio[start : start + stride + overlap] for start in range(0, len(audio), stride)]


def reassemble(
    frames: list[np.ndarray],
    *,
    stride: int,
    mode: str,
    rng: np.random.Generator,
) -> np.ndarray:
    buffer: ReorderBuffer[np.ndarray] = ReorderBuffer()
    indices = [buffer.allocate() for _ in frames]
    reconstructor = OverlapAddReconstructor(stride) if mode == "overlap-add" else None

    parts: list[np.ndarray] = []
    for position in rng.permutation(len(frames)):
        buffer.record(indices[position], frames[position])
        for _, frame in buffer.drain():
            if reconstructor is None:
                parts.append(frame[:stride])
            else:
                parts.append(reconstructor.push(frame))

    if reconstructor is not None:
        parts.append(reconstructor.flush())
    return np.concatenate(parts) if parts else np.zeros(0, dtype=np.float32)


def main() -> int:
    parser = argparse.ArgumentParser(description="Reassemble shuffled decode frames and compare to the source")
    parser.add_argument("--sample-rate", type=int, default=SAMPLE_RATE)
    parser.add_argument("--duration", type=float, default=2.0)
    parser.add_argument("--stride", type=int, default=4800, help="Samples per frame stride.")
    parser.add_argument("--overlap", type=int, default=960, help="Extra samples shared with the next frame.")
    parser.add_argument("--mode", choices=["concat", "overlap-add"], default="overlap-add")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--play", action="store_true", help="Play the result on the default output device.")
    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)
    audio = _make_test_audio(args.sample_rate, args.duration)
    frames = _cut_frames(audio, args.stride, args.overlap)

    started = time.perf_counter()
    result = reassemble(frames, stride=args.stride, mode=args.mode, rng=rng)
    elapsed_ms = (time.perf_counter() - started) * 1000.0

    length = min(len(audio), len(result))
    error = float(np.max(np.abs(audio[:length] - result[:length]))) if length else 0.0
    print(
        f"mode={args.mode} frames={len(frames)} stride={args.stride} overlap={args.overlap}\n"
        f"source={len(audio)} samples, result={len(result)} samples, "
        f"max abs error={error:.6f}, took {elapsed_ms:.1f} ms"
    )

    if args.play:
        import sounddevice as sd

        sd.play(result, samplerate=args.sample_rate)
        sd.wait()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
