"""
Bounded, time-ordered audio sample buffer.

Times are stream-relative seconds: the first sample ever appended is t=0 and
``time_offset`` counts the seconds already discarded from the front.
The buffer is not locked; its owner (the controller) serialises access.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class AudioSnapshot:
    """Immutable copy of buffered audio handed to an engine call."""

    samples: np.ndarray
    start_time: float
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


def as_float_samples(samples: Sequence[float] | np.ndarray) -> np.ndarray:
    """
    Convert a block to mono float32 in [-1, 1]; int16 input is rescaled.
    NaN and inf samples become 0.0 so the block length is unchanged.
    """
    arr = np.asarray(samples)
    if arr.dtype == np.int16:
        arr = arr.astype(np.float32) / 32768.0
    else:
        arr = arr.astype(np.float32, copy=False)
    arr = arr.reshape(-1)
    if not np.all(np.isfinite(arr)):
        arr = np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)
    return arr


class SampleBuffer:
    """
    Accumulates audio blocks and discards from the front past ``max_seconds``.

    Blocks are kept as a list and only concatenated on snapshot, so append is
    O(1) amortized on the capture path.
    """

    def __init__(self, sample_rate: int, max_seconds: float):
        self.sample_rate = sample_rate
        self.max_samples = int(max_seconds * sample_rate)
        self._blocks: list[np.ndarray] = []
        self._length = 0
        self._discarded = 0  # samples dropped from the front, ever

    @property
    def time_offset(self) -> float:
        return self._discarded / self.sample_rate

    @property
    def end_time(self) -> float:
        return (self._discarded + self._length) / self.sample_rate

    def __len__(self) -> int:
        return self._length

    def duration_seconds(self) -> float:
        return self._length / self.sample_rate

    def append(self, samples: Sequence[float] | np.ndarray) -> float:
        """
        Append a block of samples.

        Returns:
            Seconds discarded from the front to stay within max_seconds
            (0.0 when nothing was discarded).
        """
        block = as_float_samples(samples)
        if block.size == 0:
            return 0.0
        self._blocks.append(block)
        self._length += block.size

        excess = self._length - self.max_samples
        if excess <= 0:
            return 0.0
        return self._discard(excess)

    def trim_to(self, time: float) -> float:
        """Discard audio before stream time ``time``; returns seconds discarded."""
        count = int(round((time - self.time_offset) * self.sample_rate))
        if count <= 0:
            return 0.0
        return self._discard(min(count, self._length))

    def clear(self) -> float:
        """Discard everything, advancing the offset to the end time."""
        return self._discard(self._length)

    def _discard(self, count: int) -> float:
        remaining = count
        while remaining > 0 and self._blocks:
            head = self._blocks[0]
            if head.size <= remaining:
                self._blocks.pop(0)
                remaining -= head.size
            else:
                self._blocks[0] = head[remaining:]
                remaining = 0
        dropped = count - remaining
        self._length -= dropped
        self._discarded += dropped
        return dropped / self.sample_rate

    def snapshot(
        self, start_time: float | None = None, max_seconds: float | None = None
    ) -> AudioSnapshot:
        """
        Copy of the buffered audio.

        Args:
            start_time: Skip audio before this stream time (clamped to the buffer).
            max_seconds: Keep at most this many trailing seconds.
        """
        start = 0
        if start_time is not None:
            start = int(round((start_time - self.time_offset) * self.sample_rate))
            start = min(max(start, 0), self._length)
        if max_seconds is not None:
            start = max(start, self._length - int(max_seconds * self.sample_rate))

        if self._blocks:
            if len(self._blocks) > 1:
                self._blocks = [np.concatenate(self._blocks)]
            samples = self._blocks[0][start:].copy()
        else:
            samples = np.zeros(0, dtype=np.float32)
        return AudioSnapshot(
            samples=samples,
            start_time=(self._discarded + start) / self.sample_rate,
            sample_rate=self.sample_rate,
        )
