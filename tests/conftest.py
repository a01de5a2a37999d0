"""
Shared fixtures: a manual clock, a scripted engine and synthetic audio.
"""

import threading

import numpy as np
import pytest

from streamscribe.core.hypothesis import TimestampedToken
from streamscribe.core.runtime_config import StreamingConfig

SAMPLE_RATE = 16000


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class ScriptedEngine:
    """
    Returns queued outputs in order, then ``default``.

    An output may be a callable taking the number of audio seconds, so a
    result can follow the growing window.
    """

    def __init__(self, outputs=(), default=""):
        self.outputs = list(outputs)
        self.default = default
        self.calls: list[tuple[float, str | None]] = []
        self._lock = threading.Lock()

    def transcribe(self, samples, prompt=None):
        seconds = len(samples) / SAMPLE_RATE
        with self._lock:
            self.calls.append((seconds, prompt))
            output = self.outputs.pop(0) if self.outputs else self.default
        if isinstance(output, Exception):
            raise output
        if callable(output):
            return output(seconds)
        return output


class GatedEngine(ScriptedEngine):
    """
    ScriptedEngine whose calls block until ``release`` is set.

    Tracks how many calls have entered and the peak number running at once.
    """

    def __init__(self, outputs=(), default=""):
        super().__init__(outputs, default)
        self.release = threading.Event()
        self.entered = 0
        self.active = 0
        self.max_active = 0
        self._entered_cond = threading.Condition()

    def transcribe(self, samples, prompt=None):
        with self._entered_cond:
            self.entered += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self._entered_cond.notify_all()
        try:
            if not self.release.wait(5.0):
                raise TimeoutError("engine call never released")
            return super().transcribe(samples, prompt)
        finally:
            with self._entered_cond:
                self.active -= 1

    def wait_entered(self, count: int, timeout: float = 5.0) -> bool:
        with self._entered_cond:
            return self._entered_cond.wait_for(lambda: self.entered >= count, timeout)


def voice(seconds: float = 1.0, amplitude: float = 0.5, freq: float = 220.0) -> np.ndarray:
    t = np.arange(int(seconds * SAMPLE_RATE)) / SAMPLE_RATE
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(seconds: float = 1.0) -> np.ndarray:
    return np.zeros(int(seconds * SAMPLE_RATE), dtype=np.float32)


def words_at(text: str, start: float, end: float) -> list[tuple[float, float, str]]:
    """Word timestamps spread evenly over [start, end)."""
    words = text.split()
    step = (end - start) / len(words)
    return [(start + i * step, start + (i + 1) * step, w) for i, w in enumerate(words)]


def tokens(text: str, start: float = 0.0, step: float = 0.5) -> list[TimestampedToken]:
    return [
        TimestampedToken(start + i * step, start + (i + 1) * step, w)
        for i, w in enumerate(text.split())
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_config():
    """Reconciliation every second of audio; fast cadence effectively off."""
    return StreamingConfig(
        max_buffer_seconds=60.0,
        reconcile_max_chunk_seconds=60.0,
        reconcile_chunk_seconds=1.0,
        reconcile_min_interval_seconds=1.0,
        fast_min_chunk_seconds=1000.0,
        stop_grace_seconds=1.0,
    )
