"""
Engine performance tracking and per-session counters.
"""

import logging
import threading
from collections import Counter, deque

logger = logging.getLogger(__name__)

RECENT_WINDOW = 10
LOG_EVERY = 5


class PerformanceMonitor:
    """Tracks engine call durations and the real-time factor (processing/audio)."""

    def __init__(self, recent_window: int = RECENT_WINDOW, log_every: int = LOG_EVERY):
        self.log_every = log_every
        self.calls = 0
        self.total_seconds = 0.0
        self._recent: deque[tuple[float, float]] = deque(maxlen=recent_window)
        self._lock = threading.Lock()

    def record(self, cadence: str, processing_seconds: float, audio_seconds: float) -> float:
        """Record one call; returns its real-time factor."""
        rtf = processing_seconds / audio_seconds if audio_seconds > 0 else 0.0
        with self._lock:
            self.calls += 1
            self.total_seconds += processing_seconds
            self._recent.append((processing_seconds, audio_seconds))
            calls = self.calls
            recent = self._recent_rtf()

        if calls % self.log_every == 0:
            logger.info(
                "Engine call #%d (%s): %.0fms, %.2fx RT, recent avg %.2fx RT",
                calls,
                cadence,
                processing_seconds * 1000,
                rtf,
                recent,
            )
            if recent > 1.0:
                logger.warning("Engine slower than real time (%.2fx)", recent)
        return rtf

    def recent_rtf(self) -> float:
        with self._lock:
            return self._recent_rtf()

    def _recent_rtf(self) -> float:
        audio = sum(a for _, a in self._recent)
        if audio <= 0:
            return 0.0
        return sum(p for p, _ in self._recent) / audio

    def stats(self) -> dict[str, float]:
        with self._lock:
            return {
                "engine_calls": self.calls,
                "avg_processing_seconds": self.total_seconds / self.calls if self.calls else 0.0,
                "recent_rtf": self._recent_rtf(),
            }


class SessionStats:
    """Thread-safe event counters for one streaming session."""

    def __init__(self):
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)
