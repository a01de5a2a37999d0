"""
Voice Activity Detection (VAD) gate.
Classifies audio blocks as voice or silence with debouncing.
This module is independent of any transport or UI.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator

import numpy as np

from . import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityReading:
    """Result of classifying one audio block."""

    active: bool  # debounced state after this block
    rms: float
    raw_active: bool  # this block alone, before debouncing


def rms_energy(samples: np.ndarray) -> float:
    """Root-mean-square energy of a float block."""
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def frame_generator(
    frame_ms: int, samples: np.ndarray, sample_rate: int
) -> Iterator[bytes]:
    """Yield int16 PCM frames (bytes) of length frame_ms from float samples."""
    pcm = (np.clip(samples, -1.0, 1.0) * 32767).astype(np.int16).tobytes()
    bytes_per_sample = 2  # int16
    frame_size = int(sample_rate * (frame_ms / 1000.0)) * bytes_per_sample
    offset = 0
    total = len(pcm)
    while offset + frame_size <= total:
        yield pcm[offset : offset + frame_size]
        offset += frame_size


class ActivityGate:
    """
    Energy-based voice/silence classifier with hysteresis.

    A block is voice when its RMS exceeds ``rms_threshold`` (and, when
    ``webrtc_aggressiveness`` is set, most of its frames are speech according
    to webrtcvad). The debounced state only flips after the opposite
    classification has persisted for ``debounce_seconds`` of audio; a
    candidate flip that reverts earlier is discarded.

    Debouncing is measured in audio time, while ``time_since_last_activity``
    is measured on the injected clock so silence deadlines keep running even
    when no audio arrives.
    """

    def __init__(
        self,
        sample_rate: int = config.SAMPLE_RATE,
        rms_threshold: float = config.VAD_RMS_THRESHOLD,
        debounce_seconds: float = config.VAD_DEBOUNCE_SECONDS,
        webrtc_aggressiveness: int | None = config.VAD_WEBRTC_AGGRESSIVENESS,
        frame_ms: int = config.VAD_FRAME_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sample_rate = sample_rate
        self.rms_threshold = rms_threshold
        self.debounce_seconds = debounce_seconds
        self.frame_ms = frame_ms
        self._clock = clock

        self._vad = None
        if webrtc_aggressiveness is not None:
            import webrtcvad

            self._vad = webrtcvad.Vad(int(webrtc_aggressiveness))

        # State
        self._active = False
        self._candidate_seconds = 0.0
        self._last_activity = clock()

    @property
    def active(self) -> bool:
        return self._active

    def reset(self) -> None:
        """Reset to silence and restart the inactivity clock."""
        self._active = False
        self._candidate_seconds = 0.0
        self._last_activity = self._clock()

    def classify(self, samples: np.ndarray) -> ActivityReading:
        """Classify one block and advance the debounce state."""
        rms = rms_energy(samples)
        raw = rms > self.rms_threshold
        if raw and self._vad is not None:
            raw = self._webrtc_speech(samples)

        block_seconds = samples.size / self.sample_rate
        if raw != self._active:
            self._candidate_seconds += block_seconds
            if self._candidate_seconds >= self.debounce_seconds:
                self._active = raw
                self._candidate_seconds = 0.0
                logger.debug(
                    "VAD state -> %s (rms=%.4f)", "voice" if raw else "silence", rms
                )
        else:
            self._candidate_seconds = 0.0

        if self._active:
            self._last_activity = self._clock()

        return ActivityReading(active=self._active, rms=rms, raw_active=raw)

    def time_since_last_activity(self) -> float:
        """Seconds on the clock since the gate last reported voice."""
        return max(0.0, self._clock() - self._last_activity)

    def _webrtc_speech(self, samples: np.ndarray) -> bool:
        frames = list(frame_generator(self.frame_ms, samples, self.sample_rate))
        if not frames:
            return True  # too short to judge, trust the energy gate
        speech = 0
        for frame in frames:
            try:
                if self._vad.is_speech(frame, self.sample_rate):
                    speech += 1
            except Exception:
                logger.debug("webrtcvad rejected frame", exc_info=True)
        return speech * 2 > len(frames)
