"""
Microphone input interface using PyAudio.
"""

import logging
from typing import Protocol

import numpy as np
import pyaudio

from ..core import config
from ..core.errors import ControllerStateError

logger = logging.getLogger(__name__)


class SamplesCallback(Protocol):
    """Receives float32 mono blocks in [-1, 1] and their sample rate."""

    def __call__(self, samples: np.ndarray, sample_rate: int) -> None: ...


def pcm16_to_float(data: bytes, channels: int = 1) -> np.ndarray:
    """Decode interleaved int16 PCM to mono float32 in [-1, 1]."""
    pcm = np.frombuffer(data, dtype=np.int16).astype(np.float32) / 32768.0
    if channels > 1:
        pcm = pcm[: len(pcm) - len(pcm) % channels].reshape(-1, channels).mean(axis=1)
    return pcm


class MicrophoneInput:
    """
    Microphone input using PyAudio.

    Captures audio from the default microphone and hands float blocks to
    ``on_audio`` on PyAudio's callback thread.
    """

    def __init__(
        self,
        on_audio: SamplesCallback | None = None,
        sample_rate: int = config.SAMPLE_RATE,
        channels: int = config.CHANNELS,
        chunk_ms: int = 100,
    ):
        self.on_audio = on_audio
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.frames_per_buffer = int(sample_rate * chunk_ms / 1000)

        self._pa: pyaudio.PyAudio | None = None
        self._stream: pyaudio.Stream | None = None

    def _callback(
        self,
        in_data: bytes | None,
        frame_count: int,
        time_info: dict[str, float],
        status_flags: int,
    ) -> tuple[None, int]:
        """PyAudio callback."""
        if status_flags:
            logger.debug("PyAudio status flags: %d", status_flags)
        if in_data is not None and self.on_audio:
            try:
                self.on_audio(pcm16_to_float(in_data, self.channels), self.sample_rate)
            except ControllerStateError as e:
                # Stream and consumer disagree on format; detach
                logger.error(
                    "Audio consumer rejected the stream, detaching: %s %s", e, e.context
                )
                self.on_audio = None
            except Exception:
                # Don't crash the audio thread
                logger.warning("Audio consumer failed", exc_info=True)
        return (None, pyaudio.paContinue)

    def start(self) -> None:
        """Start capturing audio from microphone."""
        if self._stream is not None:
            return  # Already running

        self._pa = pyaudio.PyAudio()
        self._stream = self._pa.open(
            format=pyaudio.paInt16,
            channels=self.channels,
            rate=self.sample_rate,
            input=True,
            frames_per_buffer=self.frames_per_buffer,
            stream_callback=self._callback,
        )
        self._stream.start_stream()
        logger.info("Microphone capture started at %d Hz", self.sample_rate)

    def stop(self) -> None:
        """Stop capturing audio."""
        if self._stream is not None:
            self._stream.stop_stream()
            self._stream.close()
            self._stream = None

        if self._pa is not None:
            self._pa.terminate()
            self._pa = None
        logger.info("Microphone capture stopped")

    def is_active(self) -> bool:
        """Check if the stream is active."""
        return self._stream is not None and self._stream.is_active()

    def __enter__(self) -> "MicrophoneInput":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
