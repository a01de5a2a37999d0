"""
Runtime configuration for a streaming session.
Thread-safe configuration store for tunable parameters.
"""

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from . import config
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamingConfig:
    """
    Settings for one streaming session.
    Passed to StreamingController.start(); changes apply to the next session.
    """

    # Audio
    sample_rate: int = config.SAMPLE_RATE
    max_buffer_seconds: float = config.MAX_BUFFER_SECONDS

    # VAD
    vad_rms_threshold: float = config.VAD_RMS_THRESHOLD
    vad_debounce_seconds: float = config.VAD_DEBOUNCE_SECONDS
    vad_webrtc_aggressiveness: int | None = config.VAD_WEBRTC_AGGRESSIVENESS
    pre_roll_seconds: float = config.PRE_ROLL_SECONDS

    # Fast cadence
    fast_min_chunk_seconds: float = config.FAST_MIN_CHUNK_SECONDS
    fast_min_interval_seconds: float = config.FAST_MIN_INTERVAL_SECONDS
    min_temporary_confidence: float = config.MIN_TEMPORARY_CONFIDENCE

    # Reconciliation cadence
    reconcile_chunk_seconds: float = config.RECONCILE_CHUNK_SECONDS
    reconcile_min_interval_seconds: float = config.RECONCILE_MIN_INTERVAL_SECONDS
    reconcile_max_chunk_seconds: float = config.RECONCILE_MAX_CHUNK_SECONDS
    agreement_n: int = config.AGREEMENT_N

    # Prompt
    prompt_max_chars: int = config.PROMPT_MAX_CHARS

    # Silence / commit deadlines
    temp_silence_seconds: float = config.TEMP_SILENCE_SECONDS
    final_silence_seconds: float = config.FINAL_SILENCE_SECONDS
    silence_commit_min_tokens: int = config.SILENCE_COMMIT_MIN_TOKENS
    force_commit_timeout_seconds: float = config.FORCE_COMMIT_TIMEOUT_SECONDS
    timer_check_interval_seconds: float = config.TIMER_CHECK_INTERVAL_SECONDS

    # Hallucination guard
    hallucination_repetition_threshold: int = config.HALLUCINATION_REPETITION_THRESHOLD
    hallucination_max_tokens: int = config.HALLUCINATION_MAX_TOKENS
    hallucination_rollback_tokens: int = config.HALLUCINATION_ROLLBACK_TOKENS

    # Engine calls
    engine_timeout_seconds: float = config.ENGINE_TIMEOUT_SECONDS
    serialize_engine_calls: bool = config.SERIALIZE_ENGINE_CALLS
    stop_grace_seconds: float = config.STOP_GRACE_SECONDS

    def validate(self) -> "StreamingConfig":
        """Raise ConfigError if any value is out of range; return self."""
        if self.sample_rate <= 0:
            raise ConfigError("sample_rate must be positive", sample_rate=self.sample_rate)
        if self.agreement_n < 2:
            raise ConfigError("agreement_n must be at least 2", agreement_n=self.agreement_n)
        if self.vad_rms_threshold < 0:
            raise ConfigError("vad_rms_threshold must be >= 0")
        if self.vad_webrtc_aggressiveness is not None and not (
            0 <= self.vad_webrtc_aggressiveness <= 3
        ):
            raise ConfigError(
                "vad_webrtc_aggressiveness must be 0..3",
                vad_webrtc_aggressiveness=self.vad_webrtc_aggressiveness,
            )
        if self.final_silence_seconds < self.temp_silence_seconds:
            raise ConfigError("final_silence_seconds must be >= temp_silence_seconds")
        if self.reconcile_max_chunk_seconds < self.reconcile_chunk_seconds:
            raise ConfigError(
                "reconcile_max_chunk_seconds must be >= reconcile_chunk_seconds"
            )
        if self.max_buffer_seconds < self.reconcile_max_chunk_seconds:
            raise ConfigError("max_buffer_seconds must be >= reconcile_max_chunk_seconds")
        if self.prompt_max_chars < 0 or self.hallucination_rollback_tokens < 0:
            raise ConfigError("prompt_max_chars and rollback tokens must be >= 0")
        if self.silence_commit_min_tokens < 1:
            raise ConfigError("silence_commit_min_tokens must be at least 1")
        if self.timer_check_interval_seconds <= 0:
            raise ConfigError("timer_check_interval_seconds must be positive")
        return self

    def with_overrides(self, **kwargs: Any) -> "StreamingConfig":
        """Return a validated copy with the given fields replaced."""
        unknown = set(kwargs) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ConfigError(f"unknown config keys: {sorted(unknown)}")
        return dataclasses.replace(self, **kwargs).validate()


class ConfigStore:
    """
    Thread-safe configuration store with change notifications.
    """

    def __init__(self, initial: StreamingConfig | None = None):
        self._config = (initial or StreamingConfig()).validate()
        self._lock = threading.RLock()
        self._listeners: list[Callable[[StreamingConfig], None]] = []

    def get(self) -> StreamingConfig:
        """Get the current configuration (immutable, safe to share)."""
        with self._lock:
            return self._config

    def update(self, **kwargs: Any) -> StreamingConfig:
        """
        Update configuration values.

        Args:
            **kwargs: StreamingConfig fields to update

        Returns:
            The new configuration
        """
        with self._lock:
            self._config = self._config.with_overrides(**kwargs)
            current = self._config
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(current)
            except Exception:
                logger.warning("Config listener %r failed", listener, exc_info=True)
        return current

    def add_listener(self, callback: Callable[[StreamingConfig], None]) -> None:
        """Add a listener for configuration changes."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[StreamingConfig], None]) -> None:
        """Remove a configuration change listener."""
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)
