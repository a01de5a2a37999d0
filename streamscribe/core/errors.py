"""
Exception taxonomy for the streaming controller.

Engine and result errors never escape the controller: they are caught by the
cadence workers and turned into "no output this round". Configuration and
lifecycle errors propagate to the caller.
"""

from typing import Any


class StreamingError(Exception):
    """Base exception for streamscribe errors.

    Attributes:
        context: Arbitrary key-value pairs describing the failure.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class ConfigError(StreamingError, ValueError):
    """A configuration value is missing or out of range."""


class ControllerStateError(StreamingError):
    """The controller was used in a state that does not allow the call."""


class EngineUnavailable(StreamingError):
    """The engine call failed, returned an error marker, or took too long."""


class EmptyOrDegenerateResult(StreamingError):
    """The engine returned nothing usable."""


class HallucinationDetected(StreamingError):
    """A result was flagged as degenerate model output."""

    def __init__(self, reason: str, **context: Any) -> None:
        super().__init__(f"hallucination detected: {reason}", **context)
        self.reason = reason
