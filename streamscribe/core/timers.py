"""
Silence deadlines measured from the last detected voice activity.
"""

from dataclasses import dataclass

from . import config


@dataclass(frozen=True)
class TimerFires:
    temp: bool = False
    final: bool = False

    def __bool__(self) -> bool:
        return self.temp or self.final


class SilenceTimers:
    """
    Two independent deadlines: temporary-result flush and final commit.

    Each deadline fires at most once per silence period; activity re-arms
    both.
    """

    def __init__(
        self,
        temp_seconds: float = config.TEMP_SILENCE_SECONDS,
        final_seconds: float = config.FINAL_SILENCE_SECONDS,
    ):
        self.temp_seconds = temp_seconds
        self.final_seconds = final_seconds
        self._temp_fired = False
        self._final_fired = False

    def rearm(self) -> None:
        self._temp_fired = False
        self._final_fired = False

    def poll(self, silence_seconds: float) -> TimerFires:
        """Return which deadlines newly expired at ``silence_seconds`` of silence."""
        temp = not self._temp_fired and silence_seconds >= self.temp_seconds
        final = not self._final_fired and silence_seconds >= self.final_seconds
        self._temp_fired |= temp
        self._final_fired |= final
        return TimerFires(temp=temp, final=final)
