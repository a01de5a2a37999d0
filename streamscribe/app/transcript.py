"""
Transcript accumulation for display.

Folds controller events into finished lines, the open line of confirmed
text, and the current temporary tail.
"""

import threading
from datetime import datetime

from ..core.events import Confirmed, Final, Rollback, Temporary, TranscriptEvent


class TranscriptAccumulator:
    """Thread-safe view of the transcript; fed from the event dispatcher."""

    def __init__(self, timestamps: bool = True):
        self.timestamps = timestamps
        self._lines: list[tuple[str, str]] = []  # (timestamp, text)
        self._confirmed: list[str] = []
        self._started: str | None = None
        self._temporary = ""
        self._lock = threading.Lock()

    def __call__(self, event: TranscriptEvent) -> None:
        self.handle(event)

    def handle(self, event: TranscriptEvent) -> None:
        with self._lock:
            if isinstance(event, Temporary):
                self._temporary = event.text
            elif isinstance(event, Confirmed):
                if self._started is None:
                    self._started = datetime.now().strftime("%H:%M:%S")
                self._confirmed.extend(event.text.split())
                self._temporary = ""
            elif isinstance(event, Rollback):
                self._retract(event.token_count)
            elif isinstance(event, Final):
                self._close_line()

    def _retract(self, count: int) -> None:
        # Rolled-back words may span the previous, already closed line.
        while count > 0:
            if not self._confirmed:
                if not self._lines:
                    return
                ts, text = self._lines.pop()
                self._started = ts
                self._confirmed = text.split()
            take = min(count, len(self._confirmed))
            del self._confirmed[len(self._confirmed) - take :]
            count -= take
        self._temporary = ""

    def _close_line(self) -> None:
        if self._confirmed:
            self._lines.append((self._started or "", " ".join(self._confirmed)))
        self._confirmed = []
        self._started = None
        self._temporary = ""

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
            self._confirmed = []
            self._started = None
            self._temporary = ""

    @property
    def temporary(self) -> str:
        with self._lock:
            return self._temporary

    def lines(self) -> list[str]:
        """Finished lines plus the open one (without the temporary tail)."""
        with self._lock:
            lines = [text for _, text in self._lines]
            if self._confirmed:
                lines.append(" ".join(self._confirmed))
            return lines

    def render(self) -> str:
        """Transcript as display text; the temporary tail is shown in brackets."""
        with self._lock:
            rendered = [self._format(ts, text) for ts, text in self._lines]
            open_line = " ".join(self._confirmed)
            if self._temporary:
                open_line = f"{open_line} [{self._temporary}]".strip()
            if open_line:
                rendered.append(self._format(self._started or "", open_line))
            return "\n".join(rendered)

    def _format(self, ts: str, text: str) -> str:
        if self.timestamps and ts:
            return f"[{ts}] {text}"
        return text
