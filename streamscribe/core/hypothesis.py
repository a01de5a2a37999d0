"""
LocalAgreement-N reconciliation over timestamped tokens.

Successive transcriptions of an overlapping, growing audio window are
compared from the start of the unconfirmed region; a token is committed once
N consecutive hypotheses agree on it.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from .text import normalize_text, split_words

logger = logging.getLogger(__name__)

DEDUP_MAX_NGRAM = 5


@dataclass(frozen=True)
class TimestampedToken:
    """A word with stream-relative start/end seconds."""

    start: float
    end: float
    text: str

    @property
    def normalized(self) -> str:
        return normalize_text(self.text)


def tokens_from_text(
    text: str, start_time: float, duration: float
) -> list[TimestampedToken]:
    """
    Split plain text into tokens with interpolated timestamps.

    The engine gives no word timing, so each word gets an equal share of the
    chunk duration starting at ``start_time``.
    """
    words = split_words(text)
    if not words:
        return []
    per_word = duration / len(words)
    return [
        TimestampedToken(
            start=start_time + i * per_word,
            end=start_time + (i + 1) * per_word,
            text=word,
        )
        for i, word in enumerate(words)
    ]


def tokens_from_timestamps(items: Iterable[Any], start_time: float) -> list[TimestampedToken]:
    """
    Convert engine word timestamps (chunk-relative) to stream-relative tokens.

    Accepts TimestampedToken objects, ``(start, end, text)`` tuples, or
    mappings with ``start``/``end`` and ``word`` or ``text`` keys.
    """
    tokens: list[TimestampedToken] = []
    for item in items:
        if isinstance(item, TimestampedToken):
            start, end, text = item.start, item.end, item.text
        elif isinstance(item, dict):
            start, end = item["start"], item["end"]
            text = item.get("word", item.get("text", ""))
        else:
            start, end, text = item
        text = str(text).strip()
        if not text:
            continue
        start = float(start)
        end = max(float(end), start)
        tokens.append(TimestampedToken(start_time + start, start_time + end, text))
    return tokens


def tokens_text(tokens: Sequence[TimestampedToken]) -> str:
    return " ".join(t.text for t in tokens)


class HypothesisBuffer:
    """
    Holds the committed token history and the unconfirmed hypotheses.

    ``pending`` is the most recent hypothesis (the unconfirmed tail from the
    previous round). With ``agreement_n`` > 2 the ``agreement_n - 1`` most
    recent hypotheses are kept and all of them must agree with the new one.
    """

    def __init__(self, agreement_n: int = 2):
        if agreement_n < 2:
            raise ValueError("agreement_n must be at least 2")
        self.agreement_n = agreement_n
        self.committed: list[TimestampedToken] = []
        self.last_committed_time = 0.0
        self._hypotheses: deque[list[TimestampedToken]] = deque(maxlen=agreement_n - 1)

    @property
    def pending(self) -> list[TimestampedToken]:
        return list(self._hypotheses[-1]) if self._hypotheses else []

    @property
    def committed_text(self) -> str:
        return tokens_text(self.committed)

    def reset(self) -> None:
        self.committed.clear()
        self._hypotheses.clear()
        self.last_committed_time = 0.0

    def clear_pending(self) -> None:
        self._hypotheses.clear()

    def insert(self, new_tokens: Sequence[TimestampedToken]) -> list[TimestampedToken]:
        """
        Drop tokens ending at or before the commit time, then the n-gram
        overlap with committed history. A word straddling the commit time is
        kept; if it repeats a committed word the overlap check removes it.

        Returns:
            The remaining new tokens, ready for flush().
        """
        tokens = [t for t in new_tokens if t.end > self.last_committed_time]

        limit = min(DEDUP_MAX_NGRAM, len(self.committed), len(tokens))
        for k in range(1, limit + 1):
            tail = [t.normalized for t in self.committed[-k:]]
            head = [t.normalized for t in tokens[:k]]
            if tail == head:
                logger.debug("Dropping %d-gram overlap: %s", k, " ".join(head))
                tokens = tokens[k:]
                break
        return tokens

    def agree(self, new_tokens: Sequence[TimestampedToken]) -> list[TimestampedToken]:
        """Tokens flush() would commit for ``new_tokens``, without mutating state."""
        if not new_tokens or len(self._hypotheses) < self.agreement_n - 1:
            return []

        agreed: list[TimestampedToken] = []
        for i, token in enumerate(new_tokens):
            word = token.normalized
            if all(i < len(h) and h[i].normalized == word for h in self._hypotheses):
                agreed.append(token)  # latest pass has the better boundary
            else:
                break
        return agreed

    def flush(self, new_tokens: Sequence[TimestampedToken]) -> list[TimestampedToken]:
        """
        Commit the agreed prefix of ``new_tokens`` and keep the rest pending.

        An empty ``new_tokens`` is a no-op. The first round only seeds
        ``pending``: a single observation is not evidence of stability.
        """
        if not new_tokens:
            return []

        agreed = self.agree(new_tokens)
        count = len(agreed)
        logger.debug(
            "Agreement: pending=%s new=%s committed=%d",
            tokens_text(self.pending),
            tokens_text(new_tokens),
            count,
        )

        if agreed:
            self._commit(agreed)
            for i, hypothesis in enumerate(self._hypotheses):
                self._hypotheses[i] = hypothesis[count:]
        self._hypotheses.append(list(new_tokens[count:]))
        return agreed

    def force_commit(self) -> list[TimestampedToken]:
        """Commit all of ``pending`` without agreement."""
        tokens = [t for t in self.pending if t.end > self.last_committed_time]
        self._hypotheses.clear()
        if tokens:
            self._commit(tokens)
        return tokens

    def rollback(self, count: int) -> list[TimestampedToken]:
        """
        Remove up to ``count`` tokens from the end of committed history.
        ``last_committed_time`` is left unchanged so commit time stays monotonic.
        """
        if count <= 0 or not self.committed:
            return []
        removed = self.committed[-count:]
        del self.committed[-count:]
        return removed

    def purge_before(self, offset: float) -> None:
        """Drop hypothesis tokens that ended before the audio window start."""
        for i, hypothesis in enumerate(self._hypotheses):
            self._hypotheses[i] = [t for t in hypothesis if t.end > offset]

    def _commit(self, tokens: Sequence[TimestampedToken]) -> None:
        self.committed.extend(tokens)
        self.last_committed_time = max(self.last_committed_time, tokens[-1].end)
