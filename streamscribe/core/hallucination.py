"""
Hallucination screening for engine output.

Speech models produce plausible but spurious text on silence or noise,
typically as repetition. Each heuristic below is an independent trigger.
"""

import math
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from . import config
from .text import normalize_text, normalized_words

# Reasons reported in GuardVerdict.reason
EXACT_REPEAT = "exact_repeat"
TOO_MANY_TOKENS = "too_many_tokens"
WORD_RATE = "word_rate"
REPEATED_PATTERN = "repeated_pattern"
DOMINANT_TOKEN = "dominant_token"
DENYLIST = "denylist"

PATTERN_REPEATS = 3
DOMINANT_MIN_COUNT = 5
WORD_RATE_MIN_TOKENS = 6


@dataclass(frozen=True)
class GuardVerdict:
    is_hallucination: bool
    repetition_count: int
    reason: str | None = None


def has_repeated_pattern(words: list[str], repeats: int = PATTERN_REPEATS) -> bool:
    """True if a contiguous 2- or 3-word pattern occurs ``repeats`` times in a row."""
    for size in (2, 3):
        for i in range(len(words) - size * repeats + 1):
            pattern = words[i : i + size]
            count = 1
            j = i + size
            while words[j : j + size] == pattern:
                count += 1
                j += size
            if count >= repeats:
                return True
    return False


class HallucinationGuard:
    """
    Statistical screen over a transcription result.

    ``screen`` runs the stateless heuristics; ``check`` adds the
    consecutive-repeat counter, which the caller carries between calls.
    """

    def __init__(
        self,
        repetition_threshold: int = config.HALLUCINATION_REPETITION_THRESHOLD,
        max_tokens: int = config.HALLUCINATION_MAX_TOKENS,
        max_words_per_second: float = config.HALLUCINATION_MAX_WORDS_PER_SECOND,
        denylist: Iterable[str] = config.HALLUCINATION_DENYLIST,
    ):
        self.repetition_threshold = repetition_threshold
        self.max_tokens = max_tokens
        self.max_words_per_second = max_words_per_second
        self.denylist = [p for p in (normalize_text(d) for d in denylist) if p]

    def screen(self, text: str, audio_duration: float | None = None) -> str | None:
        """Return the reason ``text`` looks degenerate, or None."""
        words = normalized_words(text)
        if not words:
            return None

        if len(words) > self.max_tokens:
            return TOO_MANY_TOKENS
        if (
            audio_duration
            and len(words) >= WORD_RATE_MIN_TOKENS
            and len(words) / audio_duration > self.max_words_per_second
        ):
            return WORD_RATE
        if has_repeated_pattern(words):
            return REPEATED_PATTERN

        _, top = Counter(words).most_common(1)[0]
        if top > math.ceil(len(words) / 3) and top > DOMINANT_MIN_COUNT:
            return DOMINANT_TOKEN

        padded = f" {' '.join(words)} "
        if any(f" {phrase} " in padded for phrase in self.denylist):
            return DENYLIST
        return None

    def check(
        self,
        text: str,
        previous_text: str | None,
        repetition_count: int,
        audio_duration: float | None = None,
    ) -> GuardVerdict:
        """
        Screen ``text`` and update the consecutive-repeat counter.

        Args:
            text: Result to check.
            previous_text: Last accepted result (None or "" if none).
            repetition_count: Counter returned by the previous check.
            audio_duration: Seconds of audio behind ``text``, if known.
        """
        normalized = normalize_text(text)
        if previous_text and normalized and normalized == normalize_text(previous_text):
            count = repetition_count + 1
        else:
            count = 1

        if count >= self.repetition_threshold:
            return GuardVerdict(True, 0, EXACT_REPEAT)

        reason = self.screen(text, audio_duration)
        if reason is not None:
            return GuardVerdict(True, 0, reason)
        return GuardVerdict(False, count, None)
