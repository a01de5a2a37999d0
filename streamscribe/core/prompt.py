"""
Context prompt construction from committed history.
"""

import logging
from collections import Counter
from typing import Sequence

from . import config
from .hallucination import HallucinationGuard
from .hypothesis import TimestampedToken
from .text import normalized_words

logger = logging.getLogger(__name__)


class PromptBuilder:
    """
    Builds a bounded trailing-context prompt for the reconciliation cadence.

    A prompt that looks degenerate is replaced by an empty prompt: an engine
    primed with hallucinated text tends to continue it.
    """

    def __init__(
        self,
        max_chars: int = config.PROMPT_MAX_CHARS,
        guard: HallucinationGuard | None = None,
    ):
        self.max_chars = max_chars
        self.guard = guard or HallucinationGuard()

    def build(self, committed: Sequence[TimestampedToken]) -> str:
        if self.max_chars <= 0 or not committed:
            return ""

        # Walk back only as far as the budget needs.
        words: list[str] = []
        length = -1
        for token in reversed(committed):
            words.append(token.text)
            length += len(token.text) + 1
            if length >= self.max_chars:
                break
        prompt = " ".join(reversed(words))

        cut = len(prompt) - self.max_chars
        if cut > 0:
            mid_word = prompt[cut - 1] != " "
            prompt = prompt[cut:]
            # drop the partial word left by the cut
            if mid_word and " " in prompt:
                prompt = prompt.split(" ", 1)[1]
            prompt = prompt.strip()

        if self.is_suspicious(prompt):
            logger.warning("Suspicious prompt discarded: %r", prompt[:60])
            return ""
        return prompt

    def is_suspicious(self, prompt: str) -> bool:
        words = normalized_words(prompt)
        if len(words) >= 2:
            _, top = Counter(words).most_common(1)[0]
            if top * 2 > len(words):
                return True
        return self.guard.screen(prompt) is not None
