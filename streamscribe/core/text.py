"""
Text normalisation shared by reconciliation, prompting and hallucination checks.
"""

import re

_PUNCTUATION_RE = re.compile(r"[.,!?;:\"'\-()\[\]{}]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    text = _PUNCTUATION_RE.sub("", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def split_words(text: str) -> list[str]:
    """Split raw engine text into whitespace-separated words."""
    return [w for w in _WHITESPACE_RE.split(text.strip()) if w]


def normalized_words(text: str) -> list[str]:
    """Normalised words of ``text``; punctuation-only words disappear."""
    normalized = normalize_text(text)
    return normalized.split(" ") if normalized else []
