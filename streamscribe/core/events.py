"""
Transcript events delivered to the presentation collaborator.
"""

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class Temporary:
    """Revisable text for the unconfirmed tail; may be superseded and vanish."""

    text: str
    confidence: float
    kind: str = field(default="temporary", init=False)


@dataclass(frozen=True)
class Confirmed:
    """Text appended to the transcript; only revised by a Rollback."""

    text: str
    kind: str = field(default="confirmed", init=False)


@dataclass(frozen=True)
class Final:
    """End of an utterance; start a new line/segment."""

    kind: str = field(default="final", init=False)


@dataclass(frozen=True)
class Rollback:
    """The last ``token_count`` confirmed words were retracted as hallucinated."""

    text: str
    token_count: int
    kind: str = field(default="rollback", init=False)


TranscriptEvent = Union[Temporary, Confirmed, Final, Rollback]
