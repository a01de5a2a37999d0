"""
Tests for transcript accumulation from controller events.
"""

from streamscribe.app.transcript import TranscriptAccumulator
from streamscribe.core.events import Confirmed, Final, Rollback, Temporary


def feed(acc, *events):
    for event in events:
        acc(event)


def test_confirmed_and_temporary_tail():
    acc = TranscriptAccumulator(timestamps=False)
    feed(acc, Confirmed("hello there"), Temporary("how are", 0.7))
    assert acc.render() == "hello there [how are]"

    feed(acc, Confirmed("how are you"))
    assert acc.render() == "hello there how are you"
    assert acc.temporary == ""


def test_final_closes_line():
    acc = TranscriptAccumulator(timestamps=False)
    feed(acc, Confirmed("first line"), Final(), Confirmed("second"))
    assert acc.lines() == ["first line", "second"]
    assert acc.render() == "first line\nsecond"


def test_final_without_text_adds_no_line():
    acc = TranscriptAccumulator(timestamps=False)
    feed(acc, Final(), Final())
    assert acc.lines() == []


def test_rollback_retracts_words():
    acc = TranscriptAccumulator(timestamps=False)
    feed(acc, Confirmed("one two three four"), Rollback("three four", 2))
    assert acc.render() == "one two"


def test_rollback_reopens_previous_line():
    acc = TranscriptAccumulator(timestamps=False)
    feed(acc, Confirmed("a b c"), Final(), Confirmed("d"), Rollback("b c d", 3))
    assert acc.lines() == ["a"]


def test_timestamps_prefix():
    acc = TranscriptAccumulator()
    feed(acc, Confirmed("stamped"))
    assert acc.render().startswith("[")
    assert acc.render().endswith("] stamped")
