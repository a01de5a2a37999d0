"""
End-to-end tests for the streaming controller with a scripted engine.

Audio is fed in one-second blocks while a manual clock advances by the same
amount, so each block triggers at most one reconciliation round.
"""

import pytest

from conftest import SAMPLE_RATE, GatedEngine, ScriptedEngine, silence, voice, words_at
from streamscribe.core.controller import (
    ControllerState,
    StreamingController,
    estimate_confidence,
)
from streamscribe.core.errors import ControllerStateError
from streamscribe.core.events import Confirmed, Final, Rollback, Temporary

PHRASE = "alpha bravo charlie delta echo foxtrot"


@pytest.fixture
def events():
    return []


def make_controller(engine, clock, events, config):
    ctrl = StreamingController(engine, on_event=events.append, clock=clock)
    ctrl.start(config)
    return ctrl


def feed(ctrl, clock, block):
    clock.advance(len(block) / SAMPLE_RATE)
    ctrl.append_audio(block, SAMPLE_RATE)
    assert ctrl.wait_idle(5.0)


def confirmed_texts(events):
    return [e.text for e in events if isinstance(e, Confirmed)]


class TestLifecycle:
    def test_audio_before_start_dropped(self, clock):
        ctrl = StreamingController(ScriptedEngine(), clock=clock)
        ctrl.append_audio(voice(1.0))
        assert ctrl.state is ControllerState.IDLE
        assert len(ctrl.sample_buffer) == 0

    def test_double_start_rejected(self, clock, events, test_config):
        ctrl = make_controller(ScriptedEngine(), clock, events, test_config)
        try:
            with pytest.raises(ControllerStateError):
                ctrl.start(test_config)
        finally:
            ctrl.stop()
        assert ctrl.state is ControllerState.IDLE

    def test_sample_rate_mismatch(self, clock, events, test_config):
        ctrl = make_controller(ScriptedEngine(), clock, events, test_config)
        try:
            with pytest.raises(ControllerStateError):
                ctrl.append_audio(voice(0.5), 8000)
        finally:
            ctrl.stop()

    def test_restart_after_stop(self, clock, events, test_config):
        ctrl = make_controller(ScriptedEngine(), clock, events, test_config)
        ctrl.stop()
        ctrl.start(test_config)
        assert ctrl.state is ControllerState.RUNNING
        ctrl.stop()

    def test_status_line(self, clock, events, test_config):
        ctrl = make_controller(ScriptedEngine(), clock, events, test_config)
        try:
            assert ctrl.status().startswith("Buffer: 0.0s, Silence:")
            assert ctrl.status().endswith("State: running")
        finally:
            ctrl.stop()


class TestReconciliation:
    def test_agreed_prefix_confirmed(self, clock, events, test_config):
        engine = ScriptedEngine(
            [
                words_at("hello world", 0.0, 1.0),
                words_at("hello world how are", 0.0, 2.0),
            ]
        )
        ctrl = make_controller(engine, clock, events, test_config)

        feed(ctrl, clock, voice(1.0))
        assert events == []

        feed(ctrl, clock, voice(1.0))
        assert events == [Confirmed("hello world")]
        assert [t.text for t in ctrl.hypotheses.pending] == ["how", "are"]

        ctrl.stop()
        assert events == [Confirmed("hello world"), Confirmed("how are"), Final()]
        assert ctrl.state is ControllerState.IDLE

    def test_plain_text_engine(self, clock, events, test_config):
        engine = ScriptedEngine(["good morning", "good morning everyone"])
        ctrl = make_controller(engine, clock, events, test_config)
        feed(ctrl, clock, voice(1.0))
        feed(ctrl, clock, voice(1.0))
        ctrl.stop()
        assert confirmed_texts(events)[0] == "good morning"

    def test_prompt_from_committed_history(self, clock, events, test_config):
        engine = ScriptedEngine(
            [
                words_at("one two", 0.0, 1.0),
                words_at("one two three", 0.0, 2.0),
                words_at("one two three four", 0.0, 3.0),
            ]
        )
        ctrl = make_controller(engine, clock, events, test_config)
        for _ in range(3):
            feed(ctrl, clock, voice(1.0))
        ctrl.stop()
        prompts = [prompt for _, prompt in engine.calls]
        assert prompts == ["", "", "one two"]

    def test_leading_silence_not_transcribed(self, clock, events, test_config):
        engine = ScriptedEngine()
        ctrl = make_controller(engine, clock, events, test_config)
        for _ in range(3):
            feed(ctrl, clock, silence(1.0))
        assert engine.calls == []
        assert ctrl.sample_buffer.duration_seconds() <= 0.5 + 1e-6
        ctrl.stop()
        assert events == []

    def test_engine_failure_skips_round(self, clock, events, test_config):
        engine = ScriptedEngine(
            [
                RuntimeError("device lost"),
                "",
                words_at("still here", 0.0, 3.0),
                words_at("still here now", 0.0, 4.0),
            ]
        )
        ctrl = make_controller(engine, clock, events, test_config)
        for _ in range(4):
            feed(ctrl, clock, voice(1.0))
        stats = ctrl.stats()
        ctrl.stop()

        assert stats["engine_failures"] == 1
        assert stats["empty_results"] == 1
        assert confirmed_texts(events)[0] == "still here"


class TestHallucination:
    def test_repeated_confirmation_rolled_back(self, clock, events, test_config):
        def phrase_per_second(seconds):
            result = []
            for k in range(int(round(seconds))):
                result.extend(words_at(PHRASE, float(k), float(k + 1)))
            return result

        engine = ScriptedEngine(default=phrase_per_second)
        ctrl = make_controller(engine, clock, events, test_config)

        for _ in range(3):
            feed(ctrl, clock, voice(1.0))
        assert confirmed_texts(events) == [PHRASE, PHRASE]
        assert len(ctrl.hypotheses.committed) == 12
        assert engine.calls[2][1] == PHRASE

        feed(ctrl, clock, voice(1.0))
        assert events[-1] == Rollback("bravo charlie delta echo foxtrot", 5)
        assert len(ctrl.hypotheses.committed) == 7
        assert ctrl.hypotheses.pending == []

        stats = ctrl.stats()
        assert stats["hallucinations"] == 1
        assert stats["rollbacks"] == 1
        ctrl.stop()

    def test_denylisted_output_discarded(self, clock, events, test_config):
        engine = ScriptedEngine(default="thanks for watching")
        ctrl = make_controller(engine, clock, events, test_config)
        for _ in range(3):
            feed(ctrl, clock, voice(1.0))
        ctrl.stop()
        assert confirmed_texts(events) == []
        assert ctrl.stats()["hallucinations"] == 3


class TestSilenceDeadlines:
    def test_final_silence_commits_pending(self, clock, events, test_config):
        engine = ScriptedEngine([words_at("turn left here", 0.0, 1.0)])
        ctrl = make_controller(engine, clock, events, test_config)
        feed(ctrl, clock, voice(1.0))
        assert events == []

        clock.advance(3.5)
        ctrl.tick()
        assert ctrl.wait_idle(5.0)

        assert events == [
            Temporary("turn left here", 0.7),
            Confirmed("turn left here"),
            Final(),
        ]
        assert ctrl.sample_buffer.duration_seconds() == 0.0
        ctrl.stop()
        assert events[-1] == Final()
        assert len(events) == 3

    def test_single_token_tail_dropped(self, clock, events, test_config):
        engine = ScriptedEngine([words_at("okay", 0.0, 1.0)])
        ctrl = make_controller(engine, clock, events, test_config)
        feed(ctrl, clock, voice(1.0))

        clock.advance(3.5)
        ctrl.tick()
        assert ctrl.wait_idle(5.0)
        ctrl.stop()

        assert events == [Temporary("okay", 0.7)]

    def test_stalled_agreement_forced(self, clock, events, test_config):
        def alternating(seconds):
            k = int(round(seconds))
            text = "red blue" if k % 2 else "green gray"
            return words_at(text, 0.0, float(k))

        engine = ScriptedEngine(default=alternating)
        ctrl = make_controller(engine, clock, events, test_config)
        for _ in range(9):
            feed(ctrl, clock, voice(1.0))
        stats = ctrl.stats()
        ctrl.stop()

        assert confirmed_texts(events)[0] == "green gray"
        assert stats["forced_timeout"] == 1


class TestFastCadence:
    def test_temporary_without_prompt(self, clock, events, test_config):
        config = test_config.with_overrides(
            fast_min_chunk_seconds=0.5,
            fast_min_interval_seconds=0.5,
            reconcile_chunk_seconds=30.0,
        )
        engine = ScriptedEngine(default="testing one two")
        ctrl = make_controller(engine, clock, events, config)

        feed(ctrl, clock, voice(1.0))
        feed(ctrl, clock, voice(1.0))
        ctrl.stop()

        assert events == [Temporary("testing one two", 0.7)]
        assert all(prompt is None for _, prompt in engine.calls)


class TestConcurrency:
    def test_dispatch_skipped_while_in_flight(self, clock, events, test_config):
        engine = GatedEngine()
        ctrl = make_controller(engine, clock, events, test_config)
        try:
            clock.advance(1.0)
            ctrl.append_audio(voice(1.0), SAMPLE_RATE)
            assert engine.wait_entered(1)

            for _ in range(2):
                clock.advance(1.0)
                ctrl.append_audio(voice(1.0), SAMPLE_RATE)
            assert len(engine.calls) == 0
            assert engine.entered == 1

            engine.release.set()
            assert ctrl.wait_idle(5.0)
            assert engine.entered == 1

            feed(ctrl, clock, voice(1.0))
            assert engine.entered == 2
        finally:
            engine.release.set()
            ctrl.stop()

    def test_serialized_engine_calls_never_overlap(self, clock, events, test_config):
        config = test_config.with_overrides(
            fast_min_chunk_seconds=0.5,
            fast_min_interval_seconds=0.5,
            serialize_engine_calls=True,
        )
        engine = GatedEngine()
        ctrl = make_controller(engine, clock, events, config)
        try:
            clock.advance(1.0)
            ctrl.append_audio(voice(1.0), SAMPLE_RATE)
            assert engine.wait_entered(1)
            # The second cadence is parked on the engine lock.
            assert not engine.wait_entered(2, timeout=0.2)

            engine.release.set()
            assert ctrl.wait_idle(5.0)
        finally:
            engine.release.set()
            ctrl.stop()
        assert engine.entered == 2
        assert engine.max_active == 1

    def test_unserialized_engine_calls_overlap(self, clock, events, test_config):
        config = test_config.with_overrides(
            fast_min_chunk_seconds=0.5,
            fast_min_interval_seconds=0.5,
            serialize_engine_calls=False,
        )
        engine = GatedEngine()
        ctrl = make_controller(engine, clock, events, config)
        try:
            clock.advance(1.0)
            ctrl.append_audio(voice(1.0), SAMPLE_RATE)
            assert engine.wait_entered(2)
            assert engine.max_active == 2
        finally:
            engine.release.set()
            ctrl.stop()

    def test_result_after_stop_grace_discarded(self, clock, events, test_config):
        config = test_config.with_overrides(stop_grace_seconds=0.2)
        engine = GatedEngine(
            [
                words_at("good night", 0.0, 1.0),
                words_at("good night everyone", 0.0, 2.0),
            ]
        )
        ctrl = make_controller(engine, clock, events, config)
        engine.release.set()
        feed(ctrl, clock, voice(1.0))
        assert [t.text for t in ctrl.hypotheses.pending] == ["good", "night"]

        engine.release.clear()
        clock.advance(1.0)
        ctrl.append_audio(voice(1.0), SAMPLE_RATE)
        assert engine.wait_entered(2)
        worker = ctrl._cadences["reconcile"]._thread

        ctrl.stop()
        assert ctrl.state is ControllerState.IDLE

        engine.release.set()
        worker.join(5.0)
        assert not worker.is_alive()
        assert len(engine.calls) == 2
        assert events == [Confirmed("good night"), Final()]
        assert ctrl.hypotheses.committed_text == "good night"
        assert ctrl.hypotheses.pending == []


class TestConfidence:
    @pytest.mark.parametrize(
        "text, seconds, expected",
        [
            ("hi", 10.0, 0.2),
            ("a b c d e f g h i j", 1.0, 0.3),
            ("ok", 1.0, 0.4),
            ("extraordinarily good", 2.0, 0.5),
            ("see you soon", 1.5, 0.7),
        ],
    )
    def test_estimate(self, text, seconds, expected):
        assert estimate_confidence(text, seconds) == expected
