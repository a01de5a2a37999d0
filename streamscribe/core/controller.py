"""
Streaming controller - turns an offline transcription engine into a
low-latency stream of Temporary / Confirmed / Final events.

- append_audio() (capture thread) -> SampleBuffer + ActivityGate, deadlines,
  cadence dispatch
- fast cadence worker -> engine without prompt -> Temporary
- reconciliation cadence worker -> engine with prompt -> HypothesisBuffer
  -> Confirmed
- ticker thread -> silence deadlines even when capture stalls
- dispatcher thread -> delivers events to the consumer in order

All session state is mutated while holding one lock; engine calls run on
snapshots without it.
"""

import contextlib
import logging
import queue
import re
import threading
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Protocol, Sequence, Union

import numpy as np

from .errors import (
    ControllerStateError,
    EmptyOrDegenerateResult,
    EngineUnavailable,
    HallucinationDetected,
    StreamingError,
)
from .events import Confirmed, Final, Rollback, Temporary, TranscriptEvent
from .hallucination import HallucinationGuard
from .hypothesis import (
    HypothesisBuffer,
    TimestampedToken,
    tokens_from_text,
    tokens_from_timestamps,
    tokens_text,
)
from .monitor import PerformanceMonitor, SessionStats
from .prompt import PromptBuilder
from .runtime_config import StreamingConfig
from .sample_buffer import AudioSnapshot, SampleBuffer, as_float_samples
from .text import normalize_text, split_words
from .timers import SilenceTimers
from .vad import ActivityGate

logger = logging.getLogger(__name__)

EngineOutput = Union[str, Sequence[Any]]

_LONG_WORD_RE = re.compile(r"[a-zA-Z]{10,}")
_STOP = object()

# Session counter bumped for each StreamingError subclass a round ends with
_ERROR_STATS = {
    EngineUnavailable: "engine_failures",
    EmptyOrDegenerateResult: "empty_results",
    HallucinationDetected: "hallucinations",
}


class TranscriptionEngine(Protocol):
    """Blocking speech-to-text call; text or chunk-relative word timestamps."""

    def transcribe(self, samples: np.ndarray, prompt: str | None = None) -> EngineOutput: ...


class ControllerState(Enum):
    IDLE = auto()
    RUNNING = auto()
    STOPPING = auto()


def estimate_confidence(text: str, audio_seconds: float) -> float:
    """Cheap plausibility score for a temporary result (word rate, length)."""
    words = split_words(text)
    words_per_second = len(words) / audio_seconds if audio_seconds > 0 else 0.0
    if words_per_second < 0.5:
        return 0.2  # too few words
    if words_per_second > 8.0:
        return 0.3  # too many words (suspicious)
    if len(text) < 3:
        return 0.4
    if _LONG_WORD_RE.search(text):
        return 0.5
    return 0.7


def decode_tokens(output: EngineOutput, snapshot: AudioSnapshot) -> list[TimestampedToken]:
    """Engine output to stream-relative tokens; interpolate when there is no timing."""
    if isinstance(output, str):
        return tokens_from_text(output, snapshot.start_time, snapshot.duration)
    return tokens_from_timestamps(output, snapshot.start_time)


@dataclass(frozen=True)
class _Round:
    """One engine call scheduled on a cadence."""

    cadence: "_Cadence"
    snapshot: AudioSnapshot
    prompt: str | None
    session: int
    epoch: int


class _Cadence:
    """
    Worker thread with a single job slot.

    ``in_flight`` is owned by the controller lock; a dispatch while a call is
    outstanding is skipped, never queued.
    """

    def __init__(self, name: str, handler: Callable[[_Round], None]):
        self.name = name
        self.in_flight = False
        self.last_dispatch: float | None = None
        self._handler = handler
        self._jobs: queue.Queue[_Round] = queue.Queue(maxsize=1)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._worker, name=f"streamscribe-{self.name}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("%s worker still busy after %.1fs, detaching", self.name, timeout)
            self._thread = None

    def submit(self, job: _Round) -> None:
        self._jobs.put_nowait(job)

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self._jobs.get(timeout=0.1)
            except queue.Empty:
                continue
            self._handler(job)


class StreamingController:
    """
    Incremental transcription controller.

    Lifecycle: IDLE -> start() -> RUNNING -> stop() -> STOPPING -> IDLE.
    ``engine`` is an object with ``transcribe(samples, prompt)`` or a plain
    callable with the same signature. ``on_event`` receives Temporary,
    Confirmed, Final and Rollback events on a dispatcher thread.
    """

    def __init__(
        self,
        engine: TranscriptionEngine | Callable[..., EngineOutput],
        on_event: Callable[[TranscriptEvent], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._transcribe = getattr(engine, "transcribe", engine)
        self.on_event = on_event
        self._clock = clock

        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._engine_lock = threading.Lock()

        self._state = ControllerState.IDLE
        self._session = 0
        self.config = StreamingConfig()
        self._events: queue.Queue[Any] = queue.Queue()
        self._threads: list[threading.Thread] = []
        self._ticker_stop = threading.Event()
        self._cadences: dict[str, _Cadence] = {}
        self._init_session(self.config)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def hypotheses(self) -> HypothesisBuffer:
        return self._hypotheses

    @property
    def sample_buffer(self) -> SampleBuffer:
        return self._buffer

    def start(self, config: StreamingConfig | None = None) -> None:
        """Create session buffers and start the worker threads."""
        with self._lock:
            if self._state is not ControllerState.IDLE:
                raise ControllerStateError(
                    "controller already started", state=self._state.name
                )
            cfg = (config or StreamingConfig()).validate()
            self._session += 1
            self._init_session(cfg)

            self._events = queue.Queue()
            self._ticker_stop = threading.Event()
            self._threads = [
                threading.Thread(
                    target=self._dispatch_events, name="streamscribe-events", daemon=True
                ),
                threading.Thread(
                    target=self._ticker, name="streamscribe-ticker", daemon=True
                ),
            ]
            for thread in self._threads:
                thread.start()
            for cadence in self._cadences.values():
                cadence.start()

            self._state = ControllerState.RUNNING
            logger.info("Streaming session %d started", self._session)

    def stop(self) -> None:
        """
        Stop issuing engine calls, wait up to ``stop_grace_seconds`` for
        in-flight rounds, commit what is still pending and return to IDLE.
        """
        with self._lock:
            if self._state is not ControllerState.RUNNING:
                return
            self._state = ControllerState.STOPPING
            cfg = self.config
            logger.info("Stopping streaming session %d", self._session)

            deadline = time.monotonic() + cfg.stop_grace_seconds
            while self._any_in_flight():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("Discarding results of in-flight engine calls")
                    break
                self._changed.wait(remaining)

            if self._hypotheses.pending:
                self._force_confirm("stop")
            if self._utterance_confirmed:
                self._emit(Final())

            # Late results from this session are discarded from here on.
            self._session += 1
            cadences = list(self._cadences.values())
            threads = self._threads
            events = self._events
            self._threads = []

        self._ticker_stop.set()
        for cadence in cadences:
            cadence.stop(timeout=1.0)
        events.put(_STOP)
        for thread in threads:
            thread.join(timeout=1.0)

        with self._lock:
            logger.info("Session stats: %s", self.stats())
            self._buffer.clear()
            self._hypotheses.clear_pending()
            self._state = ControllerState.IDLE
            self._changed.notify_all()
        logger.info("Streaming session stopped")

    def _init_session(self, cfg: StreamingConfig) -> None:
        self.config = cfg
        self._buffer = SampleBuffer(cfg.sample_rate, cfg.max_buffer_seconds)
        self._gate = ActivityGate(
            sample_rate=cfg.sample_rate,
            rms_threshold=cfg.vad_rms_threshold,
            debounce_seconds=cfg.vad_debounce_seconds,
            webrtc_aggressiveness=cfg.vad_webrtc_aggressiveness,
            clock=self._clock,
        )
        self._guard = HallucinationGuard(
            repetition_threshold=cfg.hallucination_repetition_threshold,
            max_tokens=cfg.hallucination_max_tokens,
        )
        self._prompts = PromptBuilder(cfg.prompt_max_chars, self._guard)
        self._hypotheses = HypothesisBuffer(cfg.agreement_n)
        self._timers = SilenceTimers(cfg.temp_silence_seconds, cfg.final_silence_seconds)
        self._monitor = PerformanceMonitor()
        self._stats = SessionStats()
        self._cadences = {
            "fast": _Cadence("fast", self._run_round),
            "reconcile": _Cadence("reconcile", self._run_round),
        }

        self._epoch = 0
        self._heard_voice = False
        self._utterance_confirmed = 0
        self._pending_since: float | None = None
        self._last_temporary = ""  # last temporary text checked by the guard
        self._temporary_repeats = 0
        self._last_emitted_temporary = ""
        self._last_confirmed = ""
        self._confirmed_repeats = 0

    # ------------------------------------------------------------------
    # Data plane
    # ------------------------------------------------------------------

    def append_audio(
        self, samples: Sequence[float] | np.ndarray, sample_rate: int | None = None
    ) -> None:
        """Ingest a block of mono samples from the capture collaborator."""
        block = as_float_samples(samples)
        with self._lock:
            if self._state is not ControllerState.RUNNING:
                logger.debug("Dropping %d samples, controller not running", block.size)
                return
            cfg = self.config
            if sample_rate is not None and sample_rate != cfg.sample_rate:
                raise ControllerStateError(
                    "sample rate mismatch", expected=cfg.sample_rate, got=sample_rate
                )
            if block.size == 0:
                return

            reading = self._gate.classify(block)
            if reading.active:
                self._heard_voice = True
                self._timers.rearm()

            advanced = self._buffer.append(block)
            if not self._heard_voice:
                keep = cfg.vad_debounce_seconds + cfg.pre_roll_seconds
                advanced += self._buffer.trim_to(self._buffer.end_time - keep)
            if advanced:
                self._hypotheses.purge_before(self._buffer.time_offset)

            now = self._clock()
            self._check_deadlines(now)
            self._maybe_dispatch_fast(now)
            self._maybe_dispatch_reconcile(now)

    def tick(self) -> None:
        """Evaluate silence and timeout deadlines without new audio."""
        with self._lock:
            if self._state is ControllerState.RUNNING:
                self._check_deadlines(self._clock())

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """Block until no engine call is in flight and all events are delivered."""
        deadline = time.monotonic() + timeout
        with self._lock:
            while self._any_in_flight():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._changed.wait(remaining)
            events = self._events
        while events.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = self._stats.snapshot()
        stats.update(self._monitor.stats())
        return stats

    def status(self) -> str:
        with self._lock:
            buffer_seconds = self._buffer.duration_seconds()
            silence_ms = self._gate.time_since_last_activity() * 1000
            state = self._state.name.lower()
        return f"Buffer: {buffer_seconds:.1f}s, Silence: {silence_ms:.0f}ms, State: {state}"

    # ------------------------------------------------------------------
    # Deadlines (lock held)
    # ------------------------------------------------------------------

    def _check_deadlines(self, now: float) -> None:
        cfg = self.config
        fires = self._timers.poll(self._gate.time_since_last_activity())
        if fires.temp:
            self._flush_temporary()
        if fires.final:
            self._close_utterance()
        elif (
            self._pending_since is not None
            and self._hypotheses.pending
            and now - self._pending_since >= cfg.force_commit_timeout_seconds
        ):
            logger.info(
                "Pending unflushed for %.1fs, forcing commit", now - self._pending_since
            )
            self._force_confirm("timeout")

    def _flush_temporary(self) -> None:
        pending = self._hypotheses.pending
        if not pending:
            return
        text = tokens_text(pending)
        if normalize_text(text) == normalize_text(self._last_emitted_temporary):
            return
        span = pending[-1].end - pending[0].start
        self._emit_temporary(text, estimate_confidence(text, span))

    def _close_utterance(self) -> None:
        """Silence reached the final deadline: confirm pending and end the utterance."""
        pending = self._hypotheses.pending
        if len(pending) >= self.config.silence_commit_min_tokens:
            self._force_confirm("silence")
        elif pending:
            logger.debug("Dropping single-observation tail %r", tokens_text(pending))
            self._hypotheses.clear_pending()

        if self._utterance_confirmed:
            self._emit(Final())
            logger.info("Utterance closed after silence")
        self._reset_utterance()

    def _reset_utterance(self) -> None:
        self._buffer.clear()
        self._hypotheses.clear_pending()
        self._epoch += 1
        self._heard_voice = False
        self._utterance_confirmed = 0
        self._pending_since = None
        self._last_emitted_temporary = ""

    def _force_confirm(self, reason: str) -> None:
        """Commit all of pending without agreement (silence, timeout or stop)."""
        pending = self._hypotheses.pending
        if not pending:
            return
        if self._reject_confirmed(tokens_text(pending)) is not None:
            self._stats.incr("hallucinations")
            return
        committed = self._hypotheses.force_commit()
        self._pending_since = None
        if committed:
            self._stats.incr(f"forced_{reason}")
            logger.info("Force confirmed (%s): %r", reason, tokens_text(committed))
            self._emit_confirmed(committed)

    # ------------------------------------------------------------------
    # Cadence dispatch (lock held)
    # ------------------------------------------------------------------

    def _maybe_dispatch_fast(self, now: float) -> None:
        cfg = self.config
        cadence = self._cadences["fast"]
        if cadence.in_flight or not self._heard_voice:
            return
        if self._gate.time_since_last_activity() >= cfg.temp_silence_seconds:
            return
        start = max(self._hypotheses.last_committed_time, self._buffer.time_offset)
        if self._buffer.end_time - start < cfg.fast_min_chunk_seconds:
            return
        if (
            cadence.last_dispatch is not None
            and now - cadence.last_dispatch < cfg.fast_min_interval_seconds
        ):
            return
        snapshot = self._buffer.snapshot(
            start_time=start, max_seconds=cfg.reconcile_max_chunk_seconds
        )
        self._dispatch(cadence, snapshot, None, now)

    def _maybe_dispatch_reconcile(self, now: float) -> None:
        cfg = self.config
        cadence = self._cadences["reconcile"]
        if cadence.in_flight or not self._heard_voice:
            return
        duration = self._buffer.duration_seconds()
        if duration < cfg.reconcile_chunk_seconds:
            return
        overdue = duration >= cfg.reconcile_max_chunk_seconds
        if (
            not overdue
            and cadence.last_dispatch is not None
            and now - cadence.last_dispatch < cfg.reconcile_min_interval_seconds
        ):
            return
        snapshot = self._buffer.snapshot(max_seconds=cfg.reconcile_max_chunk_seconds)
        prompt = self._prompts.build(self._hypotheses.committed)
        self._dispatch(cadence, snapshot, prompt, now)

    def _dispatch(
        self, cadence: _Cadence, snapshot: AudioSnapshot, prompt: str | None, now: float
    ) -> None:
        cadence.in_flight = True
        cadence.last_dispatch = now
        logger.debug(
            "Dispatching %s round: %.2fs from t=%.2f", cadence.name, snapshot.duration,
            snapshot.start_time,
        )
        cadence.submit(_Round(cadence, snapshot, prompt, self._session, self._epoch))

    def _any_in_flight(self) -> bool:
        return any(c.in_flight for c in self._cadences.values())

    # ------------------------------------------------------------------
    # Rounds (worker threads)
    # ------------------------------------------------------------------

    def _run_round(self, job: _Round) -> None:
        name = job.cadence.name
        try:
            output = self._call_engine(job)
            with self._lock:
                if not self._accepts(job):
                    logger.debug("Discarding stale %s result", name)
                    return
                if name == "fast":
                    self._apply_temporary(job, output)
                else:
                    self._apply_reconciliation(job, output)
        except StreamingError as e:
            self._stats.incr(_ERROR_STATS.get(type(e), "errors"))
            logger.warning("%s round produced no output: %s", name, e)
        except Exception:
            self._stats.incr("errors")
            logger.exception("Unexpected error in %s round", name)
        finally:
            with self._lock:
                job.cadence.in_flight = False
                self._changed.notify_all()

    def _call_engine(self, job: _Round) -> EngineOutput:
        """Blocking engine call on a snapshot; raises on unusable output."""
        cfg = self.config
        lock = self._engine_lock if cfg.serialize_engine_calls else contextlib.nullcontext()
        with lock:
            started = time.perf_counter()
            try:
                output = self._transcribe(job.snapshot.samples, job.prompt)
            except Exception as e:
                raise EngineUnavailable(f"engine call failed: {e}") from e
            elapsed = time.perf_counter() - started

        self._monitor.record(job.cadence.name, elapsed, job.snapshot.duration)
        if elapsed > cfg.engine_timeout_seconds:
            raise EngineUnavailable(
                f"engine call took {elapsed:.1f}s", timeout=cfg.engine_timeout_seconds
            )
        if output is None:
            raise EmptyOrDegenerateResult("engine returned nothing")
        if isinstance(output, str):
            text = output.strip()
            if text.startswith("ERROR"):
                raise EngineUnavailable(text)
            if not text:
                raise EmptyOrDegenerateResult("empty transcription")
            return text
        if len(output) == 0:
            raise EmptyOrDegenerateResult("no words in transcription")
        return output

    def _accepts(self, job: _Round) -> bool:
        if job.session != self._session or job.epoch != self._epoch:
            return False
        if job.cadence.name == "fast":
            return self._state is ControllerState.RUNNING
        return self._state in (ControllerState.RUNNING, ControllerState.STOPPING)

    def _apply_temporary(self, job: _Round, output: EngineOutput) -> None:
        snapshot = job.snapshot
        if snapshot.end_time <= self._hypotheses.last_committed_time:
            return
        tokens = self._hypotheses.insert(decode_tokens(output, snapshot))
        text = tokens_text(tokens)
        if not text:
            raise EmptyOrDegenerateResult("temporary result fully committed already")

        verdict = self._guard.check(
            text, self._last_temporary, self._temporary_repeats, snapshot.duration
        )
        if verdict.is_hallucination:
            self._temporary_repeats = 0
            self._last_temporary = ""
            raise HallucinationDetected(verdict.reason, cadence="fast", text=text)
        self._temporary_repeats = verdict.repetition_count
        self._last_temporary = text

        confidence = estimate_confidence(text, snapshot.duration)
        if confidence < self.config.min_temporary_confidence:
            logger.debug("Temporary below confidence (%.2f): %r", confidence, text)
            return
        if normalize_text(text) == normalize_text(self._last_emitted_temporary):
            return
        self._emit_temporary(text, confidence)

    def _apply_reconciliation(self, job: _Round, output: EngineOutput) -> None:
        snapshot = job.snapshot
        decoded = decode_tokens(output, snapshot)
        raw_text = output if isinstance(output, str) else tokens_text(decoded)

        reason = self._guard.screen(raw_text, snapshot.duration)
        if reason is not None:
            self._recover(reason, raw_text)
            raise HallucinationDetected(reason, cadence="reconcile", text=raw_text)

        tokens = self._hypotheses.insert(decoded)
        if not tokens:
            logger.debug("Reconciliation found nothing new")
            return

        agreed = self._hypotheses.agree(tokens)
        if agreed:
            agreed_text = tokens_text(agreed)
            reason = self._reject_confirmed(agreed_text)
            if reason is not None:
                raise HallucinationDetected(reason, cadence="reconcile", text=agreed_text)

        had_pending = bool(self._hypotheses.pending)
        committed = self._hypotheses.flush(tokens)
        if committed:
            self._emit_confirmed(committed)

        now = self._clock()
        if not self._hypotheses.pending:
            self._pending_since = None
        elif committed or not had_pending or self._pending_since is None:
            self._pending_since = now

        cfg = self.config
        lct = self._hypotheses.last_committed_time
        if snapshot.duration >= cfg.reconcile_max_chunk_seconds and lct > self._buffer.time_offset:
            self._buffer.trim_to(lct)
            self._hypotheses.purge_before(self._buffer.time_offset)
            logger.debug("Trimmed audio window to t=%.2f", self._buffer.time_offset)

    # ------------------------------------------------------------------
    # Hallucination handling (lock held)
    # ------------------------------------------------------------------

    def _reject_confirmed(self, text: str) -> str | None:
        """Screen text about to be confirmed; on a hit, recover and return the reason."""
        verdict = self._guard.check(text, self._last_confirmed, self._confirmed_repeats)
        if verdict.is_hallucination:
            self._recover(verdict.reason, text)
            return verdict.reason
        self._confirmed_repeats = verdict.repetition_count
        self._last_confirmed = text
        return None

    def _recover(self, reason: str | None, text: str) -> None:
        """Discard working state, roll back the committed tail, reset counters."""
        logger.warning("Hallucination (%s) discarded: %r", reason, text[:80])
        self._hypotheses.clear_pending()
        self._pending_since = None

        removed = self._hypotheses.rollback(self.config.hallucination_rollback_tokens)
        if removed:
            self._stats.incr("rollbacks")
            rolled_back = tokens_text(removed)
            logger.warning("Rolled back %d committed tokens: %r", len(removed), rolled_back)
            self._utterance_confirmed = max(0, self._utterance_confirmed - len(removed))
            self._emit(Rollback(text=rolled_back, token_count=len(removed)))

        self._confirmed_repeats = 0
        self._last_confirmed = ""
        self._temporary_repeats = 0
        self._last_temporary = ""
        self._epoch += 1

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit_temporary(self, text: str, confidence: float) -> None:
        self._last_emitted_temporary = text
        self._emit(Temporary(text=text, confidence=confidence))

    def _emit_confirmed(self, tokens: Sequence[TimestampedToken]) -> None:
        self._utterance_confirmed += len(tokens)
        self._last_emitted_temporary = ""
        text = tokens_text(tokens)
        logger.debug("Confirmed: %r (t<=%.2f)", text, self._hypotheses.last_committed_time)
        self._emit(Confirmed(text=text))

    def _emit(self, event: TranscriptEvent) -> None:
        self._stats.incr(event.kind)
        self._events.put(event)

    def _dispatch_events(self) -> None:
        events = self._events
        while True:
            event = events.get()
            try:
                if event is _STOP:
                    return
                if self.on_event:
                    self.on_event(event)
            except Exception:
                logger.exception("Event consumer failed on %r", event)
            finally:
                events.task_done()

    def _ticker(self) -> None:
        stop = self._ticker_stop
        interval = self.config.timer_check_interval_seconds
        while not stop.wait(interval):
            self.tick()
