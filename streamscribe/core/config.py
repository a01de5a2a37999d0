"""
Core configuration defaults for incremental transcription.
These are transport-agnostic settings.
"""

# -------------------------
# AUDIO CONFIG
# -------------------------
SAMPLE_RATE = 16000
CHANNELS = 1
MAX_BUFFER_SECONDS = 12.0  # W_max: audio retained for re-transcription

# -------------------------
# VAD CONFIG (RMS energy gate)
# -------------------------
VAD_RMS_THRESHOLD = 0.015
VAD_DEBOUNCE_SECONDS = 0.3  # a silence<->voice flip must persist this long
VAD_WEBRTC_AGGRESSIVENESS = None  # 0..3 to also require webrtcvad speech frames
VAD_FRAME_MS = 20  # webrtcvad frame size, must be 10, 20, or 30
PRE_ROLL_SECONDS = 0.2  # audio kept before voice onset (on top of the debounce)

# -------------------------
# FAST (TEMPORARY) CADENCE
# -------------------------
FAST_MIN_CHUNK_SECONDS = 0.8  # minimum unconfirmed audio before a fast call
FAST_MIN_INTERVAL_SECONDS = 1.2
MIN_TEMPORARY_CONFIDENCE = 0.3

# -------------------------
# RECONCILIATION CADENCE
# -------------------------
RECONCILE_CHUNK_SECONDS = 3.0
RECONCILE_MIN_INTERVAL_SECONDS = 2.4
RECONCILE_MAX_CHUNK_SECONDS = 10.0  # fire immediately and trim past this
AGREEMENT_N = 2

# -------------------------
# PROMPT
# -------------------------
PROMPT_MAX_CHARS = 150

# -------------------------
# SILENCE / COMMIT DEADLINES
# -------------------------
TEMP_SILENCE_SECONDS = 2.0  # flush the pending hypothesis as a temporary result
FINAL_SILENCE_SECONDS = 3.0  # force-confirm pending and close the utterance
SILENCE_COMMIT_MIN_TOKENS = 2
FORCE_COMMIT_TIMEOUT_SECONDS = 8.0
TIMER_CHECK_INTERVAL_SECONDS = 0.25

# -------------------------
# HALLUCINATION GUARD
# -------------------------
HALLUCINATION_REPETITION_THRESHOLD = 3
HALLUCINATION_MAX_TOKENS = 50
HALLUCINATION_MAX_WORDS_PER_SECOND = 8.0
HALLUCINATION_ROLLBACK_TOKENS = 5
HALLUCINATION_DENYLIST = (
    "thank you for watching",
    "thanks for watching",
    "please subscribe",
    "subtitles by the amara org community",
    "whisper streaming",
)

# -------------------------
# ENGINE CALLS
# -------------------------
ENGINE_TIMEOUT_SECONDS = 10.0
SERIALIZE_ENGINE_CALLS = True
STOP_GRACE_SECONDS = 2.0
