"""
Gradio UI for incremental speech-to-text.
"""

import logging

import gradio as gr

from ..core import config
from ..core.asr import get_asr_engine
from ..core.controller import StreamingController
from ..core.errors import ConfigError
from ..core.runtime_config import ConfigStore
from ..interfaces.microphone import MicrophoneInput
from .transcript import TranscriptAccumulator

logger = logging.getLogger(__name__)


class STTApp:
    """Live transcription application: microphone -> controller -> transcript."""

    def __init__(self, engine=None):
        self.is_recording = False
        self._engine = engine

        self.config_store = ConfigStore()
        self.transcript = TranscriptAccumulator()

        self._mic: MicrophoneInput | None = None
        self._controller: StreamingController | None = None

    @property
    def engine(self):
        if self._engine is None:
            self._engine = get_asr_engine()
        return self._engine

    def start_recording(self) -> str:
        """Start the microphone and a new streaming session."""
        if self.is_recording:
            return "Already recording..."

        self.transcript.clear()
        cfg = self.config_store.get()
        self._controller = StreamingController(self.engine, on_event=self.transcript)
        self._controller.start(cfg)

        self._mic = MicrophoneInput(
            on_audio=self._controller.append_audio, sample_rate=cfg.sample_rate
        )
        self._mic.start()

        self.is_recording = True
        return "🎙️ Recording started..."

    def stop_recording(self) -> str:
        """Stop capture, then let the controller commit what it still holds."""
        if not self.is_recording:
            return "Not recording."

        self.is_recording = False

        # Stop in reverse order
        if self._mic:
            self._mic.stop()
            self._mic = None

        if self._controller:
            self._controller.stop()

        return "⏹️ Recording stopped."

    def get_transcripts(self) -> str:
        return self.transcript.render()

    def get_status(self) -> str:
        """Get current recording status."""
        if self.is_recording and self._controller:
            return f"🔴 {self._controller.status()}"
        return "⚪ Stopped"

    def update_setting(self, name: str, value) -> str:
        """Apply a slider value; takes effect on the next recording."""
        current = getattr(self.config_store.get(), name)
        try:
            value = type(current)(value)
            self.config_store.update(**{name: value})
        except ConfigError as e:
            logger.warning("Rejected setting %s=%r: %s", name, value, e)
            return f"Invalid {name}: {e}"
        return f"{name}: {value}"


# (field, label, minimum, maximum, step, default, info)
_SLIDERS = [
    ("vad_rms_threshold", "VAD RMS Threshold", 0.001, 0.1, 0.001,
     config.VAD_RMS_THRESHOLD, "Block energy above this counts as voice"),
    ("temp_silence_seconds", "Temporary Flush Silence (s)", 0.5, 5.0, 0.25,
     config.TEMP_SILENCE_SECONDS, "Silence before the pending tail is shown"),
    ("final_silence_seconds", "Final Silence (s)", 1.0, 8.0, 0.25,
     config.FINAL_SILENCE_SECONDS, "Silence before the utterance is committed"),
    ("reconcile_chunk_seconds", "Reconcile Chunk (s)", 1.0, 8.0, 0.5,
     config.RECONCILE_CHUNK_SECONDS, "Audio needed before a reconciliation pass"),
    ("agreement_n", "Agreement N", 2, 4, 1,
     config.AGREEMENT_N, "Consecutive passes that must agree on a word"),
]


def create_ui(app: STTApp | None = None) -> gr.Blocks:
    """Create the Gradio UI."""
    app = app or STTApp()

    # Pre-load ASR model
    logger.info("Initializing ASR engine...")
    _ = app.engine
    logger.info("ASR engine ready.")

    with gr.Blocks(title="Incremental Speech-to-Text") as demo:
        gr.Markdown("# 🎤 Incremental Speech-to-Text")
        gr.Markdown(
            "Words in brackets are provisional; the rest is confirmed. "
            "Settings apply to the next recording."
        )

        with gr.Row():
            status_text = gr.Textbox(
                label="Status",
                value="⚪ Stopped",
                interactive=False,
                lines=1,
                scale=1,
            )
            start_btn = gr.Button("🎙️ Start Recording", variant="primary", size="lg")
            stop_btn = gr.Button("⏹️ Stop Recording", variant="stop", size="lg")

        transcript_box = gr.Textbox(
            label="Transcript",
            placeholder="Speak into your microphone...",
            lines=14,
            max_lines=20,
            interactive=False,
            autoscroll=True,
        )

        with gr.Accordion("⚙️ Settings", open=False):
            setting_msg = gr.Markdown("")
            with gr.Row():
                for name, label, minimum, maximum, step, value, info in _SLIDERS:
                    slider = gr.Slider(
                        minimum=minimum,
                        maximum=maximum,
                        step=step,
                        value=value,
                        label=label,
                        info=info,
                    )
                    slider.change(
                        fn=lambda v, name=name: app.update_setting(name, v),
                        inputs=[slider],
                        outputs=[setting_msg],
                    )

        def on_start():
            app.start_recording()
            return "", app.get_status()

        def on_stop():
            app.stop_recording()
            return app.get_transcripts(), app.get_status()

        start_btn.click(fn=on_start, outputs=[transcript_box, status_text])
        stop_btn.click(fn=on_stop, outputs=[transcript_box, status_text])

        def refresh_all():
            return app.get_transcripts(), app.get_status()

        timer = gr.Timer(value=0.3, active=True)
        timer.tick(fn=refresh_all, outputs=[transcript_box, status_text])

    return demo


def launch():
    """Launch the Gradio UI."""
    demo = create_ui()
    demo.launch(server_name="0.0.0.0", server_port=7860, share=False)
