"""
ASR engine adapter using NVIDIA NeMo Parakeet TDT model.
This module is independent of any transport or UI.

The controller only needs ``transcribe(samples, prompt) -> text`` (or a list
of word timestamps); any object with that method can stand in for ASREngine.
"""

import logging

import numpy as np
import torch
import nemo.collections.asr as nemo_asr

logger = logging.getLogger(__name__)


class ASREngine:
    """ASR engine using NeMo Parakeet TDT model."""

    def __init__(
        self,
        model_name: str = "nvidia/parakeet-tdt-0.6b-v2",
        word_timestamps: bool = False,
    ):
        logger.info("Loading ASR model: %s...", model_name)
        self.model = nemo_asr.models.ASRModel.from_pretrained(model_name=model_name)
        self.word_timestamps = word_timestamps

        # Optimize for inference
        self.model.eval()

        # Use GPU with half-precision if available
        if torch.cuda.is_available():
            self.model = self.model.cuda()
            self.model = self.model.half()
            logger.info("ASR model loaded on GPU with FP16.")
        else:
            logger.info("ASR model loaded on CPU.")

    def transcribe(
        self, samples: np.ndarray, prompt: str | None = None
    ) -> str | list[dict]:
        """
        Transcribe float32 mono audio, normalized to [-1, 1].

        Args:
            samples: Audio samples at the model's sample rate
            prompt: Trailing context; Parakeet has no prompt input, so it
                is accepted and ignored.

        Returns:
            Transcribed text, or a list of ``{"word", "start", "end"}`` dicts
            (seconds from the start of ``samples``) when word_timestamps is on
        """
        if prompt:
            logger.debug("Prompt ignored by %s", type(self.model).__name__)
        audio_np = np.asarray(samples, dtype=np.float32)

        with torch.inference_mode():
            output = self.model.transcribe([audio_np], timestamps=self.word_timestamps)

        hypothesis = output[0]
        if self.word_timestamps and getattr(hypothesis, "timestamp", None):
            return [
                {"word": w["word"], "start": w["start"], "end": w["end"]}
                for w in hypothesis.timestamp.get("word", [])
            ]
        if hasattr(hypothesis, "text"):
            return hypothesis.text
        if isinstance(hypothesis, list):
            return " ".join(hypothesis)
        return str(hypothesis)


# Global ASR engine instance (lazy loaded)
_asr_engine: ASREngine | None = None


def get_asr_engine() -> ASREngine:
    """Get or create the global ASR engine instance."""
    global _asr_engine
    if _asr_engine is None:
        _asr_engine = ASREngine()
    return _asr_engine
