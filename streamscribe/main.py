#!/usr/bin/env python3
"""
Incremental speech-to-text with a Gradio UI.

- pyaudio callback -> StreamingController.append_audio
- fast cadence -> provisional (temporary) text for the unconfirmed tail
- reconciliation cadence -> LocalAgreement over overlapping windows -> confirmed text
- silence deadlines -> flush, force-commit and close utterances
- Gradio UI -> recording control and live transcript display
"""

import logging
import os

from .app.gradio_ui import launch


def main():
    """Main entry point for the STT application with Gradio UI."""
    logging.basicConfig(
        level=os.environ.get("STREAMSCRIBE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    launch()


if __name__ == "__main__":
    main()
