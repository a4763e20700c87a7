"""Error types and structured error logging — JSON to errors.log."""
import json
import logging
import platform
from datetime import datetime
from typing import Optional

from .config import APP_VERSION, DEV_MODE, ERRORS_LOG, OUTPUT_DIR

logger = logging.getLogger(__name__)

_FRIENDLY_MESSAGES = {
    "generation": "Couldn't generate audio for this lesson — try again.",
    "playback": "Audio playback failed.",
    "preflight": "Startup check failed.",
}


class NarratorError(Exception):
    """Base class for read-along engine failures."""


class GenerationError(NarratorError):
    """The speech backend (or the network in front of it) failed. Retryable."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotReadyError(NarratorError):
    """Playback requested before any session was bound."""


class PlaybackError(NarratorError):
    """The host media resource failed (decode, missing output device, ...)."""


def format_error(
    stage: str,
    content_id: str = "",
    params: Optional[dict] = None,
    raw: str = "",
) -> str:
    """Record a failure in errors.log and return what the UI should show.

    DEV_MODE returns the full record; otherwise a friendly one-liner for stage.
    """
    record = {
        "when": datetime.now().isoformat(timespec="seconds"),
        "stage": stage,
        "content_id": content_id,
        "params": params or {},
        "error": raw,
        "version": APP_VERSION,
        "python": platform.python_version(),
    }
    _write_record(record)
    logger.error("%s failed for %s: %s", stage, content_id or "-", raw)

    if DEV_MODE:
        return json.dumps(record, indent=2)
    return _FRIENDLY_MESSAGES.get(stage, f"Something went wrong ({stage}).")


def _write_record(record: dict):
    try:
        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        with open(ERRORS_LOG, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
    except OSError as e:
        logger.warning("Could not write %s: %s", ERRORS_LOG, e)
