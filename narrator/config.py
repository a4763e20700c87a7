"""Module 1 — Config & Constants"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (one level up from narrator/)
_ROOT = Path(__file__).parent.parent
load_dotenv(_ROOT / ".env")

# ─── Paths ────────────────────────────────────────────────────────────────────
ROOT_DIR = _ROOT
OUTPUT_DIR = ROOT_DIR / os.getenv("OUTPUT_DIR", "output")
ERRORS_LOG = OUTPUT_DIR / "errors.log"

# ─── Speech generation backend ────────────────────────────────────────────────
TTS_HOST = os.getenv("TTS_HOST", "http://localhost:5000").rstrip("/")
TTS_TIMEOUT = int(os.getenv("TTS_TIMEOUT", "120"))
TTS_EXPERIENCE_ID = os.getenv("TTS_EXPERIENCE_ID", "default")
TTS_VOICE_ID = os.getenv("TTS_VOICE_ID", "").strip()  # "" = backend default voice

# ─── Playback ─────────────────────────────────────────────────────────────────
SPEED_OPTIONS = (0.75, 1.0, 1.25, 1.5, 2.0)
DEFAULT_RATE = float(os.getenv("DEFAULT_RATE", "1"))
# Polling rate of the word tracker, in frames per second
FRAME_RATE = int(os.getenv("FRAME_RATE", "60"))
# "none" = silent clock-driven output, "afplay" = macOS afplay subprocess
AUDIO_OUTPUT = os.getenv("AUDIO_OUTPUT", "none").strip().lower()

APP_VERSION = "0.1.0"

# ─── Web server ──────────────────────────────────────────────────────────────
WEB_PORT = int(os.getenv("WEB_PORT", "8890"))

# ─── Dev mode / logging ───────────────────────────────────────────────────────
DEV_MODE = os.getenv("DEV_MODE", "1").strip() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()
