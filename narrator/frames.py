"""Per-frame callback scheduling on the asyncio loop."""
import asyncio
from typing import Callable, Optional

from .config import FRAME_RATE


class FrameScheduler:
    """Runs a callback on the next frame, cooperatively (one-shot, like
    requestAnimationFrame). request_frame returns a handle with cancel()."""

    def __init__(self, fps: int = FRAME_RATE, call_later: Optional[Callable] = None):
        self.interval = 1.0 / max(1, fps)
        self._call_later = call_later

    def request_frame(self, callback: Callable[[], None]):
        call_later = self._call_later or asyncio.get_running_loop().call_later
        return call_later(self.interval, callback)
