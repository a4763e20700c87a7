"""Module 6 — Word timing tracker.

Polls the player's position once per frame and maps it to a word index.
Every start() opens a new epoch; a frame callback whose epoch is no longer
current does nothing, so nothing scheduled before stop() can fire after it.
"""
import logging
from typing import Callable, Optional

from .frames import FrameScheduler
from .models import TimingTable

logger = logging.getLogger(__name__)


class TimingTracker:
    def __init__(self, position: Callable[[], float], frames: Optional[FrameScheduler] = None):
        """position: zero-arg callable returning the playback position in seconds."""
        self._position = position
        self._frames = frames or FrameScheduler()
        self._epoch = 0
        self._handle = None
        self._table = TimingTable()
        self._usable = True
        self._index = -1
        self._on_index_change: Optional[Callable[[int], None]] = None
        self._on_frame: Optional[Callable[[float], None]] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def index(self) -> int:
        return self._index

    @property
    def epoch(self) -> int:
        return self._epoch

    def start(
        self,
        table: TimingTable,
        on_index_change: Callable[[int], None],
        initial_index: int = -1,
        on_frame: Optional[Callable[[float], None]] = None,
    ):
        """Begin polling. initial_index is the index the listener already shows,
        so resuming mid-word doesn't re-announce it."""
        self.stop()
        self._table = table
        self._usable = table.is_ordered()
        if not self._usable:
            logger.warning(
                "Word timings out of order (%d words) — highlighting disabled", len(table),
            )
        self._index = initial_index if self._usable else -1
        self._on_index_change = on_index_change
        self._on_frame = on_frame
        self._schedule(self._epoch)

    def stop(self):
        """Stop polling. Safe to call when not started."""
        self._epoch += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._on_index_change = None
        self._on_frame = None

    def _schedule(self, epoch: int):
        self._handle = self._frames.request_frame(lambda: self._tick(epoch))

    def _tick(self, epoch: int):
        if epoch != self._epoch:
            return
        self._handle = None

        t = self._position()
        if self._on_frame is not None:
            self._on_frame(t)

        # on_frame may have stopped us
        if epoch != self._epoch:
            return
        index = self._table.resolve(t) if self._usable else -1
        if index != self._index:
            self._index = index
            self._on_index_change(index)

        if epoch == self._epoch:
            self._schedule(epoch)
