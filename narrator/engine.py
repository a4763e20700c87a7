"""Read-along engine — binds one lesson at a time to the player and tracker.

Receives commands via methods, reports through self.events:
  word_index(int)          -1 = no word
  playing(bool)
  timings_loaded(list[str])
  status(str)
  duration(float)
  rate(float)
  error(dict)              {kind, message, retryable}
"""
import asyncio
import logging
from collections import Counter
from typing import Callable, Optional

from .alignment import TextPosition, map_spoken_words
from .cache import Fetcher, SessionCache
from .config import SPEED_OPTIONS, TTS_EXPERIENCE_ID
from .errors import GenerationError, NotReadyError, PlaybackError, format_error
from .events import EventEmitter
from .frames import FrameScheduler
from .models import PlaybackState, PlaybackStatus, Session
from .player import Player, make_sink
from .tracker import TimingTracker
from .tts import SpeechClient

logger = logging.getLogger(__name__)


class ReaderEngine:
    def __init__(
        self,
        fetch: Optional[Fetcher] = None,
        player: Optional[Player] = None,
        frames: Optional[FrameScheduler] = None,
        cache: Optional[SessionCache] = None,
        experience_id: str = TTS_EXPERIENCE_ID,
    ):
        if cache is None:
            if fetch is None:
                fetch = SpeechClient(experience_id=experience_id).generate
            cache = SessionCache(fetch)
        self.cache = cache
        self.player = player or Player(sink=make_sink())
        self.tracker = TimingTracker(lambda: self.player.current_time, frames)
        self.events = EventEmitter()

        self.content_id: Optional[str] = None
        self.text: str = ""

        # Bumped on every content change; async results from an older epoch are dropped
        self._epoch = 0
        self._status = PlaybackStatus.IDLE
        self._word_index = -1
        self._playing = False
        self._want_play = False
        self._waiters: Counter = Counter()  # epoch -> play() calls awaiting the cache
        self._bound_id: Optional[str] = None
        self._text_map: dict[int, TextPosition] = {}

        self.player.events.on("playing", self._set_playing)
        self.player.events.on("ended", self._on_ended)

    # ── Listener registration ────────────────────────────────────────────────

    def on_word_index_change(self, callback: Callable[[int], None]) -> Callable[[], None]:
        return self.events.on("word_index", callback)

    def on_playing_change(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return self.events.on("playing", callback)

    def on_timings_loaded(self, callback: Callable[[list[str]], None]) -> Callable[[], None]:
        return self.events.on("timings_loaded", callback)

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def status(self) -> PlaybackStatus:
        return self._status

    @property
    def word_index(self) -> int:
        return self._word_index

    @property
    def state(self) -> PlaybackState:
        return PlaybackState(
            status=self._status,
            current_time=self.player.current_time,
            rate=self.player.rate,
            current_word_index=self._word_index,
        )

    def text_position(self, index: int) -> Optional[TextPosition]:
        """(paragraph, word) in the attached text for a spoken word index."""
        return self._text_map.get(index)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def attach(self, content_id: str, text: str = ""):
        """Bind to a lesson. A different lesson tears the current one down;
        nothing is fetched until the next play()."""
        if content_id == self.content_id:
            if text and text != self.text:
                self.text = text
                self._remap_text()
            return
        self._teardown()
        self.content_id = content_id
        self.text = text
        logger.info("Attached to lesson %s", content_id)

    def detach(self):
        self._teardown()
        self.content_id = None
        self.text = ""

    async def aclose(self):
        # discard() drops pending ids without cancelling them
        self.cache.close()
        self.detach()

    def _teardown(self):
        self._epoch += 1
        self._want_play = False
        self.tracker.stop()
        self.player.dispose()
        self._set_playing(False)

        previous = self._bound_id
        self._bound_id = None
        if previous is not None:
            self.cache.unpin(previous)
        if self.content_id is not None:
            self.cache.discard(self.content_id)

        self._text_map = {}
        self._set_word_index(-1, force=True)
        self._set_status(PlaybackStatus.IDLE)

    # ── Commands ─────────────────────────────────────────────────────────────

    async def play(self):
        """Play the attached lesson, generating its audio on first use."""
        if self.content_id is None:
            raise NotReadyError("No lesson attached")
        if self.player.loaded:
            self._start_playback()
            return

        self._want_play = True
        epoch = self._epoch
        content_id = self.content_id
        if self.cache.get(content_id) is None:
            self._set_status(PlaybackStatus.LOADING)

        self._waiters[epoch] += 1
        try:
            session = await self.cache.request(content_id)
        except asyncio.CancelledError:
            # The last waiter giving up leaves nothing loading
            if epoch == self._epoch and self._waiters[epoch] == 1 and self._status is PlaybackStatus.LOADING:
                self._want_play = False
                self._set_status(PlaybackStatus.IDLE)
            raise
        except GenerationError as e:
            # Only the first waiter reports; later ones find the status already reset
            if epoch != self._epoch or self._status is not PlaybackStatus.LOADING:
                return
            message = format_error("generation", content_id, None, str(e))
            self._want_play = False
            self._set_status(PlaybackStatus.IDLE)
            self.events.emit("error", {"kind": "generation", "message": message, "retryable": True})
            return
        finally:
            self._waiters[epoch] -= 1
            if not self._waiters[epoch]:
                del self._waiters[epoch]

        if epoch != self._epoch:
            logger.info("Dropping stale session for %s (lesson changed)", content_id)
            return
        if self.player.loaded:
            # A concurrent play() already bound it
            return

        if not self._bind(session):
            return
        if self._want_play:
            self._start_playback()
        else:
            self._set_status(PlaybackStatus.PAUSED)

    def pause(self):
        self._want_play = False
        if self._status is PlaybackStatus.LOADING:
            # Bound as paused once the session arrives
            return
        if self.player.pause():
            self.tracker.stop()
            self._set_status(PlaybackStatus.PAUSED)

    async def toggle(self):
        loading = self._status is PlaybackStatus.LOADING and self._want_play
        if self.player.is_playing() or loading:
            self.pause()
        else:
            await self.play()

    def set_rate(self, rate) -> float:
        """Change speed. Raises ValueError for non-numeric input; other values
        snap to the nearest of SPEED_OPTIONS. The word index is untouched."""
        before = self.player.rate
        try:
            applied = self.player.set_rate(rate)
        except PlaybackError as e:
            self._playback_failed(e)
            return self.player.rate
        if applied != before:
            self.events.emit("rate", applied)
        return applied

    # ── Internals ────────────────────────────────────────────────────────────

    def _bind(self, session: Session) -> bool:
        try:
            self.player.load(session)
        except PlaybackError as e:
            self._want_play = False
            self._playback_failed(e, status=PlaybackStatus.IDLE)
            return False

        self.cache.pin(session.content_id)
        self._bound_id = session.content_id
        self._remap_text()
        self.events.emit("duration", self.player.duration)
        self.events.emit("timings_loaded", session.timings.words)
        return True

    def _start_playback(self):
        try:
            started = self.player.play()
        except PlaybackError as e:
            self._playback_failed(e)
            return
        if started or not self.tracker.running:
            self.tracker.start(
                self.player.session.timings,
                self._set_word_index,
                initial_index=self._word_index,
            )
        self._set_status(PlaybackStatus.PLAYING)

    def _playback_failed(self, error: Exception, status: PlaybackStatus = PlaybackStatus.PAUSED):
        self.tracker.stop()
        message = format_error("playback", self.content_id or "", None, str(error))
        self._set_status(status)
        self.events.emit("error", {"kind": "playback", "message": message, "retryable": True})

    def _on_ended(self):
        self.tracker.stop()
        self._set_word_index(-1)
        self._set_status(PlaybackStatus.ENDED)

    def _remap_text(self):
        session = self.player.session
        if session is None or not self.text:
            self._text_map = {}
            return
        self._text_map = map_spoken_words(self.text, session.timings.words)

    def _set_word_index(self, index: int, force: bool = False):
        if index == self._word_index and not force:
            return
        self._word_index = index
        self.events.emit("word_index", index)

    def _set_playing(self, playing: bool):
        if playing == self._playing:
            return
        self._playing = playing
        self.events.emit("playing", playing)

    def _set_status(self, status: PlaybackStatus):
        if status is self._status:
            return
        self._status = status
        self.events.emit("status", status.value)

    # ── Snapshot ─────────────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Full state for a newly connected UI."""
        session = self.player.session
        return {
            "content_id": self.content_id,
            **self.state.to_dict(),
            "playing": self._playing,
            "loading": self._status is PlaybackStatus.LOADING,
            "elapsed": round(self.player.current_time, 1),
            "duration": self.player.duration,
            "speed_options": list(SPEED_OPTIONS),
            "words": session.timings.words if session else [],
        }
