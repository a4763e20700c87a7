"""Module 5 — Playback controller.

The Player owns the single live audio resource (a sink) and does all position
math itself from a monotonic clock, so current_time is exact regardless of
what the output device reports. Sinks only make sound.
"""
import asyncio
import logging
import os
import re
import signal
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from .config import AUDIO_OUTPUT, DEFAULT_RATE, SPEED_OPTIONS
from .errors import NotReadyError, PlaybackError
from .events import EventEmitter
from .models import PlaybackStatus, Session

logger = logging.getLogger(__name__)


def get_audio_duration(path: Path) -> float | None:
    """Get audio duration in seconds using macOS afinfo. Returns None on failure."""
    try:
        result = subprocess.run(
            ["afinfo", str(path)],
            capture_output=True, text=True, timeout=5,
        )
        match = re.search(r"estimated duration:\s+([\d.]+)\s+sec", result.stdout)
        return float(match.group(1)) if match else None
    except (OSError, subprocess.SubprocessError):
        return None


def snap_rate(rate) -> float:
    """Clamp a requested playback rate to the nearest supported speed."""
    try:
        value = float(rate)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid playback rate: {rate!r}") from None
    if value != value:  # NaN
        raise ValueError(f"Invalid playback rate: {rate!r}")
    return min(SPEED_OPTIONS, key=lambda option: abs(option - value))


# ── Sinks ────────────────────────────────────────────────────────────────────

class NullSink:
    """Silent output. Playback is purely clock-driven."""

    # Set by the Player; called when the output runs out of audio on its own
    on_finished: Optional[Callable[[], None]] = None

    def open(self, audio: bytes) -> Optional[float]:
        return None

    def resume(self, offset: float, rate: float):
        pass

    def pause(self):
        pass

    def set_rate(self, offset: float, rate: float):
        pass

    def stop(self):
        pass

    def close(self):
        pass


class AfplaySink:
    """Plays through macOS afplay. Pause is SIGSTOP/SIGCONT; starting anywhere
    but 0 (or changing speed mid-play) restarts afplay on an ffmpeg-trimmed copy."""

    def __init__(self):
        self.on_finished: Optional[Callable[[], None]] = None
        self._watcher: Optional[asyncio.Task] = None
        self._proc: Optional[subprocess.Popen] = None
        self._source: Optional[Path] = None
        self._temp_file: Optional[Path] = None
        self._paused: bool = False
        self._rate: float = 1.0

    def open(self, audio: bytes) -> Optional[float]:
        self.close()
        fd, name = tempfile.mkstemp(suffix=".mp3", prefix="narrator-")
        with os.fdopen(fd, "wb") as f:
            f.write(audio)
        self._source = Path(name)
        return get_audio_duration(self._source)

    def resume(self, offset: float, rate: float):
        if self._proc and self._proc.poll() is None and self._paused and rate == self._rate:
            try:
                os.kill(self._proc.pid, signal.SIGCONT)
                self._paused = False
                return
            except ProcessLookupError:
                pass
        self._start(offset, rate)

    def pause(self):
        if self._proc and self._proc.poll() is None and not self._paused:
            try:
                os.kill(self._proc.pid, signal.SIGSTOP)
                self._paused = True
            except ProcessLookupError:
                pass

    def set_rate(self, offset: float, rate: float):
        if rate != self._rate:
            self._start(offset, rate)

    def stop(self):
        """Terminate afplay and wait for the process to clean up."""
        if self._proc and self._proc.poll() is None:
            if self._paused:
                # A stopped process won't act on SIGTERM until continued
                try:
                    os.kill(self._proc.pid, signal.SIGCONT)
                except ProcessLookupError:
                    pass
            self._proc.terminate()
            try:
                self._proc.wait(timeout=2)
            except subprocess.TimeoutExpired:
                self._proc.kill()
        self._proc = None
        self._paused = False
        if self._watcher is not None and not self._watcher.done():
            self._watcher.cancel()
        self._watcher = None
        self._cleanup_temp()

    def close(self):
        self.stop()
        if self._source:
            self._source.unlink(missing_ok=True)
            self._source = None

    def _start(self, offset: float, rate: float):
        if self._source is None:
            raise PlaybackError("No audio loaded into afplay sink")
        self.stop()
        path = self._trimmed(offset) if offset > 0 else self._source
        try:
            self._proc = subprocess.Popen(
                ["afplay", "-r", f"{rate:g}", str(path)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            raise PlaybackError(f"afplay failed to start: {e}") from e
        self._rate = rate
        self._paused = False
        self._watch(self._proc)

    def _watch(self, proc: subprocess.Popen):
        """Report afplay exiting by itself (end of file) through on_finished."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; afplay exit is not watched")
            return

        async def _wait_exit():
            code = await loop.run_in_executor(None, proc.wait)
            # stop() and restarts clear or replace _proc first
            if proc is not self._proc:
                return
            logger.debug("afplay finished (exit %s)", code)
            self._proc = None
            self._watcher = None
            self._cleanup_temp()
            if self.on_finished is not None:
                self.on_finished()

        self._watcher = loop.create_task(_wait_exit())

    def _trimmed(self, offset: float) -> Path:
        """Copy of the source starting at offset seconds (afplay can't seek)."""
        fd, name = tempfile.mkstemp(suffix=".wav", prefix="narrator-seek-")
        os.close(fd)
        tmp = Path(name)
        try:
            subprocess.run(
                ["ffmpeg", "-y", "-loglevel", "error",
                 "-ss", f"{offset:.3f}", "-i", str(self._source),
                 "-f", "wav", str(tmp)],
                capture_output=True, timeout=15,
            )
        except (OSError, subprocess.SubprocessError) as e:
            tmp.unlink(missing_ok=True)
            raise PlaybackError(f"ffmpeg seek failed: {e}") from e
        if not tmp.exists() or tmp.stat().st_size < 100:
            tmp.unlink(missing_ok=True)
            raise PlaybackError(f"ffmpeg produced no audio at {offset:.1f}s")
        self._temp_file = tmp
        return tmp

    def _cleanup_temp(self):
        """Remove any temporary seek file."""
        if self._temp_file:
            try:
                self._temp_file.unlink(missing_ok=True)
            except OSError:
                pass
            self._temp_file = None


def make_sink(name: str = AUDIO_OUTPUT):
    if name == "afplay":
        return AfplaySink()
    if name not in ("", "none", "null"):
        logger.warning("Unknown AUDIO_OUTPUT %r — using silent output", name)
    return NullSink()


# ── Controller ───────────────────────────────────────────────────────────────

class Player:
    def __init__(
        self,
        sink=None,
        clock: Callable[[], float] = time.monotonic,
        call_later: Optional[Callable] = None,
    ):
        self.events = EventEmitter()
        self._sink = sink if sink is not None else NullSink()
        self._sink.on_finished = self._sink_finished
        self._clock = clock
        self._call_later = call_later
        self._session: Optional[Session] = None
        self._status = PlaybackStatus.IDLE
        self._rate: float = snap_rate(DEFAULT_RATE)
        self._duration: float = 0.0
        self._offset: float = 0.0   # media position at _anchor
        self._anchor: float = 0.0   # clock reading when _offset was taken
        self._end_timer = None
        self._timer_token = 0

    # ── Read side ────────────────────────────────────────────────────────────

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def loaded(self) -> bool:
        return self._session is not None

    @property
    def status(self) -> PlaybackStatus:
        return self._status

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def duration(self) -> float:
        return self._duration

    def is_playing(self) -> bool:
        return self._status is PlaybackStatus.PLAYING

    @property
    def current_time(self) -> float:
        """Seconds into the audio, accounting for pauses and speed changes."""
        if self._status is not PlaybackStatus.PLAYING:
            return self._offset
        t = self._offset + (self._clock() - self._anchor) * self._rate
        if self._duration > 0:
            t = min(t, self._duration)
        return max(t, 0.0)

    # ── Playback ─────────────────────────────────────────────────────────────

    def load(self, session: Session):
        """Bind a session, replacing whatever was loaded before."""
        self.dispose()
        try:
            measured = self._sink.open(session.audio)
        except OSError as e:
            raise PlaybackError(f"Could not open audio for {session.content_id}: {e}") from e

        duration = session.duration
        if measured and measured > 0:
            if abs(measured - session.duration) > 0.05:
                logger.info(
                    "Duration corrected for %s: %.2fs → %.2fs",
                    session.content_id, session.duration, measured,
                )
            duration = measured
        if duration <= 0:
            # Without a length there is no end-of-audio timer
            self._sink.close()
            raise PlaybackError(f"Unknown audio duration for {session.content_id}")

        self._session = session
        self._duration = duration
        self._offset = 0.0
        self._status = PlaybackStatus.PAUSED

    def play(self) -> bool:
        """Start or resume. Returns False if already playing."""
        if self._session is None:
            raise NotReadyError("No session loaded")
        if self._status is PlaybackStatus.PLAYING:
            return False
        if self._status is PlaybackStatus.ENDED:
            self._offset = 0.0

        try:
            self._sink.resume(self._offset, self._rate)
        except PlaybackError:
            self._status = PlaybackStatus.PAUSED
            raise

        self._anchor = self._clock()
        self._status = PlaybackStatus.PLAYING
        self._arm_end_timer()
        self.events.emit("playing", True)
        return True

    def pause(self) -> bool:
        """Freeze position and suspend output. Returns False if not playing."""
        if self._status is not PlaybackStatus.PLAYING:
            return False
        self._offset = self.current_time
        self._cancel_end_timer()
        self._status = PlaybackStatus.PAUSED
        self._sink.pause()
        self.events.emit("playing", False)
        return True

    def set_rate(self, rate) -> float:
        """Change speed now. The position at this instant is unchanged."""
        rate = snap_rate(rate)
        if rate == self._rate:
            return rate
        if self._status is not PlaybackStatus.PLAYING:
            self._rate = rate
            return rate

        # Re-anchor so time already played is counted at the old speed
        self._offset = self.current_time
        self._anchor = self._clock()
        self._rate = rate
        self._arm_end_timer()
        try:
            self._sink.set_rate(self._offset, rate)
        except PlaybackError:
            self.pause()
            raise
        return rate

    def dispose(self):
        """Release the audio resource. Safe to call any number of times."""
        was_playing = self._status is PlaybackStatus.PLAYING
        self._cancel_end_timer()
        try:
            self._sink.close()
        finally:
            self._session = None
            self._status = PlaybackStatus.IDLE
            self._offset = 0.0
            self._duration = 0.0
            if was_playing:
                self.events.emit("playing", False)

    # ── End of audio ─────────────────────────────────────────────────────────

    def _arm_end_timer(self):
        self._cancel_end_timer()
        if self._duration <= 0:
            return
        delay = max(0.0, (self._duration - self._offset) / self._rate)
        token = self._timer_token
        call_later = self._call_later or asyncio.get_running_loop().call_later
        self._end_timer = call_later(delay, self._on_end, token)

    def _cancel_end_timer(self):
        self._timer_token += 1
        if self._end_timer is not None:
            self._end_timer.cancel()
            self._end_timer = None

    def _sink_finished(self):
        """The output ran out of audio before (or without) the timer."""
        self._on_end(self._timer_token)

    def _on_end(self, token: int):
        if token != self._timer_token or self._status is not PlaybackStatus.PLAYING:
            return
        self._cancel_end_timer()
        self._offset = 0.0
        self._status = PlaybackStatus.ENDED
        self._sink.stop()
        logger.debug("Playback reached end of %s", self._session.content_id)
        self.events.emit("playing", False)
        self.events.emit("ended")
