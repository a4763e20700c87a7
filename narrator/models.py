"""Module 2 — Data model: word timings, generated sessions, playback state.

A timing table is the backend's list of {word, startTime, endTime} intervals,
in seconds, sorted by start time. Tables are never mutated after parsing.
"""
import base64
import binascii
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from .errors import GenerationError


@dataclass(frozen=True)
class WordTiming:
    word: str
    start_time: float
    end_time: float

    @classmethod
    def from_dict(cls, data: dict) -> "WordTiming":
        return cls(
            word=str(data.get("word", "")),
            start_time=float(data["startTime"]),
            end_time=float(data["endTime"]),
        )


class TimingTable:
    """Immutable, ordered word-interval table with index resolution."""

    def __init__(self, timings=()):
        self._timings: tuple[WordTiming, ...] = tuple(timings)
        self._starts: list[float] = [w.start_time for w in self._timings]

    @classmethod
    def from_list(cls, items: list[dict]) -> "TimingTable":
        return cls(WordTiming.from_dict(item) for item in items or [])

    def __len__(self) -> int:
        return len(self._timings)

    def __iter__(self) -> Iterator[WordTiming]:
        return iter(self._timings)

    def __getitem__(self, index: int) -> WordTiming:
        return self._timings[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, TimingTable):
            return NotImplemented
        return self._timings == other._timings

    def __hash__(self) -> int:
        return hash(self._timings)

    def __repr__(self) -> str:
        return f"TimingTable({len(self._timings)} words)"

    @property
    def words(self) -> list[str]:
        return [w.word for w in self._timings]

    def is_ordered(self) -> bool:
        """True if start times never decrease and no word ends before it starts."""
        if any(w.end_time < w.start_time for w in self._timings):
            return False
        return all(a <= b for a, b in zip(self._starts, self._starts[1:]))

    def resolve(self, t: float) -> int:
        """Map a playback position to the index of the word being spoken.

        -1 before the first word. Otherwise the last word whose start time has
        been reached: inside its interval, in the silence after it, and after
        the final word. A position equal to both a word's end and the next
        word's start belongs to the next word.

        On a malformed table the bisection is applied as-is; the result may be
        wrong but this never raises.
        """
        if not self._timings or t < self._starts[0]:
            return -1
        return bisect_right(self._starts, t) - 1


@dataclass(frozen=True)
class Session:
    """One generated audio asset plus its timing table, for one lesson."""
    content_id: str
    audio: bytes = field(repr=False)
    duration: float
    timings: TimingTable

    @classmethod
    def from_response(cls, content_id: str, payload: dict) -> "Session":
        """Build a session from a {audioBase64, duration, wordTimings} response."""
        if not isinstance(payload, dict):
            raise GenerationError("Speech backend returned an unexpected payload")

        encoded = payload.get("audioBase64") or ""
        if encoded.startswith("data:"):
            # data:audio/mp3;base64,....
            encoded = encoded.partition("base64,")[2]
        if not encoded:
            raise GenerationError("Speech backend returned no audio")
        try:
            audio = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise GenerationError(f"Speech backend returned undecodable audio: {e}") from e

        try:
            timings = TimingTable.from_list(payload.get("wordTimings") or [])
            duration = float(payload.get("duration") or 0.0)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise GenerationError(f"Speech backend returned malformed timings: {e}") from e

        if duration <= 0 and len(timings):
            duration = timings[len(timings) - 1].end_time
        if duration <= 0:
            raise GenerationError("Speech backend returned no duration and no word timings")

        return cls(content_id=content_id, audio=audio, duration=duration, timings=timings)


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


@dataclass(frozen=True)
class PlaybackState:
    """Point-in-time view of the engine. current_word_index is -1 when no word
    is attributable (before the first word, after a reset, after the end)."""
    status: PlaybackStatus = PlaybackStatus.IDLE
    current_time: float = 0.0
    rate: float = 1.0
    current_word_index: int = -1

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "current_time": round(self.current_time, 3),
            "rate": self.rate,
            "current_word_index": self.current_word_index,
        }
