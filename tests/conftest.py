"""Shared fixtures."""
import pytest

from narrator import errors
from narrator.engine import ReaderEngine
from narrator.frames import FrameScheduler
from narrator.player import Player
from tests.helpers import FakeBackend, FakeClock, make_session


@pytest.fixture(autouse=True)
def _errors_log(tmp_path, monkeypatch):
    monkeypatch.setattr(errors, "OUTPUT_DIR", tmp_path)
    monkeypatch.setattr(errors, "ERRORS_LOG", tmp_path / "errors.log")
    monkeypatch.setattr(errors, "DEV_MODE", False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return FakeBackend({
        "lesson-a": make_session("lesson-a"),
        "lesson-b": make_session("lesson-b", words=[("Second", 0.2, 0.6), ("lesson", 0.7, 1.1)], duration=1.4),
    })


@pytest.fixture
def make_player(clock):
    def _make(sink=None):
        return Player(sink=sink, clock=clock, call_later=clock.call_later)
    return _make


@pytest.fixture
def make_engine(clock, backend, make_player):
    def _make(fetch=None, sink=None):
        return ReaderEngine(
            fetch=fetch or backend.fetch,
            player=make_player(sink),
            frames=FrameScheduler(fps=50, call_later=clock.call_later),
        )
    return _make
