import pytest

from narrator.errors import NotReadyError, PlaybackError
from narrator.models import PlaybackStatus
from narrator.player import AfplaySink, NullSink, make_sink, snap_rate
from tests.helpers import make_session, of, record


class SpySink(NullSink):
    def __init__(self, measured=None, fail_on=()):
        self.calls = []
        self.measured = measured
        self.fail_on = set(fail_on)

    def _log(self, name, *args):
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise PlaybackError(f"{name} failed")

    def open(self, audio):
        self._log("open")
        return self.measured

    def resume(self, offset, rate):
        self._log("resume", offset, rate)

    def pause(self):
        self._log("pause")

    def set_rate(self, offset, rate):
        self._log("set_rate", offset, rate)

    def stop(self):
        self._log("stop")

    def close(self):
        self._log("close")


@pytest.mark.parametrize("requested, applied", [
    (1, 1.0),
    (1.3, 1.25),
    ("1.5", 1.5),
    (3, 2.0),
    (0.1, 0.75),
])
def test_snap_rate(requested, applied):
    assert snap_rate(requested) == applied


@pytest.mark.parametrize("bad", ["fast", None, float("nan")])
def test_snap_rate_rejects_non_numbers(bad):
    with pytest.raises(ValueError):
        snap_rate(bad)


def test_make_sink_falls_back_to_silent():
    assert isinstance(make_sink("none"), NullSink)
    assert isinstance(make_sink("speakers"), NullSink)


def test_afplay_sink_needs_audio_before_playing():
    sink = make_sink("afplay")
    assert isinstance(sink, AfplaySink)
    with pytest.raises(PlaybackError):
        sink.resume(0.0, 1.0)
    sink.close()


def test_play_without_session_raises(make_player):
    player = make_player()
    with pytest.raises(NotReadyError):
        player.play()


def test_load_leaves_player_paused_at_zero(make_player):
    player = make_player()
    player.load(make_session())
    assert player.loaded
    assert player.status is PlaybackStatus.PAUSED
    assert player.current_time == 0.0
    assert player.duration == 1.5


def test_measured_duration_wins(make_player):
    player = make_player(SpySink(measured=2.25))
    player.load(make_session(duration=1.5))
    assert player.duration == 2.25


def test_position_follows_clock(clock, make_player):
    player = make_player()
    player.load(make_session())
    seen = record(player.events, names=("playing",))

    assert player.play()
    clock.advance(0.4)
    assert player.current_time == pytest.approx(0.4)
    assert player.is_playing()
    assert of(seen, "playing") == [True]


def test_second_play_is_a_no_op(make_player):
    sink = SpySink()
    player = make_player(sink)
    player.load(make_session())
    seen = record(player.events, names=("playing",))

    assert player.play()
    assert not player.play()
    assert of(seen, "playing") == [True]
    assert [c[0] for c in sink.calls].count("resume") == 1


def test_pause_freezes_position(clock, make_player):
    player = make_player()
    player.load(make_session())
    player.play()
    clock.advance(0.3)

    assert player.pause()
    clock.advance(5.0)
    assert player.current_time == pytest.approx(0.3)
    assert not player.pause()

    player.play()
    clock.advance(0.2)
    assert player.current_time == pytest.approx(0.5)


def test_rate_change_keeps_position(clock, make_player):
    sink = SpySink()
    player = make_player(sink)
    player.load(make_session())
    player.play()
    clock.advance(0.4)

    assert player.set_rate(2) == 2.0
    assert player.current_time == pytest.approx(0.4)
    clock.advance(0.1)
    assert player.current_time == pytest.approx(0.6)
    assert sink.calls[-1] == ("set_rate", pytest.approx(0.4), 2.0)


def test_rate_change_while_paused_applies_on_resume(clock, make_player):
    player = make_player()
    player.load(make_session())
    player.set_rate(1.5)
    player.play()
    clock.advance(0.2)
    assert player.current_time == pytest.approx(0.3)


def test_end_of_audio(clock, make_player):
    sink = SpySink()
    player = make_player(sink)
    player.load(make_session(duration=1.0))
    seen = record(player.events, names=("playing", "ended"))

    player.play()
    clock.advance(1.2)

    assert player.status is PlaybackStatus.ENDED
    assert player.current_time == 0.0
    assert seen == [("playing", True), ("playing", False), ("ended",)]
    assert ("stop",) in sink.calls


def test_end_timer_follows_rate(clock, make_player):
    player = make_player()
    player.load(make_session(duration=1.0))
    seen = record(player.events, names=("ended",))

    player.play()
    clock.advance(0.2)
    player.set_rate(2)
    clock.advance(0.39)
    assert seen == []
    clock.advance(0.02)
    assert seen == [("ended",)]


def test_play_after_end_restarts(clock, make_player):
    player = make_player()
    player.load(make_session(duration=1.0))
    player.play()
    clock.advance(1.5)

    assert player.play()
    assert player.current_time == 0.0
    clock.advance(0.25)
    assert player.current_time == pytest.approx(0.25)


def test_paused_player_never_ends(clock, make_player):
    player = make_player()
    player.load(make_session(duration=1.0))
    seen = record(player.events, names=("ended",))
    player.play()
    clock.advance(0.5)
    player.pause()
    clock.advance(10)
    assert seen == []


def test_dispose_is_idempotent(clock, make_player):
    sink = SpySink()
    player = make_player(sink)
    player.load(make_session())
    seen = record(player.events, names=("playing", "ended"))
    player.play()

    player.dispose()
    player.dispose()
    clock.advance(5)

    assert not player.loaded
    assert player.status is PlaybackStatus.IDLE
    assert seen == [("playing", True), ("playing", False)]
    assert clock.pending() == 0
    with pytest.raises(NotReadyError):
        player.play()


def test_load_replaces_previous_session(make_player):
    sink = SpySink()
    player = make_player(sink)
    player.load(make_session("lesson-a"))
    player.load(make_session("lesson-b"))
    assert player.session.content_id == "lesson-b"
    assert [c[0] for c in sink.calls] == ["close", "open", "close", "open"]


def test_sink_failure_on_play(make_player):
    player = make_player(SpySink(fail_on={"resume"}))
    player.load(make_session())
    seen = record(player.events, names=("playing",))

    with pytest.raises(PlaybackError):
        player.play()
    assert player.status is PlaybackStatus.PAUSED
    assert seen == []


def test_sink_failure_on_rate_change_pauses(clock, make_player):
    player = make_player(SpySink(fail_on={"set_rate"}))
    player.load(make_session())
    player.play()
    clock.advance(0.3)

    with pytest.raises(PlaybackError):
        player.set_rate(2)
    assert player.status is PlaybackStatus.PAUSED
    assert player.current_time == pytest.approx(0.3)


def test_output_finishing_ends_playback(clock, make_player):
    sink = SpySink()
    player = make_player(sink)
    player.load(make_session(duration=10.0))
    seen = record(player.events, names=("playing", "ended"))

    player.play()
    clock.advance(0.5)
    sink.on_finished()

    assert player.status is PlaybackStatus.ENDED
    assert player.current_time == 0.0
    clock.advance(20)
    assert seen == [("playing", True), ("playing", False), ("ended",)]
    assert clock.pending() == 0


def test_output_finishing_while_paused_is_ignored(clock, make_player):
    sink = SpySink()
    player = make_player(sink)
    player.load(make_session(duration=10.0))
    player.play()
    clock.advance(0.5)
    player.pause()

    sink.on_finished()
    assert player.status is PlaybackStatus.PAUSED
    assert player.current_time == pytest.approx(0.5)


def test_unknown_duration_is_refused(make_player):
    sink = SpySink()
    player = make_player(sink)
    with pytest.raises(PlaybackError):
        player.load(make_session(words=[], duration=0.0))
    assert not player.loaded
    assert sink.calls[-1] == ("close",)


def test_measured_duration_rescues_missing_length(clock, make_player):
    player = make_player(SpySink(measured=2.0))
    player.load(make_session(words=[], duration=0.0))
    seen = record(player.events, names=("ended",))
    player.play()
    clock.advance(2.1)
    assert seen == [("ended",)]
