"""Test helpers: a fake clock that drives player timers and frames, and a
scriptable speech backend."""
import asyncio
import heapq

from narrator.models import Session, TimingTable, WordTiming


class _Timer:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Monotonic time source plus a call_later that fires on advance()."""

    def __init__(self):
        self.now = 0.0
        self._timers: list = []
        self._seq = 0

    def __call__(self) -> float:
        return self.now

    def call_later(self, delay, callback, *args):
        timer = _Timer(self.now + delay, callback, args)
        self._seq += 1
        heapq.heappush(self._timers, (timer.when, self._seq, timer))
        return timer

    def pending(self) -> int:
        return sum(1 for _, _, t in self._timers if not t.cancelled)

    def advance(self, seconds: float):
        target = self.now + seconds
        while self._timers and self._timers[0][0] <= target + 1e-9:
            when, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self.now = max(self.now, when)
            timer.callback(*timer.args)
        self.now = target


def make_session(content_id="lesson-a", words=None, duration=1.5, audio=b"ID3fake-mp3"):
    if words is None:
        words = [("Hello", 0.0, 0.5), ("world", 0.5, 1.0)]
    table = TimingTable(WordTiming(w, s, e) for w, s, e in words)
    return Session(content_id=content_id, audio=audio, duration=duration, timings=table)


class FakeBackend:
    """Stands in for SpeechClient.generate. A gate (asyncio.Event) holds a
    lesson's response until set; an Exception value is raised instead."""

    def __init__(self, sessions=None):
        self.sessions = sessions or {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    async def fetch(self, content_id):
        self.calls.append(content_id)
        gate = self.gates.get(content_id)
        if gate is not None:
            await gate.wait()
        result = self.sessions[content_id]
        if isinstance(result, Exception):
            raise result
        return result


def record(emitter, names=("word_index", "playing", "timings_loaded", "status", "error")):
    """Collect (event, *args) tuples from an EventEmitter."""
    seen = []
    for name in names:
        emitter.on(name, lambda *args, n=name: seen.append((n, *args)))
    return seen


def of(seen, name):
    return [args[0] if len(args) == 1 else args for n, *args in seen if n == name]


async def settle(rounds: int = 5):
    """Let pending tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)

