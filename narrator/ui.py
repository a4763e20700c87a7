"""Terminal read-along view — lesson text with the spoken word highlighted."""
import asyncio
from typing import Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from .alignment import TextPosition, split_paragraphs
from .config import APP_VERSION
from .models import PlaybackStatus
from .utils import fmt_rate, fmt_time

console = Console()

_STATUS_LABELS = {
    PlaybackStatus.IDLE: "Listen to this lesson",
    PlaybackStatus.LOADING: "Generating audio...",
    PlaybackStatus.PLAYING: "Now playing",
    PlaybackStatus.PAUSED: "Paused",
    PlaybackStatus.ENDED: "Finished",
}


def print_header():
    console.print(
        f"\n  [bold cyan]♪  Lesson Narrator[/bold cyan]"
        f"  [dim]v{APP_VERSION}[/dim]"
    )


def render_lesson(text: str, position: Optional[TextPosition] = None) -> Text:
    """Lesson text with the word at position (paragraph, word) highlighted."""
    out = Text()
    for p_idx, words in enumerate(split_paragraphs(text)):
        if p_idx:
            out.append("\n\n")
        for w_idx, word in enumerate(words):
            if w_idx:
                out.append(" ")
            if position == (p_idx, w_idx):
                out.append(word, style="bold black on yellow")
            else:
                out.append(word)
    return out


def render_progress(elapsed: float, duration: float, rate: float, bar_len: int = 30) -> Text:
    if duration > 0:
        filled = min(bar_len, int(elapsed / duration * bar_len))
    else:
        filled = 0
    line = Text("  ")
    line.append("━" * filled, style="green")
    line.append("·" * (bar_len - filled), style="dim")
    times = f"{fmt_time(elapsed)} / {fmt_time(duration)}" if duration > 0 else "-:-- / -:--"
    line.append(f"  {times}  {fmt_rate(rate)}", style="dim")
    return line


class ReadAlongView:
    """Redraws a rich Live panel whenever the engine's word or status changes."""

    def __init__(self, engine, title: str = ""):
        self.engine = engine
        self.title = title or (engine.content_id or "")
        self._live: Optional[Live] = None
        self._unhooks = []

    def render(self) -> Panel:
        engine = self.engine
        position = engine.text_position(engine.word_index) if engine.word_index >= 0 else None
        body = Group(
            render_lesson(engine.text, position),
            Text(""),
            render_progress(engine.player.current_time, engine.player.duration, engine.player.rate),
        )
        return Panel(
            body,
            title=f"[bold cyan]♫[/bold cyan] {self.title}",
            subtitle=_STATUS_LABELS.get(engine.status, ""),
            border_style="cyan",
            padding=(0, 1),
        )

    def refresh(self, *_):
        if self._live is not None:
            self._live.update(self.render())

    def __enter__(self):
        self._live = Live(self.render(), console=console, refresh_per_second=10)
        self._live.__enter__()
        for event in ("word_index", "status", "duration", "rate"):
            self._unhooks.append(self.engine.events.on(event, self.refresh))
        return self

    def __exit__(self, *exc):
        for unhook in self._unhooks:
            unhook()
        self._unhooks = []
        live, self._live = self._live, None
        return live.__exit__(*exc)

    async def run_until_done(self, poll: float = 0.5):
        """Keep the progress bar moving until playback ends or fails."""
        while self.engine.status in (PlaybackStatus.LOADING, PlaybackStatus.PLAYING):
            self.refresh()
            await asyncio.sleep(poll)
        self.refresh()
