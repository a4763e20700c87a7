"""Lesson Narrator — entry point."""
import asyncio
import logging
import sys
from pathlib import Path

import click
from rich import print as rprint

from narrator.config import LOG_LEVEL, TTS_EXPERIENCE_ID, WEB_PORT
from narrator.engine import ReaderEngine
from narrator.preflight import run_preflight
from narrator.ui import ReadAlongView, console, print_header


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


@click.group()
@click.option("--log-level", default=LOG_LEVEL, show_default=True, help="Log level.")
def cli(log_level: str):
    """Word-highlighted lesson playback."""
    _configure_logging(log_level)


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=WEB_PORT, type=int, show_default=True)
def serve(host: str, port: int):
    """Run the WebSocket bridge for a browser UI."""
    import uvicorn

    from narrator.web.server import create_app

    uvicorn.run(create_app(), host=host, port=port, log_level="info")


@cli.command()
@click.argument("lesson_id")
@click.argument("text_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--experience", default=TTS_EXPERIENCE_ID, show_default=True)
@click.option("--rate", default=1.0, type=float, show_default=True, help="0.75, 1, 1.25, 1.5 or 2.")
@click.option("--skip-preflight", is_flag=True)
def read(lesson_id: str, text_file: Path, experience: str, rate: float, skip_preflight: bool):
    """Play one lesson in the terminal with live highlighting."""
    text = text_file.read_text(encoding="utf-8")
    try:
        ok = asyncio.run(_read(lesson_id, text, experience, rate, skip_preflight))
    except KeyboardInterrupt:
        rprint("\n\n  [bold]Stopped.[/bold]\n")
        ok = True
    sys.exit(0 if ok else 1)


async def _read(lesson_id: str, text: str, experience: str, rate: float, skip_preflight: bool) -> bool:
    print_header()
    if not skip_preflight and not await run_preflight():
        return False

    engine = ReaderEngine(experience_id=experience)
    errors: list[dict] = []
    engine.events.on("error", errors.append)
    engine.attach(lesson_id, text)
    engine.set_rate(rate)

    try:
        with ReadAlongView(engine, title=lesson_id) as view:
            play_task = asyncio.create_task(engine.play())
            await asyncio.sleep(0)  # let play() move the engine to loading
            await view.run_until_done()
            await play_task
    finally:
        await engine.aclose()

    for err in errors:
        console.print(f"  [red]✗[/red] {err['message']}")
    return not errors


if __name__ == "__main__":
    cli()
