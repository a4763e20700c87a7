"""Startup Preflight Check"""
import importlib
import shutil
from typing import NamedTuple

import httpx
from rich.console import Console
from rich.table import Table

from .config import APP_VERSION, AUDIO_OUTPUT, TTS_HOST

console = Console()

# (import name, distribution name)
_REQUIRED = (
    ("httpx", "httpx"),
    ("rich", "rich"),
    ("dotenv", "python-dotenv"),
    ("starlette", "starlette"),
    ("uvicorn", "uvicorn"),
)


class CheckResult(NamedTuple):
    ok: bool
    detail: str
    fix: str = ""


async def run_preflight() -> bool:
    """Run every startup check and print a report. True only if all pass."""
    console.print(f"\n  [bold]♪  Lesson Narrator v{APP_VERSION}[/bold] — preflight check\n")

    checks = [
        ("Python deps", _check_python_deps),
        ("Speech backend", _check_tts_backend),
        ("Audio output", _check_audio_output),
    ]

    table = Table(show_header=False, box=None, padding=(0, 2))
    fixes: list[tuple[str, str]] = []
    for label, check in checks:
        result = await check()
        mark = "[green]✓[/green]" if result.ok else "[red]✗[/red]"
        colour = "green" if result.ok else "red"
        table.add_row(label, mark, f"[{colour}]{result.detail}[/{colour}]")
        if not result.ok and result.fix:
            fixes.append((label, result.fix))
    console.print(table)

    for label, fix in fixes:
        console.print(f"\n  [yellow]Fix for {label}:[/yellow]")
        for line in fix.strip().splitlines():
            console.print(f"    {line}")
    console.print("")
    return not fixes


async def _check_python_deps() -> CheckResult:
    missing, found = [], []
    for module, dist in _REQUIRED:
        try:
            mod = importlib.import_module(module)
        except ImportError:
            missing.append(dist)
            continue
        found.append(f"{dist} {getattr(mod, '__version__', '')}".strip())

    if missing:
        return CheckResult(False, f"missing: {', '.join(missing)}", "Run: pip install -e .")
    return CheckResult(True, ", ".join(found[:2]) + ", ...")


async def _check_tts_backend() -> CheckResult:
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            r = await client.get(f"{TTS_HOST}/api/health")
    except httpx.HTTPError:
        return CheckResult(False, "not responding", (
            f"Nothing answered at {TTS_HOST}.\n"
            "Start the course server, or point TTS_HOST in .env at it."
        ))
    if r.status_code != 200:
        return CheckResult(False, f"HTTP {r.status_code}", f"Check the backend logs at {TTS_HOST}")
    return CheckResult(True, f"running at {TTS_HOST.split('://', 1)[-1]}")


async def _check_audio_output() -> CheckResult:
    if AUDIO_OUTPUT != "afplay":
        return CheckResult(True, f"silent (AUDIO_OUTPUT={AUDIO_OUTPUT or 'none'})")
    missing = [tool for tool in ("afplay", "afinfo", "ffmpeg") if shutil.which(tool) is None]
    if missing:
        return CheckResult(False, f"missing: {', '.join(missing)}", (
            "afplay/afinfo ship with macOS; ffmpeg: brew install ffmpeg\n"
            "Or set AUDIO_OUTPUT=none in .env for silent playback."
        ))
    return CheckResult(True, "afplay + ffmpeg")
