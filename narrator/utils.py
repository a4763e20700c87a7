"""Small formatting helpers."""


def fmt_time(seconds: float) -> str:
    m, s = divmod(int(max(0.0, seconds)), 60)
    return f"{m}:{s:02d}"


def fmt_rate(rate: float) -> str:
    """1.0 → '1x', 1.25 → '1.25x'."""
    return f"{rate:g}x"
