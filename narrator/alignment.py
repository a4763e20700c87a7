"""Map the backend's spoken words back onto the lesson text.

The speech backend returns its own word list, which doesn't always split the
text the way the lesson does (punctuation, hyphenation, numbers read aloud).
Both sequences are laid out on a shared axis of normalized characters and each
spoken word is assigned to the lesson word under its midpoint, or the nearest
one if none covers it.
"""
import re
from bisect import bisect_left, bisect_right

TextPosition = tuple[int, int]  # (paragraph index, word index within paragraph)


def _normalize(w: str) -> str:
    """Lowercase and strip non-alphanumeric chars for word matching."""
    return re.sub(r"[^\w]", "", w.lower())


def split_paragraphs(text: str) -> list[list[str]]:
    """Paragraphs are separated by blank lines; words by whitespace."""
    return [p.split() for p in text.split("\n\n")]


def map_spoken_words(text: str, spoken: list[str]) -> dict[int, TextPosition]:
    """Return {spoken word index: (paragraph, word)} for every spoken word.

    Empty when the text has no words.
    """
    positions: list[TextPosition] = []
    starts: list[int] = []
    ends: list[int] = []
    pos = 0
    for p_idx, words in enumerate(split_paragraphs(text)):
        for w_idx, word in enumerate(words):
            positions.append((p_idx, w_idx))
            starts.append(pos)
            pos += len(_normalize(word))
            ends.append(pos)

    if not positions:
        return {}

    mids = [(s + e) / 2 for s, e in zip(starts, ends)]
    mapping: dict[int, TextPosition] = {}
    pos = 0
    for i, word in enumerate(spoken):
        n = len(_normalize(word))
        mid = pos + n / 2
        pos += n

        # Lesson word whose span covers the midpoint
        k = bisect_right(starts, mid) - 1
        if 0 <= k < len(positions) and starts[k] <= mid < ends[k]:
            mapping[i] = positions[k]
            continue

        # Otherwise the lesson word with the nearest midpoint
        j = bisect_left(mids, mid)
        candidates = [c for c in (j - 1, j) if 0 <= c < len(positions)]
        best = min(candidates, key=lambda c: abs(mids[c] - mid))
        mapping[i] = positions[best]

    return mapping
