"""Map narrative progress onto a window of the novel.

A step of a game maps linearly onto the text: step 3 of 10 centres the window
30% of the way through. The window is 10% of the novel, capped at 50,000
characters and optionally floored by `min_window` (a floor at least as long
as the novel searches it whole). Its edges are moved onto natural boundaries:

  start  →  the nearest chapter marker (3,000 before .. 1,000 after), else
            forward to the next paragraph break or sentence end (≤500)
  end    →  just before the next chapter marker (≤3,000 ahead), else
            back to the last paragraph break or sentence end (≤500)

Chapter markers: "Chapter 12", "CHAPTER XII", or a blank line followed by a
roman numeral and a period.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from book_quotes.models import DialogueContext

WINDOW_FRACTION = 0.10
MAX_WINDOW = 50_000
MIN_WINDOW = 1

MARKER_SEARCH_BEFORE = 5000
MARKER_ACCEPT_BEFORE = 3000
MARKER_ACCEPT_AFTER = 1000
MARKER_SEARCH_AHEAD = 3000
BOUNDARY_SEARCH = 500

PARAGRAPH_BREAK = "\n\n"

CHAPTER_MARKER = re.compile(
    r"(?i:chapter)\s+\d+"
    r"|CHAPTER\s+[IVXLCDM]+\b"
    r"|\n[ \t]*\n\s*[IVXLCDM]+\."
)
_CHAPTER_DIGITS = re.compile(r"chapter\s+(\d+)", re.IGNORECASE)
_CHAPTER_ROMAN = re.compile(r"CHAPTER\s+([IVXLCDM]+)\b|\n[ \t]*\n\s*([IVXLCDM]+)\.")
_SENTENCE_END = re.compile(r"[.!?][\"'”’)]*\s+")
_SENTENCE_TERMINATOR = re.compile(r"[.!?][\"'”’)]*(?=\s)")

_ROMAN_VALUES = {"I": 1, "V": 5, "X": 10, "L": 50, "C": 100, "D": 500, "M": 1000}

# (upper bound of progress, label)
SCENE_BUCKETS = [
    (0.2, "Opening"),
    (0.4, "Early-middle"),
    (0.6, "Middle"),
    (0.8, "Late-middle"),
]


def roman_to_int(numeral: str) -> int:
    """Convert a roman numeral ("XIV" → 14). Raises ValueError on bad symbols."""
    total = 0
    values = []
    for symbol in numeral.upper():
        if symbol not in _ROMAN_VALUES:
            raise ValueError(f"Not a roman numeral: {numeral!r}")
        values.append(_ROMAN_VALUES[symbol])
    for i, value in enumerate(values):
        if i + 1 < len(values) and value < values[i + 1]:
            total -= value
        else:
            total += value
    return total


def chapter_number(text: str) -> int | None:
    """First chapter number mentioned in `text`; arabic digits win over roman."""
    match = _CHAPTER_DIGITS.search(text)
    if match:
        return int(match.group(1))
    match = _CHAPTER_ROMAN.search(text)
    if match:
        return roman_to_int(match.group(1) or match.group(2))
    return None


def scene_description(
    progress: float, chapter: int | None, names: list[str]
) -> str:
    label = "Concluding"
    for bound, bucket in SCENE_BUCKETS:
        if progress < bound:
            label = bucket
            break
    description = f"{label} section of the novel"
    if chapter:
        description += f" (around Chapter {chapter})"
    if names:
        description += " featuring " + ", ".join(names[:3])
    return description


# ---------------------------------------------------------------------------
# Boundary helpers
# ---------------------------------------------------------------------------

def _marker_start(match: re.Match[str]) -> int:
    """Offset of the marker text itself, skipping the blank line it may begin with."""
    text = match.group(0)
    return match.start() + len(text) - len(text.lstrip())


def chapter_marker_near(corpus: str, position: int) -> int | None:
    """Closest chapter marker at or before `position` (≤3,000 back), else the
    first one shortly after it (≤1,000 ahead)."""
    lo = max(0, position - MARKER_SEARCH_BEFORE)
    hi = min(len(corpus), position + MARKER_ACCEPT_AFTER)
    before: int | None = None
    after: int | None = None
    for match in CHAPTER_MARKER.finditer(corpus, lo, hi):
        start = _marker_start(match)
        if position - MARKER_ACCEPT_BEFORE <= start <= position:
            before = start
        elif position < start and after is None:
            after = start
    return before if before is not None else after


def next_chapter_marker(corpus: str, position: int) -> int | None:
    hi = min(len(corpus), position + MARKER_SEARCH_AHEAD)
    match = CHAPTER_MARKER.search(corpus, position, hi)
    return match.start() if match else None


def boundary_after(corpus: str, position: int, limit: int = BOUNDARY_SEARCH) -> int:
    """First paragraph or sentence start after `position`, or `position`."""
    hi = min(len(corpus), position + limit)
    candidates = []
    paragraph = corpus.find(PARAGRAPH_BREAK, position, hi)
    if paragraph != -1:
        candidates.append(paragraph + len(PARAGRAPH_BREAK))
    sentence = _SENTENCE_END.search(corpus, position, hi)
    if sentence:
        candidates.append(sentence.end())
    return min(candidates) if candidates else position


def boundary_before(corpus: str, position: int, limit: int = BOUNDARY_SEARCH) -> int:
    """Last paragraph break or sentence end before `position`, or `position`."""
    lo = max(0, position - limit)
    candidates = []
    paragraph = corpus.rfind(PARAGRAPH_BREAK, lo, position)
    if paragraph != -1:
        candidates.append(paragraph)
    sentences = list(_SENTENCE_TERMINATOR.finditer(corpus, lo, position))
    if sentences:
        candidates.append(sentences[-1].end())
    return max(candidates) if candidates else position


def paragraph_before(corpus: str, position: int, limit: int = BOUNDARY_SEARCH) -> int:
    """Start of the paragraph containing `position`, looking back at most `limit`."""
    found = corpus.rfind(PARAGRAPH_BREAK, max(0, position - limit), position)
    return found + len(PARAGRAPH_BREAK) if found != -1 else position


def paragraph_after(corpus: str, position: int, limit: int = BOUNDARY_SEARCH) -> int:
    """End of the paragraph containing `position`, looking ahead at most `limit`."""
    found = corpus.find(PARAGRAPH_BREAK, position, min(len(corpus), position + limit))
    return found if found != -1 else position


def clamp_window(
    start: int, end: int, length: int, fallback: tuple[int, int]
) -> tuple[int, int]:
    """Clamp to [0, length] and guarantee start < end."""
    start = min(max(start, 0), length)
    end = min(max(end, 0), length)
    if start >= end:
        start, end = fallback
    if start >= end:
        if end < length:
            end = start + 1
        else:
            start = max(0, end - 1)
    return start, end


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def describe_window(
    corpus: str,
    start: int,
    end: int,
    progress: float,
    known_names: Iterable[str] = (),
) -> DialogueContext:
    text = corpus[start:end]
    chapter = chapter_number(text)
    names = [name for name in known_names if name and name in text]
    return DialogueContext(
        start_offset=start,
        end_offset=end,
        chapter_number=chapter,
        scene_description=scene_description(progress, chapter, names),
        available_character_names=names,
        progress=progress,
    )


def locate_context(
    corpus: str,
    step: int,
    total_steps: int,
    known_names: Iterable[str] = (),
    *,
    window_fraction: float = WINDOW_FRACTION,
    max_window: int = MAX_WINDOW,
    min_window: int = MIN_WINDOW,
) -> DialogueContext:
    """Return the window of `corpus` matching narrative step `step` of `total_steps`.

    Pure: the same corpus and inputs always give the same context.
    """
    length = len(corpus)
    if not length:
        raise ValueError("Cannot locate a context in an empty corpus")

    progress = min(max(step / max(total_steps, 1), 0.0), 1.0)
    size = min(max(int(length * window_fraction), min_window), max_window)
    if size >= length:
        return describe_window(corpus, 0, length, progress, known_names)

    center = int(length * progress)
    half = max(1, size) // 2
    provisional = (max(0, center - half), min(length, center + half))
    start, end = provisional

    if start > 0:
        marker = chapter_marker_near(corpus, start)
        start = marker if marker is not None else boundary_after(corpus, start)

    if end < length:
        marker = next_chapter_marker(corpus, end)
        if marker is not None and marker > start:
            end = marker
        else:
            end = boundary_before(corpus, end)

    start, end = clamp_window(start, end, length, provisional)
    return describe_window(corpus, start, end, progress, known_names)
