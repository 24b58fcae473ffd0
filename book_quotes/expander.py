"""Widen a context window until every character has something to say.

The located window is scene-local and often misses minor characters. For
each multiplier (1.5×, 2×, 3× the original size, re-centred on the original
window and snapped outward to paragraph breaks) extraction is re-run for
the characters that are still empty. Passages found in earlier steps are
never discarded, so coverage can only grow.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence

from pydantic import BaseModel, Field

from book_quotes.extractor import PatternExtractor
from book_quotes.locator import (
    clamp_window,
    describe_window,
    paragraph_after,
    paragraph_before,
)
from book_quotes.models import Character, CharacterPassages, DialogueContext, QuoteKind

logger = logging.getLogger(__name__)

EXPANSION_MULTIPLIERS = (1.5, 2.0, 3.0)

Validator = Callable[[str, Character], bool]


class ExpansionResult(BaseModel):
    context: DialogueContext
    passages: dict[str, CharacterPassages] = Field(default_factory=dict)
    coverage: list[int] = Field(default_factory=list)  # covered characters after each step

    def missing(self, kind: QuoteKind | None = None) -> list[str]:
        return [cid for cid, found in self.passages.items() if not _is_covered(found, kind)]


def _is_covered(found: CharacterPassages, kind: QuoteKind | None) -> bool:
    return found.has_any if kind is None else bool(found.for_kind(kind))


def _fill(
    extractor: PatternExtractor,
    character: Character,
    context: DialogueContext,
    found: CharacterPassages,
    kind: QuoteKind | None,
    validate: Validator | None,
) -> None:
    def keep(passages: list[str]) -> list[str]:
        if validate is None:
            return passages
        return [p for p in passages if validate(p, character)]

    if kind in (None, "dialogue"):
        found.dialogue = keep(extractor.dialogue(character, context))
    if kind in (None, "action"):
        found.actions = keep(extractor.actions(character, context))


def expand_context(
    extractor: PatternExtractor,
    corpus: str,
    characters: Sequence[Character],
    context: DialogueContext,
    *,
    kind: QuoteKind | None = None,
    validate: Validator | None = None,
    known_names: Iterable[str] | None = None,
    multipliers: Sequence[float] = EXPANSION_MULTIPLIERS,
) -> ExpansionResult:
    """Extract passages for `characters`, widening `context` while some lack any.

    With `kind` set, a character only counts as covered once it has passages
    of that kind. With `validate`, only passages it accepts are kept and
    counted. Returns the widest context reached; characters still
    missing simply have empty passage lists.
    """
    named = []
    for character in characters:
        if character.name.strip():
            named.append(character)
        else:
            logger.warning("Skipping character %r without a name", character.id)
    names = list(known_names) if known_names is not None else [c.name for c in named]

    passages = {c.id: CharacterPassages() for c in named}
    window_text = corpus[context.start_offset:context.end_offset]
    for character in named:
        if character.name in window_text:
            _fill(extractor, character, context, passages[character.id], kind, validate)

    missing = [c for c in named if not _is_covered(passages[c.id], kind)]
    coverage = [len(named) - len(missing)]

    length = len(corpus)
    center = (context.start_offset + context.end_offset) // 2
    current = context
    for multiplier in multipliers:
        if not missing:
            break
        half = int(context.size * multiplier) // 2
        start = paragraph_before(corpus, max(0, center - half))
        end = paragraph_after(corpus, min(length, center + half))
        start, end = clamp_window(
            start, end, length, (current.start_offset, current.end_offset)
        )
        start = min(start, current.start_offset)
        end = max(end, current.end_offset)
        current = describe_window(corpus, start, end, context.progress, names)

        text = corpus[start:end]
        for character in missing:
            if character.name in text:
                _fill(extractor, character, current, passages[character.id], kind, validate)
        missing = [c for c in missing if not _is_covered(passages[c.id], kind)]
        coverage.append(len(named) - len(missing))
        logger.debug(
            "expanded window x%.1f to [%d, %d): %d/%d characters covered",
            multiplier, start, end, coverage[-1], len(named),
        )

    if missing:
        logger.debug(
            "no passages after expansion for %s", ", ".join(c.name for c in missing)
        )
    return ExpansionResult(context=current, passages=passages, coverage=coverage)
