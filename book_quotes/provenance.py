"""Provenance check: is a passage really from the novel, and near the character?"""

from __future__ import annotations

from book_quotes.models import Character

PROXIMITY_WINDOW = 200


def occurrences(corpus: str, passage: str) -> list[int]:
    """Every start offset of `passage` in `corpus`, overlapping ones included."""
    found: list[int] = []
    index = corpus.find(passage)
    while index != -1:
        found.append(index)
        index = corpus.find(passage, index + 1)
    return found


def validate_passage(
    corpus: str,
    passage: str,
    character: Character,
    proximity: int = PROXIMITY_WINDOW,
) -> bool:
    """True if `passage` occurs verbatim and the character's name appears
    within `proximity` characters of at least one occurrence."""
    if not passage or not character.name.strip():
        return False
    for index in occurrences(corpus, passage):
        start = max(0, index - proximity)
        end = min(len(corpus), index + len(passage) + proximity)
        if character.name in corpus[start:end]:
            return True
    return False
