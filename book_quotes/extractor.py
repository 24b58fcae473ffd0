"""Surface-pattern extraction of dialogue and action passages.

Dialogue patterns (name matched literally, verbs from DIALOGUE_VERBS):
  1. Name said, "text"          (attribution before the quote)
  2. "text," said Name          (attribution after the quote)
  3. Name: "text"               (script style)

Action patterns (verbs from ACTION_VERBS):
  a. Name walked <rest of the sentence>.
  b. any sentence containing both the name and an action verb

Every passage returned is a slice of the searched window, so it is always a
verbatim substring of the corpus. Results are deduplicated by exact text.
"""

from __future__ import annotations

import logging
import re

from book_quotes.cache import LRUCache
from book_quotes.models import Character, DialogueContext, QuoteKind

logger = logging.getLogger(__name__)

DIALOGUE_VERBS = [
    "said", "replied", "asked", "exclaimed", "whispered", "shouted",
    "murmured", "answered", "continued", "added", "remarked", "observed",
    "declared", "stated", "announced", "cried", "muttered", "responded",
]

ACTION_VERBS = [
    "walked", "ran", "entered", "left", "approached", "turned", "looked", "gazed",
    "stood", "sat", "rose", "moved", "stepped", "hurried", "rushed", "paused",
    "stopped", "opened", "closed", "took", "gave", "held", "placed", "picked",
    "smiled", "laughed", "frowned", "nodded", "shook", "bowed", "gestured",
    "embraced", "kissed", "touched", "reached", "grasped", "seized", "released",
]

MIN_DIALOGUE_LEN = 10
MAX_DIALOGUE_LEN = 200
MIN_ACTION_LEN = 20
MAX_ACTION_LEN = 200

_SAID = "(?:" + "|".join(DIALOGUE_VERBS) + ")"
_DID = "(?:" + "|".join(ACTION_VERBS) + ")"

# Opening quote, 10-200 characters of speech, closing quote
_QUOTED = "[\"“']([^\"“”']{10,200})[\"”']"
_REST_OF_SENTENCE = r"[^.!?]{10,150}[.!?]"

_ACTION_WORD = re.compile(r"\b" + _DID + r"\b", re.IGNORECASE)
_SENTENCE = re.compile(r"[^.!?]+[.!?]*")
_LEADING_JUNK = "\"“”' \t\r\n"


def _dialogue_patterns(name: str) -> list[tuple[str, str]]:
    name = re.escape(name)
    return [
        ("name_verb_quote", name + r"\s+" + _SAID + "[^\"“']*" + _QUOTED),
        ("quote_verb_name", _QUOTED + r"[^.]*?" + _SAID + r"\s+" + name),
        ("script", name + r"\s*:\s*" + _QUOTED),
    ]


def _collect(
    label: str,
    pattern: str,
    text: str,
    group: int,
    min_len: int,
    max_len: int,
) -> list[str]:
    """Matches of one pattern within the length bounds.

    A pattern that fails to compile, or fails while matching, contributes
    nothing; the other patterns still run.
    """
    found: list[str] = []
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
        for match in compiled.finditer(text):
            passage = match.group(group).strip()
            if min_len <= len(passage) <= max_len:
                found.append(passage)
    except re.error as e:
        logger.warning("Extraction pattern %s failed to compile: %s", label, e)
        return []
    except (IndexError, RecursionError, MemoryError) as e:
        logger.warning("Extraction pattern %s failed: %r", label, e)
        return []
    return found


def _action_sentences(text: str, name: str) -> list[str]:
    found: list[str] = []
    for match in _SENTENCE.finditer(text):
        sentence = match.group(0).strip().lstrip(_LEADING_JUNK)
        if name not in sentence or not _ACTION_WORD.search(sentence):
            continue
        if MIN_ACTION_LEN <= len(sentence) <= MAX_ACTION_LEN:
            found.append(sentence)
    return found


def find_dialogue(text: str, name: str) -> list[str]:
    """Return quoted speech attributed to `name` in `text`, deduplicated."""
    found: list[str] = []
    for label, pattern in _dialogue_patterns(name):
        found += _collect(label, pattern, text, 1, MIN_DIALOGUE_LEN, MAX_DIALOGUE_LEN)
    return list(dict.fromkeys(found))


def find_actions(text: str, name: str) -> list[str]:
    """Return narrative passages in which `name` acts, deduplicated."""
    # a. Name + action verb + the rest of that sentence
    pattern = re.escape(name) + r"\s+" + _DID + r"\s+" + _REST_OF_SENTENCE
    found = _collect("name_verb_sentence", pattern, text, 0, MIN_ACTION_LEN, MAX_ACTION_LEN)

    # b. Whole sentences mentioning the name alongside any action verb.
    # The sentence keeps its own terminator; an unterminated tail is kept
    # as-is so the passage still occurs verbatim in the corpus.
    try:
        found += _action_sentences(text, name)
    except (RecursionError, MemoryError) as e:
        logger.warning("Extraction pattern action_sentence failed: %r", e)

    return list(dict.fromkeys(found))


class PatternExtractor:
    """Per-corpus extractor with memoized results.

    Results are keyed by (character id, name, window start, window end);
    dialogue and actions live in separate caches.
    """

    def __init__(self, corpus: str, cache_size: int = 1024) -> None:
        self._corpus = corpus
        self._dialogue_cache: LRUCache[list[str]] = LRUCache(cache_size)
        self._action_cache: LRUCache[list[str]] = LRUCache(cache_size)

    def _window(self, context: DialogueContext | None) -> tuple[int, int]:
        if context is None:
            return 0, len(self._corpus)
        return context.start_offset, min(context.end_offset, len(self._corpus))

    def _run(
        self,
        cache: LRUCache[list[str]],
        finder,
        character: Character,
        context: DialogueContext | None,
    ) -> list[str]:
        if not character.name.strip():
            logger.warning("Character %r has no name; nothing to extract", character.id)
            return []

        start, end = self._window(context)
        key = (character.id, character.name, start, end)
        cached = cache.get(key)
        if cached is not None:
            logger.debug("extraction cache hit %s", key)
            return list(cached)

        text = self._corpus[start:end]
        passages = finder(text, character.name) if text else []
        cache.set(key, passages)
        return list(passages)

    def dialogue(
        self, character: Character, context: DialogueContext | None = None
    ) -> list[str]:
        return self._run(self._dialogue_cache, find_dialogue, character, context)

    def actions(
        self, character: Character, context: DialogueContext | None = None
    ) -> list[str]:
        return self._run(self._action_cache, find_actions, character, context)

    def extract(
        self,
        character: Character,
        kind: QuoteKind,
        context: DialogueContext | None = None,
    ) -> list[str]:
        if kind == "dialogue":
            return self.dialogue(character, context)
        return self.actions(character, context)
