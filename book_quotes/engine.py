"""QuoteEngine: find an authentic passage for one character and one turn.

Turn flow (find_passage):
  1. Usage policy draw. Most turns at a low authenticity rate stop here.
  2. Selected-quote cache, keyed by (character, kind, step, ending type).
  3. Retrieval assistant, when the request names one.
  4. Locate the window for this step and extract passages of the requested
     kind, dropping any that fail provenance.
  5. Widen the window if no verified passage is left.
  6. Score compatibility with the target ending; drop unsuitable passages.
  7. Let the quote selector choose among the rest.

A None result means "no authentic passage": the caller generates content
instead. Nothing in the flow raises for bad input or capability failures.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable, Sequence
from pathlib import Path

from book_quotes.assistant import retrieve_assisted_quote
from book_quotes.cache import LRUCache
from book_quotes.config import QuoteConfig
from book_quotes.expander import ExpansionResult, expand_context
from book_quotes.extractor import PatternExtractor
from book_quotes.llm import LLM, CorpusAssistant
from book_quotes.locator import locate_context
from book_quotes.models import (
    Character,
    CompatibilityScore,
    DialogueContext,
    QuoteKind,
    QuoteMetadata,
    QuoteRequest,
    QuoteResult,
    QuoteSource,
    QuoteUsageStats,
    TargetEnding,
)
from book_quotes.policy import should_attempt_authentic
from book_quotes.provenance import validate_passage
from book_quotes.scoring import score_compatibility
from book_quotes.selector import select_quote

logger = logging.getLogger(__name__)


class QuoteEngine:
    """Owns one novel and the caches derived from it.

    Args:
        corpus:     Full text of the novel. Never modified.
        llm:        Judgment capability for compatibility and selection.
        characters: Known characters, used to list who appears in a window.
        assistant:  Optional retrieval assistant for the assisted path.
        config:     Tunables; defaults match QuoteConfig().
        rng:        Random source for the usage policy (seed it in tests).
    """

    def __init__(
        self,
        corpus: str,
        *,
        llm: LLM,
        characters: Iterable[Character] = (),
        assistant: CorpusAssistant | None = None,
        config: QuoteConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if not corpus:
            raise ValueError("QuoteEngine needs a non-empty corpus")
        self.corpus = corpus
        self.llm = llm
        self.characters = list(characters)
        self.assistant = assistant
        self.config = config or QuoteConfig()
        self.rng = rng or random.Random()
        self.extractor = PatternExtractor(corpus, cache_size=self.config.cache_size)
        self.stats = QuoteUsageStats()
        self._selection_cache: LRUCache[QuoteResult] = LRUCache(self.config.cache_size)

    @classmethod
    def from_file(cls, path: Path, **kwargs) -> QuoteEngine:
        return cls(path.read_text(encoding="utf-8"), **kwargs)

    @property
    def known_names(self) -> list[str]:
        return [c.name for c in self.characters if c.name]

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def locate(self, step: int, total_steps: int) -> DialogueContext:
        return locate_context(
            self.corpus, step, total_steps, self.known_names,
            window_fraction=self.config.window_fraction,
            max_window=self.config.max_window,
            min_window=self.config.min_window,
        )

    def extract_dialogue(
        self, character: Character, context: DialogueContext | None = None
    ) -> list[str]:
        return self.extractor.dialogue(character, context)

    def extract_actions(
        self, character: Character, context: DialogueContext | None = None
    ) -> list[str]:
        return self.extractor.actions(character, context)

    def extract(
        self,
        character: Character,
        kind: QuoteKind,
        context: DialogueContext | None = None,
    ) -> list[str]:
        return self.extractor.extract(character, kind, context)

    def validate(self, passage: str, character: Character) -> bool:
        return validate_passage(self.corpus, passage, character, self.config.proximity)

    def expand(
        self,
        characters: Sequence[Character],
        context: DialogueContext,
        kind: QuoteKind | None = None,
    ) -> ExpansionResult:
        return expand_context(
            self.extractor, self.corpus, characters, context,
            kind=kind,
            validate=self.validate,
            known_names=self.known_names or None,
            multipliers=self.config.expansion_multipliers,
        )

    async def score(self, passage: str, ending: TargetEnding) -> CompatibilityScore:
        return await score_compatibility(
            self.llm, passage, ending, timeout=self.config.compatibility_timeout
        )

    def should_attempt_authentic(
        self, target_percentage: float, ending: TargetEnding
    ) -> bool:
        return should_attempt_authentic(target_percentage, ending, self.rng)

    async def select(
        self,
        candidates: Sequence[str],
        character: Character,
        history: Sequence[str],
        ending: TargetEnding,
    ) -> str | None:
        return await select_quote(
            self.llm, candidates, character, history, ending,
            timeout=self.config.selection_timeout,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def find_passage(self, request: QuoteRequest) -> QuoteResult | None:
        """Return a validated passage for the request, or None to generate instead."""
        self.stats.configured_percentage = request.target_percentage
        result = await self._find(request)
        if result is None:
            self.stats.record_generated()
        else:
            self.stats.record_book_quote()
        return result

    async def _find(self, request: QuoteRequest) -> QuoteResult | None:
        character = request.character
        if not character.name.strip():
            logger.warning("Character %r has no name; no authentic passage", character.id)
            return None

        if not self.should_attempt_authentic(request.target_percentage, request.ending):
            return None

        key = (character.id, request.kind, request.step, request.ending.type)
        cached = self._selection_cache.get(key)
        if cached is not None:
            logger.debug("selected-quote cache hit %s", key)
            return cached

        context = self.locate(request.step, request.total_steps)

        assisted = await retrieve_assisted_quote(
            self.assistant, request.assistant_id, self.corpus, character,
            request.kind, context,
            proximity=self.config.proximity,
            timeout=self.config.assistant_timeout,
        )
        if assisted is not None:
            score = await self.score(assisted, request.ending)
            if score.should_use:
                return self._remember(
                    key, request, assisted, context, score, source="assistant"
                )
            self.stats.compatibility_rejections += 1

        candidates = [
            p for p in self.extract(character, request.kind, context)
            if self.validate(p, character)
        ]
        if not candidates:
            expansion = self.expand([character], context, kind=request.kind)
            context = expansion.context
            found = expansion.passages.get(character.id)
            candidates = found.for_kind(request.kind) if found else []
        if not candidates:
            logger.debug("no authentic %s for %s", request.kind, character.name)
            return None

        scored: list[tuple[str, CompatibilityScore]] = []
        for passage in candidates[:self.config.max_scored_candidates]:
            score = await self.score(passage, request.ending)
            if score.should_use:
                scored.append((passage, score))
            else:
                self.stats.compatibility_rejections += 1
        if not scored:
            return None

        chosen = await self.select(
            [p for p, _ in scored], character, request.history, request.ending
        )
        if chosen is None:
            return None
        score = next(s for p, s in scored if p == chosen)
        return self._remember(key, request, chosen, context, score, source="pattern")

    def _remember(
        self,
        key: tuple,
        request: QuoteRequest,
        passage: str,
        context: DialogueContext,
        score: CompatibilityScore,
        *,
        source: QuoteSource,
    ) -> QuoteResult:
        result = QuoteResult(
            passage=passage,
            kind=request.kind,
            source=source,
            context=context,
            metadata=QuoteMetadata(
                original_text=passage,
                chapter_number=context.chapter_number,
                context_description=context.scene_description,
                ending_compatibility_score=score.score,
            ),
        )
        self._selection_cache.set(key, result)
        return result
