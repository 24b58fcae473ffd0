"""Authentic quote engine.

Mines a novel for dialogue and action passages attributable to a character,
picks the window of the book matching the game's progress, and chooses one
passage that fits the story's target ending. When nothing authentic fits the
engine returns None and the caller generates text instead.

    engine = QuoteEngine(novel_text, llm=HttpLLM("http://localhost:5001"))
    result = await engine.find_passage(QuoteRequest(...))
"""

from .config import QuoteConfig, load_config  # noqa: F401
from .engine import QuoteEngine  # noqa: F401
from .llm import LLM, CorpusAssistant, HttpLLM, LLMError, OfflineLLM  # noqa: F401
from .models import (  # noqa: F401
    Character,
    CharacterPassages,
    CompatibilityScore,
    DialogueContext,
    QuoteMetadata,
    QuoteRequest,
    QuoteResult,
    QuoteUsageStats,
    TargetEnding,
)
