"""Retrieval-assisted quote lookup.

A game that uploaded the novel to a retrieval assistant can ask it for a
passage directly. Whatever comes back must still pass the provenance check;
anything else falls through to pattern extraction.
"""

from __future__ import annotations

import asyncio
import logging

from book_quotes.llm import CorpusAssistant, LLMError
from book_quotes.models import Character, DialogueContext, QuoteKind
from book_quotes.parsing import parse_json_object, strip_code_fences
from book_quotes.prompts import PromptError, assistant_prompt
from book_quotes.provenance import PROXIMITY_WINDOW, validate_passage

logger = logging.getLogger(__name__)

ASSISTANT_TIMEOUT = 20.0

_NO_QUOTE = {"", "none", "null", "n/a"}
_SURROUNDING = "\"“”'‘’` \t\r\n"


def parse_assistant_quote(text: str) -> str | None:
    """Pull the passage out of an answer: {"quote": ...} JSON or bare text."""
    data = parse_json_object(text) if "{" in text else None
    if data is not None:
        quote = data.get("quote")
        if not isinstance(quote, str):
            return None
    else:
        quote = strip_code_fences(text)
    quote = quote.strip(_SURROUNDING)
    if quote.lower() in _NO_QUOTE:
        return None
    return quote


async def retrieve_assisted_quote(
    assistant: CorpusAssistant | None,
    assistant_id: str | None,
    corpus: str,
    character: Character,
    kind: QuoteKind,
    context: DialogueContext | None = None,
    *,
    proximity: int = PROXIMITY_WINDOW,
    timeout: float = ASSISTANT_TIMEOUT,
) -> str | None:
    """Ask the assistant for a verbatim passage; None means use the pattern path."""
    if assistant is None or not assistant_id:
        return None

    try:
        prompt = assistant_prompt(character, kind, context)
        answer = await asyncio.wait_for(assistant.query(assistant_id, prompt), timeout)
    except asyncio.TimeoutError:
        logger.warning("Assistant %s timed out after %ss", assistant_id, timeout)
        return None
    except (LLMError, PromptError) as e:
        logger.warning("Assistant %s query failed: %s", assistant_id, e)
        return None
    except Exception as e:
        logger.warning("Assistant %s query failed unexpectedly: %r", assistant_id, e)
        return None

    quote = parse_assistant_quote(answer)
    if quote is None:
        logger.debug("Assistant %s had no passage for %s", assistant_id, character.name)
        return None
    if not validate_passage(corpus, quote, character, proximity):
        logger.warning(
            "Assistant passage for %s is not verbatim near the character: %.60r",
            character.name, quote,
        )
        return None
    return quote
