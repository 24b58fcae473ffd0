"""Pick one passage when several survive provenance and compatibility."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence

from book_quotes.llm import LLM, LLMError
from book_quotes.models import Character, TargetEnding
from book_quotes.parsing import parse_json_object
from book_quotes.prompts import PromptError, selection_prompt

logger = logging.getLogger(__name__)

SELECTION_TIMEOUT = 15.0

_FIRST_NUMBER = re.compile(r"\d+")


def parse_selection(text: str, count: int) -> int | None:
    """Return the 0-based index named by a 1-based answer, or None."""
    data = parse_json_object(text)
    if data is not None:
        choice = data.get("selection", data.get("choice"))
        if isinstance(choice, str) and choice.strip().isdigit():
            choice = int(choice)
    else:
        match = _FIRST_NUMBER.search(text)
        choice = int(match.group(0)) if match else None
    if isinstance(choice, bool) or not isinstance(choice, int):
        return None
    if not 1 <= choice <= count:
        return None
    return choice - 1


async def select_quote(
    llm: LLM,
    candidates: Sequence[str],
    character: Character,
    history: Sequence[str],
    ending: TargetEnding,
    timeout: float = SELECTION_TIMEOUT,
) -> str | None:
    """Choose the candidate that best fits the recent story.

    A single candidate is returned without asking the LLM. When the answer
    is missing or unusable the first candidate is used.
    """
    if not candidates:
        return None
    if len(candidates) == 1:
        return candidates[0]

    try:
        prompt = selection_prompt(candidates, character, history, ending)
        response = await asyncio.wait_for(llm("quote_selection", prompt), timeout)
    except asyncio.TimeoutError:
        logger.warning("Quote selection timed out after %ss", timeout)
        return candidates[0]
    except (LLMError, PromptError) as e:
        logger.warning("Quote selection failed: %s", e)
        return candidates[0]
    except Exception as e:
        logger.warning("Quote selection failed unexpectedly: %r", e)
        return candidates[0]

    index = parse_selection(response, len(candidates))
    if index is None:
        logger.warning("Unusable quote selection %.80r, using first candidate", response)
        return candidates[0]
    return candidates[index]
