"""Score how well a passage supports the story's target ending.

Source endings need no judgment: the novel's own words lead to the novel's
own ending. Every other ending asks the LLM, and any failure to get a usable
answer (timeout, transport error, malformed JSON, out-of-range values) gives
the neutral score of 5, which still allows the passage.
"""

from __future__ import annotations

import asyncio
import logging

from book_quotes.llm import LLM, LLMError
from book_quotes.models import CompatibilityScore, TargetEnding
from book_quotes.parsing import parse_json_object
from book_quotes.prompts import PromptError, compatibility_prompt

logger = logging.getLogger(__name__)

COMPATIBILITY_TIMEOUT = 15.0

SOURCE_SCORE = CompatibilityScore(
    score=10,
    reasoning="Quote is from the original novel and naturally supports the original ending",
    should_use=True,
)

NEUTRAL_SCORE = CompatibilityScore(
    score=5,
    reasoning="Unable to assess compatibility",
    should_use=True,
)


class InvalidScoreError(ValueError):
    """The model answered, but not with a usable score."""


def parse_compatibility(text: str) -> CompatibilityScore:
    data = parse_json_object(text)
    if data is None:
        raise InvalidScoreError("no JSON object in response")

    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise InvalidScoreError(f"score is not a number: {score!r}")
    if not 0 <= score <= 10:
        raise InvalidScoreError(f"score out of range: {score}")
    should_use = data.get("shouldUse", data.get("should_use"))
    if not isinstance(should_use, bool):
        raise InvalidScoreError(f"shouldUse is not a boolean: {should_use!r}")
    reasoning = data.get("reasoning", "")
    if not isinstance(reasoning, str):
        raise InvalidScoreError("reasoning is not a string")

    result = CompatibilityScore.from_score(score, reasoning)
    if result.should_use != should_use:
        logger.debug("model shouldUse=%s disagrees with score %s", should_use, score)
    return result


async def score_compatibility(
    llm: LLM,
    passage: str,
    ending: TargetEnding,
    timeout: float = COMPATIBILITY_TIMEOUT,
) -> CompatibilityScore:
    """Rate `passage` against `ending`. Never raises."""
    if ending.type == "source":
        return SOURCE_SCORE.model_copy()

    try:
        prompt = compatibility_prompt(passage, ending)
        response = await asyncio.wait_for(llm("compatibility", prompt), timeout)
        return parse_compatibility(response)
    except asyncio.TimeoutError:
        logger.warning("Compatibility check timed out after %ss", timeout)
    except (LLMError, PromptError, InvalidScoreError) as e:
        logger.warning("Failed to check ending compatibility: %s", e)
    except Exception as e:
        logger.warning("Compatibility check failed unexpectedly: %r", e)
    return NEUTRAL_SCORE.model_copy()
