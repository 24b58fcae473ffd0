"""Handlebars prompts for the judgment and retrieval capabilities.

Passages go through triple-stash ({{{ }}}) so quotation marks and
apostrophes reach the model unescaped.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pybars

from book_quotes.models import Character, DialogueContext, QuoteKind, TargetEnding

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

HISTORY_ENTRIES = 3


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
}


ENDING_LABELS = {
    "source": "the ending of the original novel",
    "inverted": "the opposite of the original novel's ending",
    "novel": "a new ending the novel never reached",
}

COMPATIBILITY_PROMPT = """\
You are analyzing whether a quote from a novel supports a specific story ending.

Quote: "{{{passage}}}"

Target Ending Type: {{{ending.type}}} ({{{ending_label}}})
Target Ending Description: {{{ending.description}}}

Analyze how well this quote supports or contradicts the target ending. Consider:
1. Does the quote's tone match the ending (e.g., hopeful vs tragic)?
2. Does the quote's content align with the ending's themes?
3. Would using this quote feel natural in a story moving toward this ending?

Provide a compatibility score from 0-10:
- 0-3: Quote strongly contradicts the ending (don't use)
- 4-6: Quote is neutral or somewhat compatible (use with caution)
- 7-10: Quote strongly supports the ending (definitely use)

Respond with ONLY valid JSON in this exact format:
{"score": <number 0-10>, "reasoning": "<brief explanation>", "shouldUse": <true if score >= 5, false otherwise>}\
"""

SELECTION_PROMPT = """\
You are choosing the line from the novel that {{{character.name}}} should use next.
{{#if character.description}}
About {{{character.name}}}: {{{character.description}}}
{{/if}}

Target Ending ({{{ending.type}}}): {{{ending.description}}}
{{#if history}}

## Recent Story
{{#last history 3}}
- {{{this}}}
{{/last}}
{{/if}}

## Candidates
{{#each candidates}}
{{number}}. "{{{text}}}"
{{/each}}

Pick the candidate most consistent with the recent story and the target ending.
Respond with ONLY valid JSON: {"selection": <candidate number>, "reasoning": "<brief explanation>"}\
"""

ASSISTANT_QUOTE_PROMPT = """\
Find one {{kind_phrase}} {{{character.name}}} in the attached novel.
The story is {{percent}}% of the way through{{#if scene}} ({{{scene}}}){{/if}}; \
prefer a passage from around that point.
Copy the passage exactly as it appears in the book, without changing a single character.
Respond with ONLY valid JSON: {"quote": "<the exact passage>"}, or {"quote": null} if there is none.\
"""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def compatibility_prompt(passage: str, ending: TargetEnding) -> str:
    return render_prompt(COMPATIBILITY_PROMPT, {
        "passage": passage,
        "ending": ending.model_dump(),
        "ending_label": ENDING_LABELS[ending.type],
    })


def selection_prompt(
    candidates: Sequence[str],
    character: Character,
    history: Sequence[str],
    ending: TargetEnding,
) -> str:
    return render_prompt(SELECTION_PROMPT, {
        "character": character.model_dump(),
        "ending": ending.model_dump(),
        "history": list(history)[-HISTORY_ENTRIES:],
        "candidates": [
            {"number": i, "text": text} for i, text in enumerate(candidates, start=1)
        ],
    })


def assistant_prompt(
    character: Character, kind: QuoteKind, context: DialogueContext | None
) -> str:
    kind_phrase = (
        "line of dialogue spoken by" if kind == "dialogue"
        else "narrative sentence describing an action by"
    )
    return render_prompt(ASSISTANT_QUOTE_PROMPT, {
        "character": character.model_dump(),
        "kind_phrase": kind_phrase,
        "percent": str(round((context.progress if context else 0.0) * 100)),
        "scene": context.scene_description if context else "",
    })
