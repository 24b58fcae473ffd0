"""Tests for QuoteEngine.find_passage and its component wiring."""

import json
from unittest.mock import patch

import pytest

from book_quotes import Character, QuoteConfig, QuoteEngine, QuoteRequest
from conftest import FILLER, SCENARIO

JANE_LINE = "Jane smiled warmly at her sister and took her hand in silence."
REAL = "The evening of part 3 in volume 6 was agreeable."


def _request(character, ending, **overrides) -> QuoteRequest:
    fields = {
        "character": character,
        "kind": "dialogue",
        "step": 6,
        "total_steps": 12,
        "ending": ending,
    }
    fields.update(overrides)
    return QuoteRequest(**fields)


def _compat(score: float) -> str:
    return json.dumps({"score": score, "reasoning": "test", "shouldUse": score >= 5})


# ---------------------------------------------------------------------------
# Scenarios on a two-sentence corpus
# ---------------------------------------------------------------------------

class TestScenarioCorpus:
    @pytest.fixture
    def small(self, stub_llm, elizabeth, darcy) -> QuoteEngine:
        return QuoteEngine(
            SCENARIO, llm=stub_llm, characters=[elizabeth, darcy],
            config=QuoteConfig(min_window=2000),
        )

    async def test_dialogue_for_elizabeth(self, small, stub_llm, elizabeth, source_ending) -> None:
        result = await small.find_passage(_request(elizabeth, source_ending, step=1, total_steps=3))
        assert result is not None
        assert result.passage == "I am tired."
        assert stub_llm.calls == []

    async def test_action_for_darcy(self, small, darcy, source_ending) -> None:
        result = await small.find_passage(
            _request(darcy, source_ending, kind="action", step=1, total_steps=3)
        )
        assert result is not None
        assert "walked away slowly" in result.passage

    async def test_absent_character_never_validated(self, small, wickham, source_ending) -> None:
        with patch.object(small, "validate", wraps=small.validate) as spy:
            result = await small.find_passage(_request(wickham, source_ending, step=1, total_steps=3))
        assert result is None
        spy.assert_not_called()


# ---------------------------------------------------------------------------
# Pattern path on the full novel
# ---------------------------------------------------------------------------

class TestPatternPath:
    async def test_source_ending(self, engine, stub_llm, elizabeth, source_ending) -> None:
        context = engine.locate(6, 12)
        candidates = engine.extract(elizabeth, "dialogue", context)
        assert len(candidates) >= 5

        result = await engine.find_passage(_request(elizabeth, source_ending))

        assert result is not None
        assert result.passage == candidates[0]
        assert result.source == "pattern"
        assert result.context == context
        assert result.metadata.original_text == result.passage
        assert result.metadata.ending_compatibility_score == 10
        assert result.metadata.chapter_number == context.chapter_number
        assert result.metadata.context_description == context.scene_description
        assert stub_llm.stages == ["quote_selection"]

    async def test_selection_answer_used(self, engine, stub_llm, elizabeth, source_ending) -> None:
        candidates = engine.extract(elizabeth, "dialogue", engine.locate(6, 12))
        stub_llm.replies["quote_selection"] = json.dumps({"selection": 2})
        result = await engine.find_passage(_request(elizabeth, source_ending))
        assert result.passage == candidates[1]

    async def test_history_reaches_selector(self, engine, stub_llm, elizabeth, source_ending) -> None:
        history = ["Bingley left Netherfield.", "Jane wrote from London."]
        await engine.find_passage(_request(elizabeth, source_ending, history=history))
        prompt = stub_llm.calls[-1][1]
        assert all(entry in prompt for entry in history)

    async def test_incompatible_passages_rejected(self, engine, stub_llm, elizabeth, inverted_ending) -> None:
        stub_llm.replies["compatibility"] = _compat(2)
        result = await engine.find_passage(_request(elizabeth, inverted_ending))
        assert result is None
        assert stub_llm.stages == ["compatibility"] * 5
        assert engine.stats.compatibility_rejections == 5
        assert engine.stats.generated_used == 1

    async def test_compatible_passages_scored(self, engine, stub_llm, elizabeth, inverted_ending) -> None:
        stub_llm.replies["compatibility"] = _compat(8)
        result = await engine.find_passage(_request(elizabeth, inverted_ending))
        assert result is not None
        assert result.metadata.ending_compatibility_score == 8
        assert stub_llm.stages == ["compatibility"] * 5 + ["quote_selection"]

    async def test_scoring_capped_by_config(self, novel, stub_llm, elizabeth, inverted_ending) -> None:
        engine = QuoteEngine(
            novel, llm=stub_llm, characters=[elizabeth],
            config=QuoteConfig(max_scored_candidates=2),
        )
        stub_llm.replies["compatibility"] = _compat(8)
        await engine.find_passage(_request(elizabeth, inverted_ending))
        assert stub_llm.stages.count("compatibility") == 2

    async def test_llm_down_still_finds_passage(self, engine, stub_llm, elizabeth, inverted_ending) -> None:
        stub_llm.error = RuntimeError("backend gone")
        result = await engine.find_passage(_request(elizabeth, inverted_ending))
        assert result is not None
        assert result.metadata.ending_compatibility_score == 5

    async def test_actions(self, engine, darcy, source_ending) -> None:
        result = await engine.find_passage(_request(darcy, source_ending, kind="action"))
        assert result is not None
        assert result.passage.startswith("Darcy walked slowly across the drawing room")
        assert result.as_option_text().startswith("[Book Quote - Middle section of the novel")

    async def test_expands_for_missing_character(self, engine, stub_llm, jane, source_ending) -> None:
        located = engine.locate(11, 12)
        assert "Jane" not in engine.corpus[located.start_offset:located.end_offset]

        result = await engine.find_passage(_request(jane, source_ending, kind="action", step=11))

        assert result is not None
        assert result.passage == JANE_LINE
        assert result.context.end_offset > located.end_offset
        assert stub_llm.calls == []

    async def test_expansion_gives_up(self, engine, jane, source_ending) -> None:
        result = await engine.find_passage(_request(jane, source_ending, kind="action", step=1))
        assert result is None

    async def test_absent_character(self, engine, stub_llm, wickham, source_ending) -> None:
        with patch.object(engine, "validate", wraps=engine.validate) as spy:
            assert await engine.find_passage(_request(wickham, source_ending)) is None
        spy.assert_not_called()
        assert stub_llm.calls == []


# ---------------------------------------------------------------------------
# Provenance before expansion
# ---------------------------------------------------------------------------

WEATHER = "The weather is very fine today."
GARDEN = "The garden is lovely in the spring."


def _filler(n: int) -> str:
    return (FILLER * (n // len(FILLER) + 1))[:n]


def _unattributed_then_garden() -> str:
    """Step 1 of 2 lands on a quote too far from Elizabeth's name; a properly
    attributed line sits just past the located window."""
    return (
        _filler(19000) + "\n\n"
        + "Elizabeth said " + _filler(400) + f' "{WEATHER}" '
        + _filler(3000) + "\n\n"
        + f'Elizabeth said, "{GARDEN}"' + "\n\n"
        + _filler(17500)
    )


class TestProvenanceBeforeExpansion:
    @pytest.fixture
    def corpus(self) -> str:
        return _unattributed_then_garden()

    @pytest.fixture
    def sparse(self, corpus, stub_llm, elizabeth) -> QuoteEngine:
        return QuoteEngine(corpus, llm=stub_llm, characters=[elizabeth])

    async def test_invalid_window_passages_trigger_expansion(
        self, sparse, corpus, stub_llm, elizabeth, source_ending
    ) -> None:
        located = sparse.locate(1, 2)
        assert GARDEN not in corpus[located.start_offset:located.end_offset]
        assert sparse.extract(elizabeth, "dialogue", located) == [WEATHER]
        assert sparse.validate(WEATHER, elizabeth) is False

        result = await sparse.find_passage(_request(elizabeth, source_ending, step=1, total_steps=2))

        assert result is not None
        assert result.passage == GARDEN
        assert result.context.end_offset > located.end_offset
        assert stub_llm.calls == []

    def test_expansion_skips_invalid_passages(self, sparse, elizabeth) -> None:
        expansion = sparse.expand([elizabeth], sparse.locate(1, 2), kind="dialogue")
        assert expansion.passages["elizabeth"].dialogue == [GARDEN]
        assert expansion.coverage[0] == 0


# ---------------------------------------------------------------------------
# Policy, cache and guards
# ---------------------------------------------------------------------------

class TestGuards:
    async def test_zero_percent_skips_everything(self, engine, stub_llm, elizabeth, inverted_ending) -> None:
        with patch.object(engine, "locate", wraps=engine.locate) as spy:
            result = await engine.find_passage(
                _request(elizabeth, inverted_ending, target_percentage=0)
            )
        assert result is None
        spy.assert_not_called()
        assert stub_llm.calls == []
        assert engine.stats.configured_percentage == 0
        assert engine.stats.generated_used == 1

    async def test_nameless_character(self, engine, stub_llm, source_ending) -> None:
        ghost = Character(id="ghost", name=" ")
        assert await engine.find_passage(_request(ghost, source_ending)) is None
        assert stub_llm.calls == []

    async def test_selected_quote_cached(self, engine, stub_llm, elizabeth, source_ending) -> None:
        request = _request(elizabeth, source_ending)
        with patch.object(engine, "locate", wraps=engine.locate) as spy:
            first = await engine.find_passage(request)
            second = await engine.find_passage(request)
            await engine.find_passage(_request(elizabeth, source_ending, step=7))
        assert second == first
        assert spy.call_count == 2
        assert engine.stats.total_requests == 3
        assert engine.stats.book_quotes_used == 3

    async def test_cache_keyed_by_ending_type(self, engine, stub_llm, elizabeth, source_ending, inverted_ending) -> None:
        stub_llm.replies["compatibility"] = _compat(2)
        assert await engine.find_passage(_request(elizabeth, source_ending)) is not None
        assert await engine.find_passage(_request(elizabeth, inverted_ending)) is None

    def test_empty_corpus_rejected(self, stub_llm) -> None:
        with pytest.raises(ValueError):
            QuoteEngine("", llm=stub_llm)

    def test_from_file(self, tmp_path, stub_llm) -> None:
        path = tmp_path / "novel.txt"
        path.write_text(SCENARIO, encoding="utf-8")
        engine = QuoteEngine.from_file(path, llm=stub_llm)
        assert engine.corpus == SCENARIO

    def test_known_names_skip_nameless(self, novel, stub_llm, elizabeth) -> None:
        engine = QuoteEngine(novel, llm=stub_llm, characters=[elizabeth, Character(id="x", name="")])
        assert engine.known_names == ["Elizabeth"]


# ---------------------------------------------------------------------------
# Retrieval-assisted path
# ---------------------------------------------------------------------------

class TestAssistedPath:
    @pytest.fixture
    def assisted(self, novel, stub_llm, stub_assistant, elizabeth, darcy) -> QuoteEngine:
        return QuoteEngine(
            novel, llm=stub_llm, characters=[elizabeth, darcy], assistant=stub_assistant
        )

    async def test_assistant_passage_used(self, assisted, stub_llm, stub_assistant, elizabeth, source_ending) -> None:
        stub_assistant.reply = json.dumps({"quote": REAL})
        result = await assisted.find_passage(
            _request(elizabeth, source_ending, assistant_id="asst-1")
        )
        assert result is not None
        assert result.passage == REAL
        assert result.source == "assistant"
        assert stub_llm.calls == []

    async def test_without_id_assistant_not_asked(self, assisted, stub_assistant, elizabeth, source_ending) -> None:
        result = await assisted.find_passage(_request(elizabeth, source_ending))
        assert result.source == "pattern"
        assert stub_assistant.calls == []

    async def test_invented_passage_falls_back(self, assisted, stub_assistant, elizabeth, source_ending) -> None:
        stub_assistant.reply = "Elizabeth declared she would marry for money."
        result = await assisted.find_passage(
            _request(elizabeth, source_ending, assistant_id="asst-1")
        )
        assert result.source == "pattern"
        assert len(stub_assistant.calls) == 1

    async def test_incompatible_assistant_passage(self, assisted, stub_llm, stub_assistant, elizabeth, inverted_ending) -> None:
        stub_assistant.reply = json.dumps({"quote": REAL})
        stub_llm.replies["compatibility"] = _compat(1)
        result = await assisted.find_passage(
            _request(elizabeth, inverted_ending, assistant_id="asst-1")
        )
        assert result is None
        assert assisted.stats.compatibility_rejections == 6


# ---------------------------------------------------------------------------
# Usage stats
# ---------------------------------------------------------------------------

async def test_stats_track_actual_rate(engine, elizabeth, wickham, source_ending):
    await engine.find_passage(_request(elizabeth, source_ending, target_percentage=75))
    await engine.find_passage(_request(wickham, source_ending, target_percentage=75))
    stats = engine.stats
    assert stats.total_requests == stats.book_quotes_used + stats.generated_used == 2
    assert stats.configured_percentage == 75
    assert 0 <= stats.actual_percentage <= 100
