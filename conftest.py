import asyncio
import random

import pytest

from book_quotes import Character, QuoteEngine, TargetEnding

SCENARIO = (
    'Elizabeth said, "I am tired." '
    "Darcy walked away slowly, his face unreadable."
)

FILLER = (
    "The afternoon passed in quiet conversation while the rain continued "
    "against the tall windows of the house. "
)


def _paragraph(chapter: int, index: int) -> str:
    return (
        f'Elizabeth said, "The evening of part {index} in volume {chapter} was agreeable." '
        f"{FILLER * 2}"
        f"Darcy walked slowly across the drawing room, lost in thought about part {index} of volume {chapter}. "
        f"{FILLER}"
    )


def make_novel(chapters: int = 12, paragraphs: int = 10) -> str:
    """Synthetic novel: Elizabeth speaks and Darcy acts in every paragraph;
    Jane only appears in the final chapter."""
    parts = []
    for chapter in range(1, chapters + 1):
        parts.append(f"Chapter {chapter}\n\n")
        for index in range(paragraphs):
            parts.append(_paragraph(chapter, index) + "\n\n")
        if chapter == chapters:
            parts.append("Jane smiled warmly at her sister and took her hand in silence.\n\n")
    return "".join(parts)


class StubLLM:
    """Scripted judgment capability: one fixed reply per stage, recorded calls."""

    def __init__(self) -> None:
        self.replies: dict[str, str] = {}
        self.default = ""
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.replies.get(stage, self.default)

    @property
    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]


class StubAssistant:
    def __init__(self) -> None:
        self.reply = ""
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[tuple[str, str]] = []

    async def query(self, assistant_id: str, query: str) -> str:
        self.calls.append((assistant_id, query))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def novel() -> str:
    return make_novel()


@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def stub_assistant() -> StubAssistant:
    return StubAssistant()


@pytest.fixture
def elizabeth() -> Character:
    return Character(id="elizabeth", name="Elizabeth", description="Second Bennet daughter")


@pytest.fixture
def darcy() -> Character:
    return Character(id="darcy", name="Darcy")


@pytest.fixture
def jane() -> Character:
    return Character(id="jane", name="Jane")


@pytest.fixture
def wickham() -> Character:
    return Character(id="wickham", name="Wickham")


@pytest.fixture
def source_ending() -> TargetEnding:
    return TargetEnding(id="end-1", type="source", description="Elizabeth marries Darcy")


@pytest.fixture
def inverted_ending() -> TargetEnding:
    return TargetEnding(id="end-2", type="inverted", description="Elizabeth refuses Darcy for good")


@pytest.fixture
def engine(novel, stub_llm, elizabeth, darcy, jane) -> QuoteEngine:
    return QuoteEngine(
        novel,
        llm=stub_llm,
        characters=[elizabeth, darcy, jane],
        rng=random.Random(1234),
    )
