"""Core domain models.

The engine, the extractors and the capability boundaries all operate on
these types. Pydantic validates them at every boundary the caller touches.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

QuoteKind = Literal["dialogue", "action"]

EndingType = Literal["source", "inverted", "novel"]

QuoteSource = Literal["pattern", "assistant"]


class Character(BaseModel):
    """A character from the novel. `name` is what gets matched in the text."""

    id: str
    name: str
    description: str = ""
    importance: int = 5  # 1-10 ranking from novel analysis


class TargetEnding(BaseModel):
    """The narrative outcome the story is moving toward."""

    id: str
    type: EndingType
    description: str = ""


class DialogueContext(BaseModel):
    """A window of the corpus, recomputed for every narrative step."""

    start_offset: int = Field(ge=0)
    end_offset: int
    chapter_number: int | None = None
    scene_description: str = ""
    available_character_names: list[str] = Field(default_factory=list)
    progress: float = 0.0

    @model_validator(mode="after")
    def _check_bounds(self) -> DialogueContext:
        if self.end_offset <= self.start_offset:
            raise ValueError(
                f"end_offset ({self.end_offset}) must be greater than "
                f"start_offset ({self.start_offset})"
            )
        return self

    @property
    def size(self) -> int:
        return self.end_offset - self.start_offset


class CompatibilityScore(BaseModel):
    score: float = Field(ge=0, le=10)
    reasoning: str = ""
    should_use: bool

    @classmethod
    def from_score(cls, score: float, reasoning: str = "") -> CompatibilityScore:
        return cls(score=score, reasoning=reasoning, should_use=score >= 5)


class CharacterPassages(BaseModel):
    """Extracted passages for one character, split by kind."""

    dialogue: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)

    @property
    def has_any(self) -> bool:
        return bool(self.dialogue or self.actions)

    def for_kind(self, kind: QuoteKind) -> list[str]:
        return self.dialogue if kind == "dialogue" else self.actions


class QuoteRequest(BaseModel):
    """One "find an authentic passage" call from the game session."""

    character: Character
    kind: QuoteKind
    step: int = Field(ge=1)
    total_steps: int = Field(ge=1)
    ending: TargetEnding
    target_percentage: float = 100.0
    history: list[str] = Field(default_factory=list)
    assistant_id: str | None = None


class QuoteMetadata(BaseModel):
    """Provenance details attached to a story segment built from a book quote."""

    original_text: str
    chapter_number: int | None = None
    context_description: str
    ending_compatibility_score: float = Field(ge=0, le=10)


class QuoteResult(BaseModel):
    passage: str
    kind: QuoteKind
    source: QuoteSource = "pattern"
    context: DialogueContext
    metadata: QuoteMetadata

    def as_option_text(self) -> str:
        """Render the passage the way the game labels book-quote options."""
        label = f"[Book Quote - {self.context.scene_description}]"
        if self.kind == "dialogue":
            return f'{label}\n"{self.passage}"'
        return f"{label}\n{self.passage}"


class QuoteUsageStats(BaseModel):
    """Running tally of authentic vs generated outcomes for one engine."""

    total_requests: int = 0
    book_quotes_used: int = 0
    generated_used: int = 0
    configured_percentage: float = 0.0
    compatibility_rejections: int = 0  # quotes dropped for not fitting the ending

    @property
    def actual_percentage(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.book_quotes_used / self.total_requests * 100

    def record_book_quote(self) -> None:
        self.total_requests += 1
        self.book_quotes_used += 1

    def record_generated(self) -> None:
        self.total_requests += 1
        self.generated_used += 1
