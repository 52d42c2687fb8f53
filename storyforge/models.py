"""Core domain models.

Everything the resolvers, the assembler and the generation client exchange is
one of these types. Pydantic validates at every boundary where data arrives
from a collaborator (lorebook snapshots, prompt templates, request bodies).
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Category = Literal[
    "character",
    "location",
    "item",
    "event",
    "note",
    "synopsis",
    "starting-scenario",
    "timeline",
]
Level = Literal["global", "series", "story"]
Importance = Literal["major", "minor", "background"]
EntryStatus = Literal["active", "inactive", "historical"]
Role = Literal["system", "user", "assistant"]
ProviderName = Literal["local", "openai", "openrouter"]
PovType = Literal["First Person", "Third Person Limited", "Third Person Omniscient"]

DEFAULT_POV: PovType = "Third Person Omniscient"


# ---------------------------------------------------------------------------
# Lorebook
# ---------------------------------------------------------------------------

class LorebookEntry(BaseModel):
    """A piece of world knowledge scoped to the global, series or story tier."""

    id: str
    name: str
    description: str = ""
    category: Category
    tags: list[str] = Field(default_factory=list)
    level: Level = "story"
    scope_id: str | None = None  # series id or story id; None for global
    importance: Importance = "background"
    status: EntryStatus = "active"
    disabled: bool = False

    @model_validator(mode="after")
    def check_scope(self) -> LorebookEntry:
        if self.level == "global" and self.scope_id is not None:
            raise ValueError("global entries must not carry a scope_id")
        if self.level != "global" and not self.scope_id:
            raise ValueError(f"{self.level} entries require a scope_id")
        return self


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

class PromptMessage(BaseModel):
    role: Role
    content: str


class AllowedModel(BaseModel):
    id: str
    provider: ProviderName
    name: str


def _zero_is_disabled(value: float | int | None) -> float | int | None:
    # 0 on an optional sampling parameter means "do not send it"
    if value is None or value == 0:
        return None
    return value


class SamplingParams(BaseModel):
    """Generation-time controls.

    The optional parameters are None when disabled; a 0 coming from a stored
    prompt is folded into None here so request builders never see it.
    """

    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: float | None = None
    top_k: int | None = None
    repetition_penalty: float | None = None
    min_p: float | None = None

    @field_validator("top_p", "top_k", "repetition_penalty", "min_p", mode="before")
    @classmethod
    def zero_is_disabled(cls, value: float | int | None) -> float | int | None:
        return _zero_is_disabled(value)


class Prompt(BaseModel):
    """A stored prompt template: ordered messages plus sampling settings."""

    id: str = ""
    name: str = ""
    messages: list[PromptMessage]
    allowed_models: list[AllowedModel] = Field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: float | None = None
    top_k: int | None = None
    repetition_penalty: float | None = None
    min_p: float | None = None

    @field_validator("top_p", "top_k", "repetition_penalty", "min_p", mode="before")
    @classmethod
    def zero_is_disabled(cls, value: float | int | None) -> float | int | None:
        return _zero_is_disabled(value)

    def sampling(self) -> SamplingParams:
        return SamplingParams(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            top_k=self.top_k,
            repetition_penalty=self.repetition_penalty,
            min_p=self.min_p,
        )


# ---------------------------------------------------------------------------
# Story data supplied by collaborators
# ---------------------------------------------------------------------------

class Chapter(BaseModel):
    """A chapter snapshot. `content` is plain text, already extracted by the editor."""

    id: str
    story_id: str
    title: str = ""
    order: int
    summary: str = ""
    content: str = ""
    outline: str | None = None
    pov_type: PovType | None = None
    pov_character: str | None = None


class ChatMessage(BaseModel):
    role: str
    content: str


class SceneBeatContext(BaseModel):
    """Which entry sources a scene beat pulls into its prompt."""

    use_matched_chapter: bool = True
    use_matched_scene_beat: bool = True
    use_custom_context: bool = False
    custom_context_items: list[str] = Field(default_factory=list)


class PromptContext(BaseModel):
    """Everything resolvers may read. Supplied entirely by the caller."""

    story_id: str | None = None
    series_id: str | None = None
    chapter_id: str | None = None
    scene_beat_command: str | None = None
    chapter_matched_entries: list[LorebookEntry] = Field(default_factory=list)
    scene_beat_matched_entries: list[LorebookEntry] = Field(default_factory=list)
    matched_entries: list[LorebookEntry] | None = None  # legacy, no scene beat flags
    scene_beat_context: SceneBeatContext | None = None
    chat_history: list[ChatMessage] = Field(default_factory=list)
    chapters: list[Chapter] = Field(default_factory=list)
    current_chapter: Chapter | None = None
    previous_words: str | None = None
    pov_type: PovType | None = None
    pov_character: str | None = None
    additional_context: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

class AIModel(BaseModel):
    """A model as reported by a backend catalog, normalised across providers."""

    id: str
    name: str
    provider: ProviderName
    context_length: int = 16384


class TokenEvent(BaseModel):
    """One decoded stream event: a token or normal completion.

    decode_stream() never yields the `error` kind; a failing chunk source
    raises out of the stream instead. It exists for callers that relay
    failures to their own consumers as events.
    """

    kind: Literal["token", "complete", "error"]
    text: str = ""
    cause: str | None = None

    @classmethod
    def token(cls, text: str) -> TokenEvent:
        return cls(kind="token", text=text)

    @classmethod
    def complete(cls) -> TokenEvent:
        return cls(kind="complete")

    @classmethod
    def error(cls, cause: str) -> TokenEvent:
        return cls(kind="error", cause=cause)
