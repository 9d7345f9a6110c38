"""Shared Pydantic models for the completion core.

Internal value types (context chunks, infill requests/responses) and the
request/response models of the HTTP service live here so the wire shapes
are defined once.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .document import Position

TriggerKind = Literal["automatic", "invoked"]

CompletionOutcome = Literal[
    "cache_hit",
    "server",
    "no_suggestion",
    "discarded",
    "cancelled",
    "manual_only",
    "suffix_too_long",
    "failed",
]


# --- Context ---


class ContextChunk(BaseModel):
    """A captured snippet of source lines used as auxiliary context.

    ``text`` is the newline-terminated join of the captured lines; ``lines``
    is always derived from it and is only used for similarity checks.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    created_at: float = Field(default_factory=time.time)
    source_id: str = ""

    @property
    def lines(self) -> tuple[str, ...]:
        body = self.text[:-1] if self.text.endswith("\n") else self.text
        return tuple(body.split("\n"))

    @classmethod
    def from_lines(cls, lines: list[str], source_id: str = "") -> ContextChunk:
        return cls(text="\n".join(lines) + "\n", source_id=source_id)

    def to_wire(self) -> dict[str, object]:
        """Shape expected in the ``input_extra`` list of an infill request."""
        return {
            "text": self.text,
            "time": int(self.created_at * 1000),
            "filename": self.source_id,
        }


# --- Inference collaborator ---


class InfillRequest(BaseModel):
    """Typed input for one fill-in-the-middle generation."""

    prefix: str
    suffix: str
    prompt: str
    context_chunks: list[ContextChunk] = Field(default_factory=list)
    n_predict: int = 128
    max_prompt_ms: int = 500
    max_predict_ms: int = 2500
    indent_hint: int = 0


class InfillTimings(BaseModel):
    """Server-side timing breakdown, all fields optional."""

    prompt_n: int | None = None
    prompt_ms: float | None = None
    prompt_per_second: float | None = None
    predicted_n: int | None = None
    predicted_ms: float | None = None
    predicted_per_second: float | None = None


class InfillResponse(BaseModel):
    """Result of an infill call."""

    model_config = ConfigDict(extra="ignore")

    content: str | None = None
    tokens_cached: int = 0
    truncated: bool = False
    n_ctx: int = 0
    timings: InfillTimings = Field(default_factory=InfillTimings)

    def is_blank(self) -> bool:
        return self.content is None or self.content.strip() == ""


# --- Served suggestions ---


@dataclass(frozen=True)
class InlineSuggestion:
    """A suggestion string anchored at the cursor."""

    text: str
    position: Position


@dataclass(frozen=True)
class SuggestionDetails:
    """The last served suggestion and the fragments it was derived from."""

    suggestion: str
    position: Position
    prefix: str
    suffix: str
    prompt: str


@dataclass(frozen=True)
class CompletionResult:
    """Zero or one suggestion plus how the request ended."""

    outcome: CompletionOutcome
    items: tuple[InlineSuggestion, ...] = ()

    @property
    def suggestion(self) -> str | None:
        return self.items[0].text if self.items else None


# --- HTTP service models ---


class PositionModel(BaseModel):
    line: int = Field(ge=0)
    character: int = Field(ge=0)


class CompleteRequest(BaseModel):
    """Completion request posted by an editor plugin."""

    text: str = Field(description="Full document text.")
    source_id: str = Field(default="", description="Document identity, e.g. its path.")
    is_dirty: bool = Field(default=False, description="Whether the document has unsaved edits.")
    position: PositionModel
    trigger: TriggerKind = "automatic"


class CompleteResponse(BaseModel):
    outcome: CompletionOutcome
    suggestion: str | None = None
    position: PositionModel | None = None


class ChunkRequest(BaseModel):
    """Text captured by the editor (copy, cut) to be queued as context."""

    text: str
    source_id: str = ""
    is_dirty: bool = False


class DocumentSavedRequest(BaseModel):
    text: str
    source_id: str = ""
    cursor_line: int | None = Field(
        default=None,
        ge=0,
        description="Cursor line when the saved document is the active one.",
    )


class ChunkResponse(BaseModel):
    queued: bool
    active_chunks: int
    queued_chunks: int


class StatusResponse(BaseModel):
    text: str
    active_chunks: int
    queued_chunks: int
    evictions: int
    cache_size: int
    cache_capacity: int
    in_flight: bool


class HealthResponse(BaseModel):
    status: Literal["healthy"] = "healthy"
