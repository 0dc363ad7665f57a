"""Pydantic schemas for API request/response models.

Single Responsibility: Define data structures for API communication.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request payload for a chat question."""

    # Not min_length=1: an empty message is answered with 400, not 422.
    message: str = Field(default="", description="The question to ask")
    session_id: str | None = Field(default=None, description="Client session identifier (informational)")


class Source(BaseModel):
    """A cited passage; `n` matches the [n] marker in the answer."""

    n: int = Field(..., description="Citation number")
    id: int | str | None = Field(default=None, description="Chunk id (use with /api/source)")
    title: str = Field(..., description="Chunk label, document id or 'Wetgeving'")
    link: str = Field(default="", description="URL of the law on wetten.overheid.nl")


class ChatResponse(BaseModel):
    """Response payload for a chat question."""

    answer: str = Field(..., description="The generated answer")
    sources: list[Source] = Field(default_factory=list, description="Cited passages")


class DetectedDocument(BaseModel):
    id: str
    title: str
    score: float


class SearchResult(BaseModel):
    id: int | str | None = None
    n: int
    label: str
    doc_id: str
    similarity: float = Field(..., description="Cosine similarity plus ranking boosts")
    source_url: str = ""
    excerpt: str = ""


class SearchResponse(BaseModel):
    ok: bool = True
    query: str
    mode: str = Field(..., description="Retrieval mode: exact, semantic or empty")
    detected_document: DetectedDocument | None = None
    results: list[SearchResult] = Field(default_factory=list)


class SourceResponse(BaseModel):
    ok: bool = True
    id: int | str | None = None
    label: str = ""
    text: str = ""
    source_url: str = ""
    doc_id: str = ""


class SuggestionsRequest(BaseModel):
    topic: str | None = Field(default=None, description="Optional topic for the example questions")


class SuggestionsResponse(BaseModel):
    suggestions: list[str] = Field(default_factory=list)


class IngestReportResponse(BaseModel):
    """Result of one ingestion batch."""

    ok: bool = True
    id: str
    total_articles_found: int
    blocks_prepared: int
    saved_or_updated: int
    deduped_in_batch: int = 0
    next_offset: int | None = None
    done: bool = False
    next: str | None = Field(default=None, description="URL for the next batch")


class CatalogResponse(BaseModel):
    """Result of registering one SRU catalogue page."""

    ok: bool = True
    startRecord: int
    maximumRecords: int
    include_verdrag: bool
    connections: list[str] = Field(default_factory=lambda: ["BWB"])
    numberOfRecords: int | None = None
    nextRecordPosition: int | None = None
    found: int
    bwbr_ids: list[str] = Field(default_factory=list)
    upserted_documents: int
    ingest_results: list[dict[str, Any]] = Field(default_factory=list)
    next: dict[str, Any] | None = None


class EmbedBatchResponse(BaseModel):
    processed: int | None = None
    done: bool | None = None


class ClearChunksResponse(BaseModel):
    ok: bool = True
    doc_id: str
    deleted: int


class ErrorResponse(BaseModel):
    """Body of a 500 response for a failed upstream call."""

    error: str
    details: Any = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="ok", description="Service status")
    version: str = Field(default="1.0.0", description="API version")
