from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RetrievalMode(str, Enum):
    EXACT = "exact"
    SEMANTIC = "semantic"
    EMPTY = "empty"


@dataclass(frozen=True)
class Document:
    id: str
    title: str
    source_url: str = ""
    type: str | None = None

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {"id": self.id, "title": self.title, "source_url": self.source_url}
        if self.type:
            row["type"] = self.type
        return row


@dataclass(frozen=True)
class Chunk:
    id: Any
    doc_id: str
    label: str
    text: str
    source_url: str = ""
    embedding: list[float] | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Chunk":
        from .ranking import to_vector

        return cls(
            id=row.get("id"),
            doc_id=str(row.get("doc_id") or ""),
            label=str(row.get("label") or ""),
            text=str(row.get("text") or ""),
            source_url=str(row.get("source_url") or ""),
            embedding=to_vector(row.get("embedding")),
        )


@dataclass(frozen=True)
class ScoredChunk:
    chunk: Chunk
    similarity: float
    boost: float = 0.0
    boosts_applied: tuple[str, ...] = ()

    @property
    def score(self) -> float:
        return self.similarity + self.boost


@dataclass(frozen=True)
class DetectedDocument:
    id: str
    title: str
    score: float


@dataclass(frozen=True)
class RetrievalResult:
    mode: RetrievalMode
    chunks: tuple[ScoredChunk, ...]
    article_ref: str | None = None
    detected: DetectedDocument | None = None
    total_candidates: int = 0
    debug: dict[str, Any] = field(default_factory=dict)


class RAGEngineError(RuntimeError):
    """Raised when the RAG engine encounters a recoverable error."""


class UpstreamError(RAGEngineError):
    """An external dependency (datastore, LLM, government portal) failed."""

    def __init__(self, service: str, message: str, *, details: Any = None, status: int | None = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.message = message
        self.details = details
        self.status = status
