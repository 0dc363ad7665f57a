from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ..common.config_loader import Settings, load_settings
from ..engine.datastore import LegalStore
from ..engine.rag import BeleidsbankEngine
from ..engine.types import RetrievalResult


@dataclass(frozen=True)
class AskResult:
    answer: str
    sources: list[dict[str, Any]]
    mode: str
    detected_document: dict[str, Any] | None


def build_engine(*, settings: Settings | None = None, store: LegalStore | None = None) -> BeleidsbankEngine:
    resolved_settings = settings or load_settings()
    return BeleidsbankEngine(store or LegalStore.from_settings(resolved_settings), settings=resolved_settings)


def _detected_payload(result: RetrievalResult | None) -> dict[str, Any] | None:
    if result is None or result.detected is None:
        return None
    d = result.detected
    return {"id": d.id, "title": d.title, "score": d.score}


def ask(
    *,
    question: str,
    engine: Optional[BeleidsbankEngine] = None,
    settings: Settings | None = None,
) -> AskResult:
    """Answer a question with sources.

    Raises:
        ValueError: empty question
        RAGEngineError: retrieval or synthesis failed (UpstreamError for external services)
    """
    resolved_engine = engine or build_engine(settings=settings)
    result = resolved_engine.answer(question)
    return AskResult(
        answer=result.answer,
        sources=list(result.sources),
        mode=result.retrieval.mode.value if result.retrieval else "empty",
        detected_document=_detected_payload(result.retrieval),
    )


def search(
    *,
    query: str,
    engine: Optional[BeleidsbankEngine] = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Ranked passages as a JSON-ready payload (no LLM answer)."""
    resolved_engine = engine or build_engine(settings=settings)
    excerpt_chars = resolved_engine.settings.excerpt_chars
    result = resolved_engine.search(query)
    return {
        "ok": True,
        "query": query.strip(),
        "mode": result.mode.value,
        "detected_document": _detected_payload(result),
        "results": [
            {
                "id": s.chunk.id,
                "n": n,
                "label": s.chunk.label,
                "doc_id": s.chunk.doc_id,
                "similarity": s.score,
                "source_url": s.chunk.source_url,
                "excerpt": s.chunk.text[:excerpt_chars],
            }
            for n, s in enumerate(result.chunks, start=1)
        ],
    }


def get_source(
    chunk_id: str,
    *,
    store: LegalStore | None = None,
    settings: Settings | None = None,
) -> dict[str, Any] | None:
    """One stored chunk (without embedding), or None when the id is unknown."""
    cid = (chunk_id or "").strip()
    if not cid:
        raise ValueError("Missing id")
    resolved_store = store or LegalStore.from_settings(settings)
    row = resolved_store.get_chunk(cid)
    if row is None:
        return None
    return {
        "ok": True,
        "id": row.get("id"),
        "label": row.get("label") or "",
        "text": row.get("text") or "",
        "source_url": row.get("source_url") or "",
        "doc_id": row.get("doc_id") or "",
    }


def suggestions(
    *,
    topic: str | None = None,
    engine: Optional[BeleidsbankEngine] = None,
    settings: Settings | None = None,
) -> list[str]:
    resolved_engine = engine or build_engine(settings=settings)
    return resolved_engine.suggest_questions(topic)
