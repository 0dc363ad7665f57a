"""Service layer - thin wrapper around src.services.ask and src.ingestion.ingest.

Single Responsibility: Bridge between FastAPI routes and the RAG engine.
No business logic duplication - delegates to the engine and the pipeline.

The engine and the rate limiter are process-wide singletons; tests replace
the functions below with monkeypatch or call reset_state().
"""

from __future__ import annotations

import threading
from typing import Any

from src.common.config_loader import Settings, load_settings
from src.common.rate_limit import FixedWindowRateLimiter
from src.engine.rag import BeleidsbankEngine
from src.ingestion.ingest import (
    CatalogReport,
    IngestReport,
    clear_document,
    embed_documents_batch,
    ingest_catalog,
    ingest_law,
)
from src.services.ask import AskResult, ask, build_engine, get_source as _get_source, search, suggestions

_engine: BeleidsbankEngine | None = None
_limiter: FixedWindowRateLimiter | None = None
_lock = threading.Lock()


def get_settings() -> Settings:
    """Load application settings."""
    return load_settings()


def get_engine() -> BeleidsbankEngine:
    global _engine  # noqa: PLW0603
    if _engine is None:
        with _lock:
            if _engine is None:
                _engine = build_engine(settings=get_settings())
    return _engine


def get_rate_limiter() -> FixedWindowRateLimiter:
    global _limiter  # noqa: PLW0603
    if _limiter is None:
        with _lock:
            if _limiter is None:
                s = get_settings()
                _limiter = FixedWindowRateLimiter(limit=s.rate_limit_per_minute, window_secs=s.rate_limit_window_secs)
    return _limiter


def reset_state() -> None:
    """Drop the cached engine and rate-limit windows."""
    global _engine, _limiter  # noqa: PLW0603
    with _lock:
        _engine = None
        _limiter = None


def get_answer(*, message: str) -> AskResult:
    return ask(question=message, engine=get_engine())


def search_passages(*, query: str) -> dict[str, Any]:
    return search(query=query, engine=get_engine())


def get_source(*, chunk_id: str) -> dict[str, Any] | None:
    return _get_source(chunk_id, store=get_engine().store)


def get_suggestions(*, topic: str | None = None) -> list[str]:
    return suggestions(topic=topic, engine=get_engine())


def ingest_bwb(*, bwb_id: str, limit: int | None, offset: int, fmt: str) -> IngestReport:
    return ingest_law(bwb_id, limit=limit, offset=offset, fmt=fmt, store=get_engine().store, settings=get_settings())


def ingest_all(
    *,
    start_record: int,
    maximum_records: int,
    include_verdrag: bool,
    ingest: bool,
    limit: int | None,
    offset: int,
    max_calls: int,
    connections: list[str] | None = None,
) -> CatalogReport:
    return ingest_catalog(
        start_record=start_record,
        maximum_records=maximum_records,
        include_verdrag=include_verdrag,
        ingest=ingest,
        limit=limit,
        offset=offset,
        max_calls=max_calls,
        connections=connections or ["BWB"],
        store=get_engine().store,
        settings=get_settings(),
    )


def embed_documents(*, limit: int) -> int:
    return embed_documents_batch(limit, store=get_engine().store, settings=get_settings())


def clear_document_chunks(*, doc_id: str) -> int:
    return clear_document(doc_id, store=get_engine().store, settings=get_settings())
