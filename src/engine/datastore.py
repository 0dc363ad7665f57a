"""Datastore access: the Supabase `documents` and `chunks` tables.

Single Responsibility: every read and write against the datastore goes
through LegalStore. Callers get plain Document/Chunk objects back and never
see PostgREST query builders.

Upsert semantics:
- documents are merged on `id`
- chunks are merged on `(doc_id, label)`; rows are de-duplicated per batch
  first (longest text wins) because PostgREST rejects a batch that hits the
  same conflict key twice

All calls are retried on transient failures and otherwise raise UpstreamError.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import httpx
from postgrest.exceptions import APIError as PostgrestAPIError
from postgrest.types import ReturnMethod
from supabase import Client, ClientOptions, create_client

from ..common.config_loader import Settings, load_settings
from ..common.retry import is_transient_error, retry_with_backoff
from .types import Chunk, Document, UpstreamError

logger = logging.getLogger(__name__)

CHUNK_COLUMNS = "id,doc_id,label,text,source_url"
CHUNK_COLUMNS_WITH_EMBEDDING = CHUNK_COLUMNS + ",embedding"
DOCUMENT_COLUMNS = "id,title,source_url"

# PostgREST caps a single response (Supabase default max-rows is 1000).
PAGE_SIZE = 1000

_client: Client | None = None
_client_lock = threading.Lock()


def _build_client(settings: Settings) -> Client:
    if not settings.supabase_url:
        raise UpstreamError("supabase", "Missing SUPABASE_URL")
    if not settings.supabase_service_key:
        raise UpstreamError("supabase", "Missing SUPABASE_SERVICE_ROLE_KEY")
    options = ClientOptions(postgrest_client_timeout=settings.supabase_timeout_secs)
    return create_client(settings.supabase_url, settings.supabase_service_key, options=options)


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Return the singleton Supabase client (lazy, thread-safe)."""
    global _client  # noqa: PLW0603
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = _build_client(settings or load_settings())
    return _client


def reset_client() -> None:
    global _client  # noqa: PLW0603
    with _client_lock:
        _client = None


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, PostgrestAPIError):
        code = str(getattr(exc, "code", "") or "")
        return code in {"429", "500", "502", "503", "504"} or "timeout" in str(exc).lower()
    return is_transient_error(exc)


def dedupe_rows_by_doc_label(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep one row per (doc_id, label); the row with the longest text wins.

    First-seen order of keys is preserved.
    """
    by_key: dict[tuple[str, str], dict[str, Any]] = {}
    for row in rows:
        key = (str(row.get("doc_id") or ""), str(row.get("label") or ""))
        prev = by_key.get(key)
        if prev is None or len(row.get("text") or "") > len(prev.get("text") or ""):
            by_key[key] = row
    return list(by_key.values())


@dataclass(frozen=True)
class UpsertStats:
    sent: int
    unique: int

    @property
    def deduped(self) -> int:
        return self.sent - self.unique


class LegalStore:
    def __init__(
        self,
        client: Any,
        *,
        documents_table: str = "documents",
        chunks_table: str = "chunks",
        max_attempts: int = 3,
        base_delay: float = 0.5,
        sleep: Callable[[float], None] | None = None,
    ):
        self.client = client
        self.documents_table = documents_table
        self.chunks_table = chunks_table
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "LegalStore":
        cfg = settings or load_settings()
        return cls(
            get_supabase_client(cfg),
            documents_table=cfg.documents_table,
            chunks_table=cfg.chunks_table,
            max_attempts=cfg.retry_max_attempts,
            base_delay=cfg.retry_base_delay_secs,
        )

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _execute(self, what: str, build: Callable[[], Any]) -> list[dict[str, Any]]:
        """Build and execute one PostgREST request, returning response.data."""
        kwargs: dict[str, Any] = {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "is_retryable": _is_retryable,
        }
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            response = retry_with_backoff(lambda: build().execute(), **kwargs)
        except PostgrestAPIError as exc:
            details = getattr(exc, "json", None)
            raise UpstreamError(
                "supabase",
                f"Supabase {what} failed",
                details=details() if callable(details) else str(exc),
            ) from exc
        except (httpx.HTTPError, OSError) as exc:
            raise UpstreamError("supabase", f"Supabase {what} failed", details=str(exc)) from exc
        data = getattr(response, "data", None)
        return list(data) if isinstance(data, list) else []

    def _documents(self):
        return self.client.table(self.documents_table)

    def _chunks(self):
        return self.client.table(self.chunks_table)

    # ------------------------------------------------------------------
    # documents
    # ------------------------------------------------------------------

    def list_documents(self, *, limit: int = 10000) -> list[Document]:
        rows = self._paged(
            "documents select",
            lambda: self._documents().select(DOCUMENT_COLUMNS).order("id"),
            limit=limit,
        )
        return [
            Document(id=str(r.get("id") or ""), title=str(r.get("title") or ""), source_url=str(r.get("source_url") or ""))
            for r in rows
            if r.get("id")
        ]

    def upsert_documents(self, docs: Iterable[Document]) -> int:
        rows = [d.to_row() for d in docs]
        if not rows:
            return 0
        self._execute(
            "upsert documents",
            lambda: self._documents().upsert(rows, on_conflict="id", returning=ReturnMethod.minimal),
        )
        return len(rows)

    def documents_without_embedding(self, *, limit: int = 200) -> list[Document]:
        rows = self._execute(
            "documents select",
            lambda: self._documents().select("id,title").is_("embedding", "null").limit(limit),
        )
        return [Document(id=str(r["id"]), title=str(r.get("title") or "")) for r in rows if r.get("id")]

    def set_document_embedding(self, doc_id: str, embedding: list[float]) -> None:
        self._execute(
            "update document embedding",
            lambda: self._documents().update({"embedding": embedding}).eq("id", doc_id),
        )

    # ------------------------------------------------------------------
    # chunks
    # ------------------------------------------------------------------

    def upsert_chunks(self, rows: list[dict[str, Any]]) -> UpsertStats:
        unique = dedupe_rows_by_doc_label(rows)
        if not unique:
            return UpsertStats(sent=len(rows), unique=0)
        self._execute(
            "upsert chunks",
            lambda: self._chunks().upsert(unique, on_conflict="doc_id,label", returning=ReturnMethod.minimal),
        )
        return UpsertStats(sent=len(rows), unique=len(unique))

    def select_chunks(
        self,
        *,
        doc_id: str | None = None,
        label_contains: str | None = None,
        limit: int = 5000,
        offset: int = 0,
        with_embedding: bool = True,
    ) -> list[Chunk]:
        """Chunks ordered by id, optionally filtered by document and label substring.

        Returns at most `limit` rows, skipping the first `offset` matches.
        """
        columns = CHUNK_COLUMNS_WITH_EMBEDDING if with_embedding else CHUNK_COLUMNS

        def build():
            q = self._chunks().select(columns)
            if doc_id:
                q = q.eq("doc_id", doc_id)
            if label_contains:
                q = q.ilike("label", f"%{label_contains}%")
            return q.order("id")

        rows = self._paged("chunks select", build, limit=limit, offset=offset)
        return [Chunk.from_row(r) for r in rows]

    def get_chunk(self, chunk_id: str) -> dict[str, Any] | None:
        rows = self._execute(
            "chunk select",
            lambda: self._chunks().select(CHUNK_COLUMNS).eq("id", chunk_id).limit(1),
        )
        return rows[0] if rows else None

    def delete_chunks(self, doc_id: str) -> int:
        rows = self._execute(
            "delete chunks",
            lambda: self._chunks().delete().eq("doc_id", doc_id),
        )
        return len(rows)

    def _paged(
        self, what: str, build: Callable[[], Any], *, limit: int, offset: int = 0
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        start = max(0, offset)
        stop = start + limit
        while start < stop:
            end = min(start + PAGE_SIZE, stop) - 1
            page = self._execute(what, lambda: build().range(start, end))
            out.extend(page)
            if len(page) < end - start + 1:
                break
            start = end + 1
        return out
