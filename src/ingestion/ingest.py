"""Ingestion pipeline: wetten.overheid.nl -> article chunks -> Supabase.

One call of ingest_law() processes one batch ([offset, offset + limit)) of
the articles of a law, so long laws are ingested in several short calls:

    report = ingest_law("BWBR0005537", limit=20, offset=0)
    while not report.done:
        report = ingest_law("BWBR0005537", limit=20, offset=report.next_offset)

There is no transaction around the document row and the chunk rows; both
writes are upserts, so re-running a batch is safe.

Usage:
    python -m src.ingestion.ingest --id BWBR0005537 [--format xml] [--all]
    python -m src.ingestion.ingest --catalog [--start-record 1] [--connection BWB] [--ingest]
    python -m src.ingestion.ingest --embed-documents
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Sequence

from ..common.config_loader import Settings, load_settings
from ..engine.datastore import LegalStore
from ..engine.llm_client import embed_texts
from ..engine.types import Document, RAGEngineError
from .article_segmentation import article_label, infer_doc_short, segment_articles
from .overheid_sources import (
    InvalidDocumentIdError,
    SruResult,
    build_cql_query,
    collect_records,
    fetch_law_text,
    law_url,
    search_registries,
    validate_bwb_id,
)

logger = logging.getLogger(__name__)

Embedder = Callable[[list[str]], list[list[float]]]


@dataclass(frozen=True)
class IngestReport:
    id: str
    total_articles_found: int
    blocks_prepared: int
    saved_or_updated: int
    deduped_in_batch: int = 0
    next_offset: int | None = None
    done: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, **asdict(self)}


@dataclass
class CatalogReport:
    start_record: int
    maximum_records: int
    include_verdrag: bool
    number_of_records: int | None
    next_record_position: int | None
    found: int
    bwbr_ids: list[str]
    upserted_documents: int
    ingest_results: list[dict[str, Any]] = field(default_factory=list)
    connections: list[str] = field(default_factory=lambda: ["BWB"])

    @property
    def next_params(self) -> dict[str, Any] | None:
        if not self.next_record_position:
            return None
        params: dict[str, Any] = {
            "startRecord": self.next_record_position,
            "maximumRecords": self.maximum_records,
            "include_verdrag": int(self.include_verdrag),
        }
        if self.connections != ["BWB"]:
            params["connections"] = ",".join(self.connections)
        return params

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "startRecord": self.start_record,
            "maximumRecords": self.maximum_records,
            "include_verdrag": self.include_verdrag,
            "connections": list(self.connections),
            "numberOfRecords": self.number_of_records,
            "nextRecordPosition": self.next_record_position,
            "found": self.found,
            "bwbr_ids": list(self.bwbr_ids),
            "upserted_documents": self.upserted_documents,
            "ingest_results": list(self.ingest_results),
            "next": self.next_params,
        }


def _clamp(value: int | None, low: int, high: int, default: int) -> int:
    try:
        v = int(value) if value is not None else default
    except (TypeError, ValueError):
        v = default
    return max(low, min(high, v))


def _default_embedder(settings: Settings) -> Embedder:
    return lambda texts: embed_texts(texts, settings=settings)


def ingest_law(
    bwb_id: str,
    *,
    limit: int | None = None,
    offset: int = 0,
    fmt: str = "html",
    title: str | None = None,
    store: LegalStore | None = None,
    embed: Embedder | None = None,
    settings: Settings | None = None,
) -> IngestReport:
    """Fetch, segment, embed and store one batch of articles of a law.

    Raises:
        InvalidDocumentIdError: malformed BWB id
        SegmentationError: the law text contains no recognizable article
        UpstreamError: fetch, embedding or datastore failure
    """
    cfg = settings or load_settings()
    doc_id = validate_bwb_id(bwb_id)
    limit = _clamp(limit, cfg.ingest_min_limit, cfg.ingest_max_limit, cfg.ingest_default_limit)
    offset = max(0, int(offset or 0))

    fetched_url, raw = fetch_law_text(doc_id, fmt, settings=cfg)
    segments = segment_articles(raw, min_chars=cfg.min_article_chars)
    batch = segments[offset: offset + limit]

    if not batch:
        logger.info("%s: offset %d beyond %d articles, nothing to do", doc_id, offset, len(segments))
        return IngestReport(
            id=doc_id,
            total_articles_found=len(segments),
            blocks_prepared=0,
            saved_or_updated=0,
            done=True,
        )

    store = store or LegalStore.from_settings(cfg)
    embed = embed or _default_embedder(cfg)
    doc_short = infer_doc_short(doc_id)
    # Chunks always cite the readable page, also when the XML was parsed.
    source_url = law_url(doc_id, "html", settings=cfg) if fmt == "xml" else fetched_url

    store.upsert_documents([Document(id=doc_id, title=title or doc_short, source_url=source_url)])

    embeddings = embed([s.text for s in batch])
    if len(embeddings) != len(batch):
        raise RAGEngineError(
            f"Embedding count mismatch for {doc_id} (expected {len(batch)}, got {len(embeddings)})"
        )

    rows = [
        {
            "doc_id": doc_id,
            "label": article_label(doc_short, seg.number),
            "text": seg.text,
            "source_url": source_url,
            "embedding": vec,
        }
        for seg, vec in zip(batch, embeddings)
    ]
    stats = store.upsert_chunks(rows)

    next_offset = offset + limit
    done = next_offset >= len(segments)
    logger.info(
        "%s: stored %d chunks (%d deduped) for articles %d-%d of %d",
        doc_id, stats.unique, stats.deduped, offset, offset + len(batch) - 1, len(segments),
    )
    return IngestReport(
        id=doc_id,
        total_articles_found=len(segments),
        blocks_prepared=len(batch),
        saved_or_updated=stats.unique,
        deduped_in_batch=stats.deduped,
        next_offset=None if done else next_offset,
        done=done,
    )


def ingest_catalog(
    *,
    start_record: int = 1,
    maximum_records: int = 25,
    include_verdrag: bool = False,
    ingest: bool = False,
    limit: int | None = 60,
    offset: int = 0,
    max_calls: int = 8,
    connections: Sequence[str] = ("BWB",),
    store: LegalStore | None = None,
    search: Callable[..., dict[str, SruResult]] = search_registries,
    ingest_one: Callable[..., IngestReport] = ingest_law,
    settings: Settings | None = None,
) -> CatalogReport:
    """Register one SRU page of regulations and optionally ingest them.

    The page is requested from every connection concurrently and the records
    are merged by identifier; paging follows the first connection. Only BWBR
    identifiers (regulations) are kept; treaties (BWBV) are listed by the SRU
    service when include_verdrag is set but never stored.
    """
    cfg = settings or load_settings()
    start_record = max(1, int(start_record or 1))
    maximum_records = _clamp(maximum_records, 1, cfg.catalog_max_records, 25)
    max_calls = _clamp(max_calls, 1, cfg.catalog_max_calls, 8)

    conns = list(dict.fromkeys(c.strip() for c in connections if c and c.strip())) or ["BWB"]
    results = search(
        build_cql_query(include_verdrag=include_verdrag),
        conns,
        start_record=start_record,
        maximum_records=maximum_records,
        settings=cfg,
    )
    primary = results.get(conns[0]) or SruResult()
    records = collect_records(results)

    docs: list[Document] = []
    for rec in records:
        if not rec.identifier.upper().startswith("BWBR"):
            continue
        docs.append(
            Document(
                id=rec.identifier,
                title=rec.title or rec.identifier,
                type=rec.type or "BWB",
                source_url=law_url(rec.identifier, settings=cfg),
            )
        )

    store = store or LegalStore.from_settings(cfg)
    upserted = store.upsert_documents(docs)

    report = CatalogReport(
        start_record=start_record,
        maximum_records=maximum_records,
        include_verdrag=include_verdrag,
        number_of_records=primary.number_of_records,
        next_record_position=primary.next_record_position,
        found=len(records),
        bwbr_ids=[d.id for d in docs],
        upserted_documents=upserted,
        connections=conns,
    )

    if ingest:
        for doc in docs[:max_calls]:
            try:
                r = ingest_one(doc.id, limit=limit, offset=offset, title=doc.title, store=store, settings=cfg)
            except (RAGEngineError, InvalidDocumentIdError) as e:
                logger.warning("Catalogue ingest of %s failed: %s", doc.id, e)
                report.ingest_results.append({"id": doc.id, "ok": False, "error": str(e)})
                continue
            report.ingest_results.append({"id": doc.id, "ok": True, "response": r.to_dict()})

    logger.info(
        "Catalogue page start=%d: %d records, %d BWBR registered, %d ingested",
        start_record, len(records), upserted, len(report.ingest_results),
    )
    return report


def embed_documents_batch(
    limit: int = 200,
    *,
    store: LegalStore | None = None,
    embed: Embedder | None = None,
    settings: Settings | None = None,
) -> int:
    """Embed the titles of documents that have no embedding yet.

    Returns the number of documents processed (0 when nothing is left).
    """
    cfg = settings or load_settings()
    store = store or LegalStore.from_settings(cfg)
    docs = store.documents_without_embedding(limit=max(1, int(limit)))
    if not docs:
        return 0

    embed = embed or _default_embedder(cfg)
    vectors = embed([d.title or d.id for d in docs])
    if len(vectors) != len(docs):
        raise RAGEngineError(f"Embedding count mismatch (expected {len(docs)}, got {len(vectors)})")
    for doc, vec in zip(docs, vectors):
        store.set_document_embedding(doc.id, vec)
    logger.info("Embedded %d document titles", len(docs))
    return len(docs)


def clear_document(doc_id: str, *, store: LegalStore | None = None, settings: Settings | None = None) -> int:
    """Delete all chunks of one document. Returns the number of deleted rows."""
    doc_id = validate_bwb_id(doc_id, regulations_only=False)
    store = store or LegalStore.from_settings(settings)
    deleted = store.delete_chunks(doc_id)
    logger.info("Deleted %d chunks of %s", deleted, doc_id)
    return deleted


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="wetten.overheid.nl -> Supabase chunks")
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--id", default="", help="BWB id of the law to ingest (e.g. BWBR0005537)")
    mode.add_argument("--catalog", action="store_true", help="Register one SRU catalogue page")
    mode.add_argument("--embed-documents", action="store_true", help="Embed document titles without embedding")
    mode.add_argument("--clear", default="", help="Delete all chunks of this document id")
    parser.add_argument("--format", dest="fmt", choices=("html", "xml"), default="html")
    parser.add_argument("--limit", type=int, default=None, help="Articles per batch (clamped to config bounds)")
    parser.add_argument("--offset", type=int, default=0)
    parser.add_argument("--all", action="store_true", help="Keep ingesting batches until the law is done")
    parser.add_argument("--start-record", type=int, default=1)
    parser.add_argument("--maximum-records", type=int, default=25)
    parser.add_argument("--include-verdrag", action="store_true")
    parser.add_argument("--ingest", action="store_true", help="With --catalog: also ingest the listed laws")
    parser.add_argument("--max-calls", type=int, default=8)
    parser.add_argument(
        "--connection",
        dest="connections",
        action="append",
        default=None,
        help="SRU connection to list (repeatable, default BWB)",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
    return parser.parse_args(argv)


def run_ingestion(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    settings = load_settings()

    try:
        if args.catalog:
            out: Any = ingest_catalog(
                start_record=args.start_record,
                maximum_records=args.maximum_records,
                include_verdrag=args.include_verdrag,
                ingest=args.ingest,
                limit=args.limit,
                offset=args.offset,
                max_calls=args.max_calls,
                connections=args.connections or ["BWB"],
                settings=settings,
            ).to_dict()
        elif args.embed_documents:
            processed = embed_documents_batch(settings=settings)
            out = {"processed": processed} if processed else {"done": True}
        elif args.clear:
            out = {"ok": True, "doc_id": args.clear, "deleted": clear_document(args.clear, settings=settings)}
        else:
            report = ingest_law(args.id, limit=args.limit, offset=args.offset, fmt=args.fmt, settings=settings)
            while args.all and not report.done:
                report = ingest_law(
                    args.id, limit=args.limit, offset=report.next_offset or 0, fmt=args.fmt, settings=settings
                )
            out = report.to_dict()
    except (RAGEngineError, InvalidDocumentIdError) as e:
        logger.error("Ingestion failed: %s", e)
        return 1

    print(json.dumps(out, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(run_ingestion())
