"""API routes for ingestion and datastore maintenance.

Single Responsibility: Handle HTTP requests for ingestion operations.

Security:
- Bearer token required when INGEST_TOKEN is configured
- BWB id validation (src.ingestion.overheid_sources)
- Outbound requests only to the overheid.nl whitelist
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query

from src.ingestion.overheid_sources import InvalidDocumentIdError

from .. import services
from ..dependencies import require_ingest_token
from ..schemas import CatalogResponse, ClearChunksResponse, EmbedBatchResponse, IngestReportResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ingest"], dependencies=[Depends(require_ingest_token)])

_TRUE = {"1", "true", "yes"}


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUE


@router.get("/ingest-bwb", response_model=IngestReportResponse)
def ingest_bwb_endpoint(
    id: str = Query(default="", description="BWB id, e.g. BWBR0005537"),
    limit: int | None = Query(default=None, description="Articles per batch (5-60)"),
    offset: int = Query(default=0, ge=0),
    format: str = Query(default="html", pattern="^(html|xml)$"),
) -> IngestReportResponse:
    """Ingest one batch of articles of a law."""
    try:
        report = services.ingest_bwb(bwb_id=id, limit=limit, offset=offset, fmt=format)
    except InvalidDocumentIdError as e:
        raise HTTPException(status_code=400, detail=str(e))

    next_url = None
    if report.next_offset is not None:
        params = {"id": report.id, "offset": report.next_offset, "format": format}
        if limit is not None:
            params["limit"] = limit
        next_url = f"/api/ingest-bwb?{urlencode(params)}"
    return IngestReportResponse(**report.to_dict(), next=next_url)


@router.get("/ingest-all", response_model=CatalogResponse)
def ingest_all_endpoint(
    startRecord: int = Query(default=1, ge=1),
    maximumRecords: int = Query(default=25, ge=1),
    include_verdrag: str | None = Query(default=None),
    ingest: str | None = Query(default=None),
    limit: int | None = Query(default=60),
    offset: int = Query(default=0, ge=0),
    maxCalls: int = Query(default=8, ge=1),
    connections: str = Query(default="BWB", description="Comma-separated SRU connections, e.g. BWB,CVDR"),
) -> CatalogResponse:
    """Register one SRU catalogue page of regulations (and optionally ingest them)."""
    report = services.ingest_all(
        start_record=startRecord,
        maximum_records=maximumRecords,
        include_verdrag=_flag(include_verdrag),
        ingest=_flag(ingest),
        limit=limit,
        offset=offset,
        max_calls=maxCalls,
        connections=[c for c in connections.split(",") if c.strip()],
    )
    return CatalogResponse(**report.to_dict())


@router.post("/embed-documents-batch", response_model=EmbedBatchResponse, response_model_exclude_none=True)
def embed_documents_batch_endpoint(limit: int = Query(default=200, ge=1, le=1000)) -> EmbedBatchResponse:
    """Embed titles of documents that have no embedding yet."""
    processed = services.embed_documents(limit=limit)
    if not processed:
        return EmbedBatchResponse(done=True)
    return EmbedBatchResponse(processed=processed)


@router.delete("/documents/{doc_id}/chunks", response_model=ClearChunksResponse)
def clear_document_endpoint(doc_id: str) -> ClearChunksResponse:
    """Delete all chunks of one document (e.g. before a clean re-ingest)."""
    try:
        deleted = services.clear_document_chunks(doc_id=doc_id)
    except InvalidDocumentIdError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Cleared %d chunks of %s", deleted, doc_id)
    return ClearChunksResponse(doc_id=doc_id.strip().upper(), deleted=deleted)
