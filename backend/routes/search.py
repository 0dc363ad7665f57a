"""API routes for passage search and source lookup."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from .. import services
from ..schemas import SearchResponse, SourceResponse

router = APIRouter(tags=["search"])


@router.get("/search", response_model=SearchResponse)
def search_endpoint(q: str = Query(default="", description="Search query")) -> SearchResponse:
    """Ranked passages for a query (no generated answer)."""
    if not q.strip():
        raise HTTPException(status_code=400, detail="Missing q")
    try:
        payload = services.search_passages(query=q)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return SearchResponse(**payload)


@router.get("/source", response_model=SourceResponse)
def source_endpoint(id: str = Query(default="", description="Chunk id")) -> SourceResponse:
    """Full text of one stored passage."""
    if not id.strip():
        raise HTTPException(status_code=400, detail="Missing id")
    row = services.get_source(chunk_id=id)
    if row is None:
        raise HTTPException(status_code=404, detail="Not found")
    return SourceResponse(**row)
