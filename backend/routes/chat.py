"""API routes for chat and question suggestions.

Single Responsibility: Handle HTTP requests for Q&A functionality.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException

from .. import services
from ..dependencies import enforce_rate_limit, require_allowed_origin
from ..schemas import ChatRequest, ChatResponse, Source, SuggestionsRequest, SuggestionsResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"], dependencies=[Depends(require_allowed_origin)])


@router.post("/chat", response_model=ChatResponse, dependencies=[Depends(enforce_rate_limit)])
def chat_endpoint(request: ChatRequest) -> ChatResponse:
    """Answer a question from the stored legislation."""
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Missing message")

    start = time.time()
    try:
        result = services.get_answer(message=request.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        "chat: mode=%s detected=%s sources=%d in %.2fs",
        result.mode,
        (result.detected_document or {}).get("id"),
        len(result.sources),
        time.time() - start,
    )
    return ChatResponse(answer=result.answer, sources=[Source(**s) for s in result.sources])


@router.post("/suggestions", response_model=SuggestionsResponse, dependencies=[Depends(enforce_rate_limit)])
def suggestions_endpoint(request: SuggestionsRequest | None = None) -> SuggestionsResponse:
    """Four short example questions."""
    topic = request.topic if request else None
    return SuggestionsResponse(suggestions=services.get_suggestions(topic=topic))
