"""FastAPI application entry point.

Single Responsibility: Configure and run the FastAPI application.

Run with:
    uvicorn backend.main:app --port 8000
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from src.common.config_loader import load_settings
from src.engine.types import RAGEngineError, UpstreamError
from src.ingestion.article_segmentation import SegmentationError
from src.ingestion.overheid_sources import SourceSecurityError

from .routes import chat, config, ingest, search
from .routes.config import API_VERSION
from .schemas import ErrorResponse

logger = logging.getLogger(__name__)

# Application metadata
APP_TITLE = "Beleidsbank API"
APP_DESCRIPTION = "REST API for the Beleidsbank assistant on Dutch legislation"

app = FastAPI(
    title=APP_TITLE,
    description=APP_DESCRIPTION,
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# CORS configuration (config cors.allowed_origins + CORS_ORIGINS env var)
CORS_ORIGINS = list(load_settings().cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Vary": "Origin",
}


@app.middleware("http")
async def answer_preflight(request: Request, call_next):
    """OPTIONS on /api/* is always an empty 200; CORS headers only for allowed origins."""
    if request.method != "OPTIONS" or not request.url.path.startswith("/api"):
        return await call_next(request)
    origin = request.headers.get("origin")
    headers = {"Vary": "Origin"}
    if origin and origin in CORS_ORIGINS:
        headers = {**PREFLIGHT_HEADERS, "Access-Control-Allow-Origin": origin}
    return Response(status_code=200, headers=headers)


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.error("%s %s: %s (%s)", request.method, request.url.path, exc, exc.details)
    return JSONResponse(status_code=500, content={"error": exc.message, "details": exc.details})


@app.exception_handler(SegmentationError)
async def segmentation_error_handler(request: Request, exc: SegmentationError) -> JSONResponse:
    logger.warning("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=422, content={"error": "Geen artikelen gevonden", "details": str(exc)})


@app.exception_handler(RAGEngineError)
async def engine_error_handler(request: Request, exc: RAGEngineError) -> JSONResponse:
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": f"{request.url.path} failed", "details": str(exc)})


@app.exception_handler(SourceSecurityError)
async def source_security_error_handler(request: Request, exc: SourceSecurityError) -> JSONResponse:
    logger.error("Blocked outbound URL: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Source URL not allowed", "details": str(exc)})


# Include API routers
ERROR_RESPONSES = {500: {"model": ErrorResponse, "description": "Upstream service failed"}}

app.include_router(chat.router, prefix="/api", responses=ERROR_RESPONSES)
app.include_router(search.router, prefix="/api", responses=ERROR_RESPONSES)
app.include_router(
    ingest.router,
    prefix="/api",
    responses={**ERROR_RESPONSES, 422: {"model": ErrorResponse, "description": "No articles found"}},
)
app.include_router(config.router, prefix="/api")


@app.get("/api")
async def api_root():
    """API root endpoint."""
    return {
        "name": APP_TITLE,
        "version": API_VERSION,
        "docs": "/api/docs",
    }


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=int(os.getenv("API_PORT", "8000")),
        reload=True,
    )
