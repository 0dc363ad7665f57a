"""Request guards shared by the routers.

- require_allowed_origin: browser requests from an unknown origin get 403
  (requests without an Origin header, e.g. curl or server-to-server, pass)
- enforce_rate_limit: fixed-window limit per client, 429 when exceeded
- require_ingest_token: bearer token for ingestion endpoints when INGEST_TOKEN is set
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Header, HTTPException, Request

from src.common.rate_limit import client_key

from . import services

logger = logging.getLogger(__name__)


def require_allowed_origin(request: Request) -> None:
    origin = request.headers.get("origin")
    if origin and origin not in services.get_settings().cors_origins:
        logger.info("Rejected request from origin %s", origin)
        raise HTTPException(status_code=403, detail="Forbidden (origin not allowed)")


def enforce_rate_limit(request: Request) -> None:
    peer = request.client.host if request.client else None
    key = client_key(request.headers.get("x-forwarded-for"), peer)
    limiter = services.get_rate_limiter()
    decision = limiter.hit(key)
    if not decision.ok:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Try again in a minute.",
            headers={"Retry-After": str(limiter.retry_after(decision))},
        )


def require_ingest_token(authorization: str | None = Header(default=None)) -> None:
    token = services.get_settings().ingest_token
    if not token:
        return
    expected = f"Bearer {token}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Missing or invalid ingest token")
