"""LLM client for OpenAI API communication.

Single Responsibility: Handle all OpenAI API calls (chat completions and embeddings).
No prompt construction, no ranking, no business logic.

The client is lazily initialized as a singleton (connection pooling).
Use reset_clients() in test teardown to clear the singleton.
"""

from __future__ import annotations

import logging
import re
import threading
import time

from openai import APIStatusError, OpenAI, OpenAIError, RateLimitError

from ..common.config_loader import Settings, load_settings
from .types import UpstreamError

logger = logging.getLogger(__name__)


__all__ = [
    "get_sync_client",
    "reset_clients",
    "call_chat",
    "embed_texts",
]

# ---------------------------------------------------------------------------
# Singleton state
# ---------------------------------------------------------------------------
_sync_client: OpenAI | None = None
_sync_lock = threading.Lock()

_RATE_LIMIT_RETRIES = 3


def _build_sync_client(settings: Settings) -> OpenAI:
    """Create an OpenAI client with timeout/retries from config.

    Uses timeouts/retries to avoid 'silent stalls' on network issues.
    """
    if not settings.openai_api_key:
        raise UpstreamError("openai", "Missing OPENAI_API_KEY")
    return OpenAI(
        api_key=settings.openai_api_key,
        timeout=settings.openai_timeout_secs,
        max_retries=settings.openai_max_retries,
    )


def get_sync_client(settings: Settings | None = None) -> OpenAI:
    """Return the singleton sync OpenAI client (lazy, thread-safe)."""
    global _sync_client  # noqa: PLW0603
    if _sync_client is None:
        with _sync_lock:
            if _sync_client is None:
                _sync_client = _build_sync_client(settings or load_settings())
    return _sync_client


def reset_clients() -> None:
    """Close and clear the singleton. Call in test teardown."""
    global _sync_client  # noqa: PLW0603
    with _sync_lock:
        if _sync_client is not None:
            close_fn = getattr(_sync_client, "close", None)
            if callable(close_fn):
                close_fn()
            _sync_client = None


def _rate_limit_wait(exc: Exception, attempt: int) -> float:
    wait_match = re.search(r"try again in (\d+\.?\d*)s", str(exc))
    return float(wait_match.group(1)) + 0.5 if wait_match else float(2 ** attempt)


def _error_details(exc: Exception):
    if isinstance(exc, APIStatusError):
        try:
            return exc.response.json()
        except ValueError:
            return exc.response.text
    return str(exc)


def call_chat(
    system: str,
    user: str,
    *,
    model: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    client: OpenAI | None = None,
    settings: Settings | None = None,
    sleep=time.sleep,
) -> str:
    """Run one chat completion and return the stripped completion text.

    RateLimitError is retried with the server-suggested wait (or exponential
    backoff); every other OpenAI error becomes an UpstreamError.
    """
    cfg = settings or load_settings()
    client = client or get_sync_client(cfg)
    eff_model = model or cfg.chat_model
    eff_temp = cfg.temperature if temperature is None else temperature
    eff_max_tokens = cfg.max_tokens if max_tokens is None else max_tokens

    for attempt in range(_RATE_LIMIT_RETRIES):
        try:
            response = client.chat.completions.create(
                model=eff_model,
                temperature=eff_temp,
                max_tokens=eff_max_tokens,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
            content = response.choices[0].message.content if response.choices else ""
            return (content or "").strip()
        except RateLimitError as exc:
            if attempt < _RATE_LIMIT_RETRIES - 1:
                wait_time = _rate_limit_wait(exc, attempt)
                logger.warning("OpenAI rate limited, retrying in %.1fs", wait_time)
                sleep(wait_time)
                continue
            raise UpstreamError(
                "openai",
                f"OpenAI chat failed: rate limit exceeded after {_RATE_LIMIT_RETRIES} attempts",
                details=_error_details(exc),
                status=429,
            ) from exc
        except OpenAIError as exc:
            raise UpstreamError("openai", "OpenAI chat failed", details=_error_details(exc)) from exc

    raise UpstreamError("openai", "OpenAI chat failed after retries")


def embed_texts(
    texts: list[str],
    *,
    model: str | None = None,
    client: OpenAI | None = None,
    settings: Settings | None = None,
) -> list[list[float]]:
    """Embed a batch of texts, one vector per input, in input order.

    Empty input returns an empty list without calling the API. Texts are
    truncated to `embedding_max_chars`.
    """
    if not texts:
        return []

    cfg = settings or load_settings()
    client = client or get_sync_client(cfg)
    max_chars = cfg.embedding_max_chars
    payload = [(t or "")[:max_chars] for t in texts]

    try:
        response = client.embeddings.create(model=model or cfg.embedding_model, input=payload)
    except OpenAIError as exc:
        raise UpstreamError("openai", "OpenAI embeddings failed", details=_error_details(exc)) from exc

    data = sorted(response.data, key=lambda item: getattr(item, "index", 0))
    vectors = [list(item.embedding) for item in data]
    if len(vectors) != len(texts):
        raise UpstreamError(
            "openai",
            f"Embedding count mismatch (expected {len(texts)}, got {len(vectors)})",
        )
    return vectors
