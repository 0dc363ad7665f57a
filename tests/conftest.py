"""Pytest configuration for the core test suite."""

import pytest

from src.common.config_loader import clear_config_cache
from src.engine import datastore, llm_client
from src.ingestion import overheid_sources
from tests.doubles import (  # noqa: F401  (shared fixtures)
    awb_ids,
    awb_store,
    embed_keywords,
    fake_db,
    fake_openai,
    store,
    test_settings,
)


@pytest.fixture(autouse=True)
def isolated_singletons(monkeypatch):
    """Fresh settings cache and no lazily built clients leaking between tests."""
    for key in ("INGEST_TOKEN", "CORS_ORIGINS", "RATE_LIMIT_PER_MINUTE", "RAG_TOP_K", "RAG_CHAT_TOP_K"):
        monkeypatch.delenv(key, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()
    llm_client.reset_clients()
    datastore.reset_client()
    overheid_sources.reset_session()
