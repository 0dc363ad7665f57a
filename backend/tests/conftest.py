"""Pytest fixtures for backend tests.

The API runs against the real engine and pipeline, wired to the in-memory
FakeSupabase / FakeOpenAI doubles from tests/doubles.py.
"""

from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from backend import services
from src.common.config_loader import clear_config_cache
from src.engine import llm_client
from src.engine.rag import BeleidsbankEngine
from tests.doubles import (  # noqa: F401  (shared fixtures)
    awb_ids,
    awb_store,
    embed_keywords,
    fake_db,
    fake_openai,
    store,
    test_settings,
)


@pytest.fixture
def api_settings(monkeypatch, test_settings):
    """Settings seen by the API; call with overrides to change them for one test."""
    current = {"settings": test_settings}
    monkeypatch.setattr(services, "get_settings", lambda: current["settings"])

    def configure(**overrides):
        current["settings"] = replace(test_settings, **overrides)
        services.reset_state()
        return current["settings"]

    return configure


@pytest.fixture
def engine(awb_store, awb_ids, fake_openai, test_settings):
    return BeleidsbankEngine(awb_store, settings=test_settings, client=fake_openai)


@pytest.fixture
def client(monkeypatch, api_settings, engine, fake_openai):
    """Test client over the Awb sample datastore."""
    from backend.main import app

    services.reset_state()
    clear_config_cache()
    monkeypatch.setattr(services, "get_engine", lambda: engine)
    # Ingestion embeds through the shared client.
    monkeypatch.setattr(llm_client, "_sync_client", fake_openai)
    yield TestClient(app)
    services.reset_state()
    clear_config_cache()
