"""Tests for API routes."""

from __future__ import annotations

import pytest

from backend import services
from src.engine.types import UpstreamError
from src.ingestion import ingest, overheid_sources
from src.ingestion.article_segmentation import SegmentationError
from src.ingestion.overheid_sources import law_url

BODY = "Het bestuursorgaan neemt een besluit op de aanvraag binnen de daarvoor gestelde termijn, na afweging van alle belangen."

SRU_PAGE = """<sru:searchRetrieveResponse xmlns:sru="http://docs.oasis-open.org/ns/search-ws/sruResponse">
  <sru:numberOfRecords>2</sru:numberOfRecords>
  <sru:records>
    <sru:record><dcterms:identifier>BWBR0005537</dcterms:identifier><dcterms:title>Algemene wet bestuursrecht</dcterms:title><dcterms:type>wet</dcterms:type></sru:record>
    <sru:record><dcterms:identifier>BWBV0001000</dcterms:identifier><dcterms:title>Verdrag</dcterms:title></sru:record>
  </sru:records>
</sru:searchRetrieveResponse>"""


@pytest.fixture
def law_page(monkeypatch, test_settings):
    """Serve a seven-article law instead of downloading it."""
    html = "".join(
        f"<div><h4>Artikel {n}</h4><p>{BODY} ({n})</p></div>"
        for n in ("1", "2", "3", "4", "5", "6", "7")
    )
    monkeypatch.setattr(
        ingest, "fetch_law_text",
        lambda bwb_id, fmt="html", *, settings=None: (law_url(bwb_id, fmt, settings=test_settings), html),
    )


class TestChatEndpoint:
    """Tests for /api/chat."""

    def test_definition_question_cites_article_1_3(self, client):
        response = client.post("/api/chat", json={"message": "Wat is een besluit?"})

        assert response.status_code == 200
        data = response.json()
        assert data["answer"] == "Een besluit is een schriftelijke beslissing [1]."
        assert "1:3" in data["sources"][0]["title"]
        assert data["sources"][0]["n"] == 1
        assert data["sources"][0]["link"] == "https://wetten.overheid.nl/BWBR0005537"

    def test_cited_article(self, client):
        response = client.post("/api/chat", json={"message": "Wat staat er in artikel 5:1 Awb?"})

        assert response.status_code == 200
        assert [s["title"] for s in response.json()["sources"]] == ["Awb — Artikel 5:1"]

    @pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": "   "}])
    def test_missing_message(self, client, body):
        response = client.post("/api/chat", json=body)

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing message"

    def test_allowed_origin(self, client):
        response = client.post(
            "/api/chat", json={"message": "Wat is een besluit?"}, headers={"Origin": "https://beleidsbank.nl"}
        )
        assert response.status_code == 200

    def test_unknown_origin_is_forbidden(self, client):
        response = client.post(
            "/api/chat", json={"message": "Wat is een besluit?"}, headers={"Origin": "https://evil.example.com"}
        )
        assert response.status_code == 403

    def test_rate_limit(self, client, api_settings):
        api_settings(rate_limit_per_minute=2)

        codes = [client.post("/api/chat", json={"message": "Wat is een besluit?"}).status_code for _ in range(3)]

        assert codes == [200, 200, 429]
        blocked = client.post("/api/chat", json={"message": "Wat is een besluit?"})
        assert blocked.headers["Retry-After"] == "60"

    def test_rate_limit_is_per_client(self, client, api_settings):
        api_settings(rate_limit_per_minute=1)

        first = client.post("/api/chat", json={"message": "x"}, headers={"X-Forwarded-For": "203.0.113.1"})
        second = client.post("/api/chat", json={"message": "x"}, headers={"X-Forwarded-For": "203.0.113.2"})

        assert first.status_code == 200
        assert second.status_code == 200

    def test_upstream_failure(self, client, monkeypatch):
        def failing(**kwargs):
            raise UpstreamError("openai", "OpenAI chat failed", details={"error": {"message": "quota"}})

        monkeypatch.setattr(services, "get_answer", failing)

        response = client.post("/api/chat", json={"message": "Wat is een besluit?"})

        assert response.status_code == 500
        assert response.json() == {"error": "OpenAI chat failed", "details": {"error": {"message": "quota"}}}


class TestCors:
    def test_preflight_from_allowed_origin(self, client):
        response = client.options(
            "/api/chat",
            headers={"Origin": "https://beleidsbank.nl", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 200
        assert response.content == b""
        assert response.headers["access-control-allow-origin"] == "https://beleidsbank.nl"
        assert "POST" in response.headers["access-control-allow-methods"]

    def test_preflight_from_unknown_origin(self, client):
        response = client.options(
            "/api/chat",
            headers={"Origin": "https://evil.example.com", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 200
        assert response.content == b""
        assert "access-control-allow-origin" not in response.headers

    def test_plain_options_request(self, client):
        response = client.options("/api/suggestions")
        assert response.status_code == 200
        assert response.content == b""


class TestSuggestionsEndpoint:
    def test_without_body_falls_back(self, client):
        response = client.post("/api/suggestions")

        assert response.status_code == 200
        assert len(response.json()["suggestions"]) == 4

    def test_with_topic(self, client, fake_openai):
        fake_openai.reply = '["Wat is een besluit?", "Wat is een beschikking?"]'

        response = client.post("/api/suggestions", json={"topic": "Awb"})

        assert response.json() == {"suggestions": ["Wat is een besluit?", "Wat is een beschikking?"]}
        assert fake_openai.chat_calls[0]["messages"][1]["content"].endswith("Awb")


class TestSearchEndpoints:
    def test_search(self, client, awb_ids):
        response = client.get("/api/search", params={"q": "Wat is een besluit?"})

        assert response.status_code == 200
        data = response.json()
        assert data["mode"] == "semantic"
        assert data["results"][0]["id"] == awb_ids["Artikel 1:3"]
        assert data["results"][0]["n"] == 1

    def test_search_exact_reports_document(self, client):
        data = client.get("/api/search", params={"q": "artikel 6:7 awb"}).json()

        assert data["mode"] == "exact"
        assert data["detected_document"]["id"] == "BWBR0005537"

    def test_search_missing_q(self, client):
        response = client.get("/api/search")
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing q"

    def test_source(self, client, awb_ids):
        response = client.get("/api/source", params={"id": awb_ids["Artikel 1:2"]})

        assert response.status_code == 200
        data = response.json()
        assert data["label"] == "Awb — Artikel 1:2"
        assert data["text"].startswith("Artikel 1:2")

    def test_source_missing_id(self, client):
        assert client.get("/api/source").status_code == 400

    def test_source_not_found(self, client):
        response = client.get("/api/source", params={"id": "424242"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Not found"


class TestIngestEndpoints:
    def test_first_batch_links_to_next(self, client, law_page, fake_db):
        response = client.get("/api/ingest-bwb", params={"id": "BWBR0001840", "limit": 5})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["total_articles_found"] == 7
        assert data["blocks_prepared"] == 5
        assert data["next_offset"] == 5
        assert data["next"] == "/api/ingest-bwb?id=BWBR0001840&offset=5&format=html&limit=5"
        stored = [c for c in fake_db.tables["chunks"] if c["doc_id"] == "BWBR0001840"]
        assert len(stored) == 5

    def test_last_batch_is_done(self, client, law_page):
        data = client.get("/api/ingest-bwb", params={"id": "BWBR0001840", "limit": 5, "offset": 5}).json()

        assert data["done"] is True
        assert data["next"] is None

    def test_invalid_id(self, client):
        response = client.get("/api/ingest-bwb", params={"id": "abc"})

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Use ?id=BWBR")

    def test_invalid_format(self, client):
        assert client.get("/api/ingest-bwb", params={"id": "BWBR0005537", "format": "pdf"}).status_code == 422

    def test_no_articles(self, client, monkeypatch):
        def no_articles(**kwargs):
            raise SegmentationError("No articles found in html input (0 candidate blocks, min_chars=100)")

        monkeypatch.setattr(services, "ingest_bwb", no_articles)

        response = client.get("/api/ingest-bwb", params={"id": "BWBR0005537"})

        assert response.status_code == 422
        assert response.json()["error"] == "Geen artikelen gevonden"

    def test_fetch_failure(self, client, monkeypatch):
        def failing(bwb_id, fmt="html", *, settings=None):
            raise UpstreamError("overheid", "Fetch wetten.overheid.nl failed", details={"status": 503}, status=503)

        monkeypatch.setattr(ingest, "fetch_law_text", failing)

        response = client.get("/api/ingest-bwb", params={"id": "BWBR0005537"})

        assert response.status_code == 500
        assert response.json() == {"error": "Fetch wetten.overheid.nl failed", "details": {"status": 503}}

    def test_ingest_all_registers_catalogue_page(self, client, monkeypatch, fake_db):
        monkeypatch.setattr(overheid_sources, "_get", lambda url, *, params, settings, what: SRU_PAGE)

        response = client.get("/api/ingest-all", params={"startRecord": 1, "maximumRecords": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["found"] == 2
        assert data["bwbr_ids"] == ["BWBR0005537"]
        assert data["numberOfRecords"] == 2
        assert data["next"] is None
        titles = {d["id"]: d["title"] for d in fake_db.tables["documents"]}
        assert titles["BWBR0005537"] == "Algemene wet bestuursrecht"

    def test_ingest_all_queries_every_connection(self, client, monkeypatch):
        asked = []

        def fake_get(url, *, params, settings, what):
            asked.append(params["x-connection"])
            if params["x-connection"] == "CVDR":
                raise UpstreamError("overheid", "SRU fetch failed", status=503)
            return SRU_PAGE

        monkeypatch.setattr(overheid_sources, "_get", fake_get)

        response = client.get("/api/ingest-all", params={"connections": "BWB,CVDR"})

        assert response.status_code == 200
        data = response.json()
        assert sorted(asked) == ["BWB", "CVDR"]
        assert data["connections"] == ["BWB", "CVDR"]
        assert data["bwbr_ids"] == ["BWBR0005537"]

    def test_embed_documents_batch(self, client):
        first = client.post("/api/embed-documents-batch")
        second = client.post("/api/embed-documents-batch")

        assert first.json() == {"processed": 1}
        assert second.json() == {"done": True}

    def test_clear_document_chunks(self, client, fake_db):
        response = client.delete("/api/documents/bwbr0005537/chunks")

        assert response.json() == {"ok": True, "doc_id": "BWBR0005537", "deleted": 6}
        assert fake_db.tables["chunks"] == []

    def test_token_required_when_configured(self, client, api_settings):
        api_settings(ingest_token="s3cret")

        assert client.post("/api/embed-documents-batch").status_code == 401
        wrong = client.post("/api/embed-documents-batch", headers={"Authorization": "Bearer nope"})
        assert wrong.status_code == 401
        ok = client.post("/api/embed-documents-batch", headers={"Authorization": "Bearer s3cret"})
        assert ok.status_code == 200

    def test_token_not_needed_for_chat(self, client, api_settings):
        api_settings(ingest_token="s3cret")
        assert client.post("/api/chat", json={"message": "Wat is een besluit?"}).status_code == 200


class TestServiceEndpoints:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok", "version": "1.0.0"}

    def test_api_root(self, client):
        data = client.get("/api").json()
        assert data["name"] == "Beleidsbank API"
        assert data["docs"] == "/api/docs"
