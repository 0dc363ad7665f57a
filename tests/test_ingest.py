"""Tests for src/ingestion/ingest.py - batch ingestion, catalogue and CLI."""

import json

import pytest

from src.engine.types import RAGEngineError, UpstreamError
from src.ingestion import ingest, overheid_sources
from src.ingestion.ingest import (
    clear_document,
    embed_documents_batch,
    ingest_catalog,
    ingest_law,
    run_ingestion,
)
from src.ingestion.overheid_sources import InvalidDocumentIdError, SruRecord, SruResult, law_url

BODY = "Het bestuursorgaan neemt een besluit op de aanvraag binnen de daarvoor gestelde termijn, na afweging van alle belangen."


def _law_html(numbers):
    articles = "\n".join(f"<div><h4>Artikel {n}</h4><p>{BODY} ({n})</p></div>" for n in numbers)
    return f"<html><body>{articles}</body></html>"


@pytest.fixture
def fetched(monkeypatch, test_settings):
    """Serve a fixed law text instead of downloading it; records the requests."""
    calls = []

    def install(numbers):
        html = _law_html(numbers)

        def fake_fetch(bwb_id, fmt="html", *, settings=None):
            calls.append((bwb_id, fmt))
            return law_url(bwb_id, fmt, settings=test_settings), html

        monkeypatch.setattr(ingest, "fetch_law_text", fake_fetch)
        return calls

    return install


@pytest.fixture
def embed(embed_keywords):
    return lambda texts: [embed_keywords(t) for t in texts]


# ─────────────────────────────────────────────────────────────────────────────
# ingest_law
# ─────────────────────────────────────────────────────────────────────────────


class TestIngestLaw:
    def test_first_batch(self, fetched, store, fake_db, embed, test_settings, embed_keywords):
        fetched(["1:1", "1:2", "1:3", "2:1", "2:2", "3:1", "3:2"])

        report = ingest_law("BWBR0005537", limit=5, store=store, embed=embed, settings=test_settings)

        assert report.to_dict() == {
            "ok": True,
            "id": "BWBR0005537",
            "total_articles_found": 7,
            "blocks_prepared": 5,
            "saved_or_updated": 5,
            "deduped_in_batch": 0,
            "next_offset": 5,
            "done": False,
        }
        assert fake_db.tables["documents"] == [
            {"id": "BWBR0005537", "title": "Awb", "source_url": "https://wetten.overheid.nl/BWBR0005537"}
        ]
        chunk = fake_db.tables["chunks"][0]
        assert chunk["label"] == "Awb — Artikel 1:1"
        assert chunk["source_url"] == "https://wetten.overheid.nl/BWBR0005537"
        assert chunk["embedding"] == embed_keywords(chunk["text"])

    def test_last_batch_is_done(self, fetched, store, embed, test_settings):
        fetched(["1", "2", "3", "4", "5", "6", "7"])

        report = ingest_law("BWBR0005537", limit=5, offset=5, store=store, embed=embed, settings=test_settings)

        assert report.blocks_prepared == 2
        assert report.done is True
        assert report.next_offset is None

    def test_offset_past_end_touches_nothing(self, fetched, store, fake_db, embed, test_settings):
        fetched(["1", "2"])

        report = ingest_law("BWBR0005537", offset=10, store=store, embed=embed, settings=test_settings)

        assert report.done is True
        assert report.blocks_prepared == 0
        assert report.total_articles_found == 2
        assert fake_db.calls == []

    @pytest.mark.parametrize("limit, expected", [(1, 5), (None, 20), (1000, 60), ("abc", 20)])
    def test_limit_is_clamped(self, fetched, store, embed, test_settings, limit, expected):
        fetched([str(n) for n in range(1, 101)])

        report = ingest_law("BWBR0005537", limit=limit, store=store, embed=embed, settings=test_settings)

        assert report.blocks_prepared == expected

    def test_rerun_is_idempotent(self, fetched, store, fake_db, embed, test_settings):
        fetched(["1", "2", "3"])

        ingest_law("BWBR0005537", store=store, embed=embed, settings=test_settings)
        ingest_law("BWBR0005537", store=store, embed=embed, settings=test_settings)

        assert len(fake_db.tables["chunks"]) == 3
        assert len(fake_db.tables["documents"]) == 1

    def test_duplicate_article_numbers_are_deduped(self, fetched, store, fake_db, embed, test_settings):
        fetched(["1", "2", "2", "3", "4", "5"])

        report = ingest_law("BWBR0005537", limit=6, store=store, embed=embed, settings=test_settings)

        assert report.blocks_prepared == 6
        assert report.saved_or_updated == 5
        assert report.deduped_in_batch == 1
        assert len(fake_db.tables["chunks"]) == 5

    def test_xml_chunks_cite_html_page(self, monkeypatch, store, fake_db, embed, test_settings):
        xml = "".join(
            f"<artikel><kop><nr>{n}</nr></kop><al>{BODY}</al></artikel>" for n in ("1", "2")
        )
        monkeypatch.setattr(
            ingest, "fetch_law_text",
            lambda bwb_id, fmt="html", *, settings=None: (law_url(bwb_id, fmt, settings=test_settings), xml),
        )

        ingest_law("BWBR0037885", fmt="xml", store=store, embed=embed, settings=test_settings)

        assert {c["source_url"] for c in fake_db.tables["chunks"]} == {"https://wetten.overheid.nl/BWBR0037885"}
        assert fake_db.tables["chunks"][0]["label"] == "Omgevingswet — Artikel 1"

    def test_title_override(self, fetched, store, fake_db, embed, test_settings):
        fetched(["1"])
        ingest_law("BWBR0001840", title="Grondwet", store=store, embed=embed, settings=test_settings)
        assert fake_db.tables["documents"][0]["title"] == "Grondwet"
        assert fake_db.tables["chunks"][0]["label"] == "BWBR0001840 — Artikel 1"

    def test_invalid_id_is_rejected_before_fetching(self, fetched, store, embed, test_settings):
        calls = fetched(["1"])

        with pytest.raises(InvalidDocumentIdError):
            ingest_law("BWBV0001234", store=store, embed=embed, settings=test_settings)
        assert calls == []

    def test_embedding_count_mismatch(self, fetched, store, test_settings):
        fetched(["1", "2"])

        with pytest.raises(RAGEngineError, match="Embedding count mismatch"):
            ingest_law("BWBR0005537", store=store, embed=lambda texts: [[1.0]], settings=test_settings)


# ─────────────────────────────────────────────────────────────────────────────
# Catalogue
# ─────────────────────────────────────────────────────────────────────────────


def _catalog_page(start_record, maximum_records):
    return SruResult(
        records=[
            SruRecord("BWBR0005537", "Algemene wet bestuursrecht", "wet"),
            SruRecord("BWBV0001000", "Verdrag van Wenen", "verdrag"),
            SruRecord("BWBR0037885", "Omgevingswet", ""),
        ],
        number_of_records=40,
        next_record_position=start_record + maximum_records,
    )


class TestIngestCatalog:
    def test_registers_regulations_only(self, store, fake_db, test_settings):
        queries = []

        def search(query, connections, *, start_record, maximum_records, settings):
            queries.append(query)
            return {"BWB": _catalog_page(start_record, maximum_records)}

        report = ingest_catalog(
            start_record=1, maximum_records=3, include_verdrag=True,
            store=store, search=search, settings=test_settings,
        )

        assert 'type="verdrag"' in queries[0]
        assert report.bwbr_ids == ["BWBR0005537", "BWBR0037885"]
        assert report.upserted_documents == 2
        assert {d["id"]: d.get("type") for d in fake_db.tables["documents"]} == {
            "BWBR0005537": "wet",
            "BWBR0037885": "BWB",
        }
        out = report.to_dict()
        assert out["found"] == 3
        assert out["numberOfRecords"] == 40
        assert out["next"] == {"startRecord": 4, "maximumRecords": 3, "include_verdrag": 1}

    def test_connections_are_merged(self, store, monkeypatch, test_settings):
        asked = []

        def fake_sru(query, *, start_record, maximum_records, connection, settings):
            asked.append(connection)
            if connection == "CVDR":
                return SruResult(
                    records=[SruRecord("BWBR0005537", "Dubbel"), SruRecord("BWBR0001840", "Grondwet", "wet")],
                    number_of_records=2,
                )
            return _catalog_page(start_record, maximum_records)

        monkeypatch.setattr(overheid_sources, "sru_search", fake_sru)

        report = ingest_catalog(connections=["BWB", "CVDR"], store=store, settings=test_settings)

        assert sorted(asked) == ["BWB", "CVDR"]
        assert report.bwbr_ids == ["BWBR0005537", "BWBR0037885", "BWBR0001840"]
        assert report.number_of_records == 40
        assert report.next_params["connections"] == "BWB,CVDR"

    def test_failing_connection_does_not_fail_the_page(self, store, monkeypatch, test_settings):
        def fake_sru(query, *, start_record, maximum_records, connection, settings):
            if connection == "CVDR":
                raise UpstreamError("overheid", "SRU fetch failed")
            return _catalog_page(start_record, maximum_records)

        monkeypatch.setattr(overheid_sources, "sru_search", fake_sru)

        report = ingest_catalog(connections=["BWB", "CVDR"], store=store, settings=test_settings)

        assert report.bwbr_ids == ["BWBR0005537", "BWBR0037885"]

    def test_maximum_records_is_capped(self, store, test_settings):
        seen = {}

        def search(query, connections, *, start_record, maximum_records, settings):
            seen["max"] = maximum_records
            return {"BWB": SruResult()}

        report = ingest_catalog(maximum_records=500, store=store, search=search, settings=test_settings)

        assert seen["max"] == test_settings.catalog_max_records
        assert report.next_params is None

    def test_ingest_failures_are_reported_per_id(self, store, test_settings):
        def ingest_one(doc_id, **kwargs):
            if doc_id == "BWBR0037885":
                raise UpstreamError("overheid", "Fetch wetten.overheid.nl failed")
            return ingest.IngestReport(id=doc_id, total_articles_found=3, blocks_prepared=3, saved_or_updated=3, done=True)

        report = ingest_catalog(
            ingest=True, store=store, settings=test_settings,
            search=lambda q, conns, **kw: {"BWB": _catalog_page(1, 25)}, ingest_one=ingest_one,
        )

        assert [r["ok"] for r in report.ingest_results] == [True, False]
        assert report.ingest_results[0]["response"]["saved_or_updated"] == 3
        assert report.ingest_results[1] == {
            "id": "BWBR0037885",
            "ok": False,
            "error": "overheid: Fetch wetten.overheid.nl failed",
        }

    def test_max_calls_limits_ingestion(self, store, test_settings):
        ingested = []

        def ingest_one(doc_id, **kwargs):
            ingested.append(doc_id)
            return ingest.IngestReport(id=doc_id, total_articles_found=0, blocks_prepared=0, saved_or_updated=0, done=True)

        ingest_catalog(
            ingest=True, max_calls=1, store=store, settings=test_settings,
            search=lambda q, conns, **kw: {"BWB": _catalog_page(1, 25)}, ingest_one=ingest_one,
        )

        assert ingested == ["BWBR0005537"]


# ─────────────────────────────────────────────────────────────────────────────
# Document embeddings and clearing
# ─────────────────────────────────────────────────────────────────────────────


def test_embed_documents_batch(store, fake_db, embed, test_settings, embed_keywords):
    fake_db.tables["documents"] = [
        {"id": "BWBR1", "title": "Wet op de bezwaar termijn", "embedding": None},
        {"id": "BWBR2", "title": "", "embedding": None},
    ]

    assert embed_documents_batch(store=store, embed=embed, settings=test_settings) == 2
    assert fake_db.tables["documents"][0]["embedding"] == embed_keywords("Wet op de bezwaar termijn")
    assert embed_documents_batch(store=store, embed=embed, settings=test_settings) == 0


def test_clear_document(awb_store, fake_db, awb_ids):
    assert clear_document("bwbr0005537", store=awb_store) == 6
    assert fake_db.tables["chunks"] == []


def test_clear_document_rejects_bad_id(store):
    with pytest.raises(InvalidDocumentIdError):
        clear_document("../etc", store=store)


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────


class TestCli:
    @pytest.fixture(autouse=True)
    def cli_settings(self, monkeypatch, test_settings):
        monkeypatch.setattr(ingest, "load_settings", lambda: test_settings)

    def test_all_keeps_going_until_done(self, monkeypatch, capsys):
        offsets = []

        def fake_ingest(bwb_id, *, limit, offset, fmt, settings):
            offsets.append(offset)
            done = offset >= 40
            return ingest.IngestReport(
                id=bwb_id, total_articles_found=45, blocks_prepared=20 if not done else 5,
                saved_or_updated=20, next_offset=None if done else offset + 20, done=done,
            )

        monkeypatch.setattr(ingest, "ingest_law", fake_ingest)

        assert run_ingestion(["--id", "BWBR0005537", "--all"]) == 0
        assert offsets == [0, 20, 40]
        assert json.loads(capsys.readouterr().out)["done"] is True

    def test_embed_documents_reports_done(self, monkeypatch, capsys):
        monkeypatch.setattr(ingest, "embed_documents_batch", lambda **kw: 0)

        assert run_ingestion(["--embed-documents"]) == 0
        assert json.loads(capsys.readouterr().out) == {"done": True}

    def test_failure_returns_nonzero(self, monkeypatch, capsys):
        def failing(*args, **kwargs):
            raise UpstreamError("overheid", "Fetch wetten.overheid.nl failed", status=503)

        monkeypatch.setattr(ingest, "ingest_law", failing)

        assert run_ingestion(["--id", "BWBR0005537"]) == 1
        assert capsys.readouterr().out == ""

    def test_modes_are_exclusive(self):
        with pytest.raises(SystemExit):
            run_ingestion(["--id", "BWBR0005537", "--catalog"])
