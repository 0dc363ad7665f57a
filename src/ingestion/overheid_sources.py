"""overheid.nl source access: law texts and the SRU catalogue.

Provides functionality to:
- Fetch the text of a law (HTML or BWB XML) from wetten.overheid.nl
- Query the SRU/CQL search service (zoekservice.overheid.nl) for regulations
- Query several SRU connections concurrently, masking failed branches

Security features:
- URL whitelist (only overheid.nl hosts used by this service)
- BWB identifier validation
- HTTPS-only connections
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Iterable
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from ..common.config_loader import Settings, load_settings
from ..common.retry import retry_with_backoff
from ..engine.types import UpstreamError

logger = logging.getLogger(__name__)

# Security: Only allow requests to the official overheid.nl services
ALLOWED_DOMAINS = frozenset([
    "wetten.overheid.nl",
    "zoekservice.overheid.nl",
    "repository.overheid.nl",
])

# BWB identifier: BWBR (regeling) or BWBV (verdrag) + digits
BWB_ID_PATTERN = re.compile(r"^BWB[RV]\d+$")
BWBR_ID_PATTERN = re.compile(r"^BWBR\d+$")

# Document types in the BWB SRU value list (excluding treaties).
BWB_TYPES = (
    "wet",
    "AMvB",
    "ministeriele-regeling",
    "KB",
    "zbo",
    "beleidsregel",
    "pbo",
    "circulaire",
)

_session: requests.Session | None = None
_session_lock = threading.Lock()


class SourceSecurityError(Exception):
    """Raised when a URL falls outside the allowed overheid.nl hosts."""


class InvalidDocumentIdError(ValueError):
    """Raised when a BWB identifier is malformed."""


@dataclass(frozen=True)
class SruRecord:
    identifier: str
    title: str
    type: str = ""


@dataclass(frozen=True)
class SruResult:
    records: list[SruRecord] = field(default_factory=list)
    number_of_records: int | None = None
    next_record_position: int | None = None


def get_session(settings: Settings | None = None) -> requests.Session:
    """Shared requests session (connection pooling), created lazily."""
    global _session  # noqa: PLW0603
    if _session is None:
        with _session_lock:
            if _session is None:
                cfg = settings or load_settings()
                session = requests.Session()
                session.headers.update({"User-Agent": cfg.user_agent})
                _session = session
    return _session


def reset_session() -> None:
    global _session  # noqa: PLW0603
    with _session_lock:
        if _session is not None:
            _session.close()
            _session = None


def validate_source_url(url: str) -> bool:
    """Validate that a URL points to an allowed overheid.nl host.

    Raises:
        SourceSecurityError: If the URL is not allowed
    """
    if not url:
        raise SourceSecurityError("URL cannot be empty")

    parsed = urlparse(url)
    if parsed.scheme != "https":
        raise SourceSecurityError(f"Only HTTPS URLs are allowed, got: {parsed.scheme}")
    if parsed.netloc not in ALLOWED_DOMAINS:
        raise SourceSecurityError(
            f"Domain not allowed: {parsed.netloc}. "
            f"Allowed domains: {', '.join(sorted(ALLOWED_DOMAINS))}"
        )
    return True


def validate_bwb_id(raw: str, *, regulations_only: bool = True) -> str:
    """Return the upper-cased BWB id or raise InvalidDocumentIdError.

    With regulations_only (the default) treaties (BWBV...) are rejected.
    """
    value = (raw or "").strip().upper()
    pattern = BWBR_ID_PATTERN if regulations_only else BWB_ID_PATTERN
    if not pattern.match(value):
        raise InvalidDocumentIdError(f"Use ?id=BWBR... (got {raw!r})")
    return value


def law_url(bwb_id: str, fmt: str = "html", *, settings: Settings | None = None) -> str:
    """Canonical wetten.overheid.nl URL for a law (HTML page or BWB XML)."""
    cfg = settings or load_settings()
    base = f"{cfg.wetten_base_url}/{bwb_id}"
    if fmt == "xml":
        return f"{base}/tekst.xml"
    if fmt != "html":
        raise ValueError(f"Unknown format {fmt!r} (expected 'html' or 'xml')")
    return base


def _get(url: str, *, params: dict[str, Any] | None, settings: Settings, what: str) -> str:
    validate_source_url(url)
    session = get_session(settings)

    def _do() -> requests.Response:
        resp = session.get(url, params=params, timeout=settings.sources_timeout_secs, allow_redirects=True)
        if resp.status_code == 429 or resp.status_code >= 500:
            # Raise so the retry helper sees the status code.
            resp.raise_for_status()
        return resp

    try:
        resp = retry_with_backoff(
            _do,
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_secs,
        )
    except requests.RequestException as e:
        status = getattr(getattr(e, "response", None), "status_code", None)
        raise UpstreamError("overheid", f"{what} failed", details=str(e), status=status) from e

    if not resp.ok:
        raise UpstreamError(
            "overheid",
            f"{what} failed",
            details={"status": resp.status_code, "preview": resp.text[:800]},
            status=resp.status_code,
        )
    return resp.text


def fetch_law_text(bwb_id: str, fmt: str = "html", *, settings: Settings | None = None) -> tuple[str, str]:
    """Download a law. Returns (source_url, raw markup)."""
    cfg = settings or load_settings()
    url = law_url(bwb_id, fmt, settings=cfg)
    logger.info("Fetching %s", url)
    return url, _get(url, params=None, settings=cfg, what="Fetch wetten.overheid.nl")


# ─────────────────────────────────────────────────────────────────────────────
# SRU / CQL
# ─────────────────────────────────────────────────────────────────────────────


def build_cql_query(*, include_verdrag: bool = False) -> str:
    """CQL OR-query over the BWB document types: type="wet" or type="AMvB" ..."""
    types = list(BWB_TYPES) + (["verdrag"] if include_verdrag else [])
    return " or ".join(f'type="{t}"' for t in types)


def _local_name(name: str | None) -> str:
    return (name or "").split(":")[-1].lower()


def _find_local(node, local: str):
    return node.find(lambda t: _local_name(t.name) == local)


def _text(node) -> str:
    if node is None:
        return ""
    return re.sub(r"\s+", " ", node.get_text(" ")).strip()


def _int_or_none(node) -> int | None:
    raw = _text(node)
    return int(raw) if raw.isdigit() else None


def parse_sru_response(xml: str) -> SruResult:
    """Parse an SRU searchRetrieve response into identifier/title/type records.

    Namespace prefixes are ignored (sru:record, dcterms:identifier, ...).
    Records without an identifier are skipped.
    """
    soup = BeautifulSoup(xml or "", "html.parser")
    records: list[SruRecord] = []
    for rec in soup.find_all(lambda t: _local_name(t.name) == "record"):
        identifiers = [_text(n) for n in rec.find_all(lambda t: _local_name(t.name) == "identifier")]
        identifiers = [i for i in identifiers if i]
        if not identifiers:
            continue
        identifier = next((i for i in identifiers if i.upper().startswith("BWB")), identifiers[0])
        title = _text(_find_local(rec, "title"))
        doc_type = _text(_find_local(rec, "type"))
        records.append(SruRecord(identifier=identifier, title=title or identifier, type=doc_type))

    return SruResult(
        records=records,
        number_of_records=_int_or_none(_find_local(soup, "numberofrecords")),
        next_record_position=_int_or_none(_find_local(soup, "nextrecordposition")),
    )


def sru_search(
    query: str,
    *,
    start_record: int = 1,
    maximum_records: int = 25,
    connection: str = "BWB",
    settings: Settings | None = None,
) -> SruResult:
    """Run one SRU searchRetrieve request."""
    cfg = settings or load_settings()
    params = {
        "operation": "searchRetrieve",
        "version": "2.0",
        "x-connection": connection,
        "query": query,
        "startRecord": max(1, int(start_record)),
        "maximumRecords": max(1, int(maximum_records)),
    }
    xml = _get(cfg.sru_endpoint, params=params, settings=cfg, what="SRU fetch")
    return parse_sru_response(xml)


def search_registries(
    query: str,
    connections: Iterable[str] = ("BWB",),
    *,
    start_record: int = 1,
    maximum_records: int = 25,
    settings: Settings | None = None,
) -> dict[str, SruResult]:
    """Query several SRU connections concurrently.

    A failing connection is logged and contributes an empty SruResult; the
    aggregate never fails because of one branch.
    """
    cfg = settings or load_settings()
    conns = list(dict.fromkeys(c for c in connections if c))
    if not conns:
        return {}

    results: dict[str, SruResult] = {}
    with ThreadPoolExecutor(max_workers=min(8, len(conns))) as executor:
        futures = {
            conn: executor.submit(
                sru_search,
                query,
                start_record=start_record,
                maximum_records=maximum_records,
                connection=conn,
                settings=cfg,
            )
            for conn in conns
        }
        for conn, future in futures.items():
            try:
                results[conn] = future.result()
            except Exception as e:  # noqa: BLE001
                logger.warning("SRU lookup for connection %s failed: %s", conn, e)
                results[conn] = SruResult()
    return results


def collect_records(results: dict[str, SruResult]) -> list[SruRecord]:
    """Flatten registry results into records with unique identifiers.

    The first connection that lists an identifier wins.
    """
    seen: dict[str, SruRecord] = {}
    for result in results.values():
        for rec in result.records:
            seen.setdefault(rec.identifier, rec)
    return list(seen.values())
