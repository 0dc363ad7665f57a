"""
Unified configuration loader for Beleidsbank.

This module is the single source of truth for all configuration:
- Settings dataclasses (Settings, ScoringTable and friends)
- Loading settings from config/settings.yaml with env var overrides
- Pydantic schema validation for the declarative scoring table

All code should import configuration from this module, not from settings.yaml directly.
"""

from __future__ import annotations

import functools
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
_REPO_ROOT = Path(__file__).resolve().parents[2]

_DEFINITION_QUERY_PATTERNS = (r"\bwat is\b", r"\bdefinitie\b", r"\bwordt verstaan\b")


# ─────────────────────────────────────────────────────────────────────────────
# Scoring Table Dataclasses
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DetectionAlias:
    """Abbreviation that points at one well-known document (e.g. 'awb')."""
    token: str
    weight: float
    doc_id: str | None = None
    title: str | None = None
    threshold: float | None = None  # Replaces the default threshold when the token is present


@dataclass(frozen=True)
class DetectionWeights:
    """Feature weights for document detection.

    score = title_substring * [title in question]
          + shared_word * |shared words >= min_word_length|
          + sum(alias.weight for matching aliases)
    """
    title_substring: float = 10.0
    shared_word: float = 2.0
    min_word_length: int = 4
    threshold: float = 6.0
    aliases: tuple[DetectionAlias, ...] = (
        DetectionAlias(
            token="awb",
            doc_id="BWBR0005537",
            title="algemene wet bestuursrecht",
            weight=20.0,
            threshold=20.0,
        ),
    )


@dataclass(frozen=True)
class RankingBoost:
    """Additive score boost applied on top of cosine similarity.

    Fires when any of `query_any` (regexes) matches the normalized query and
    the chunk's `field` ("text" or "label") contains `contains`.
    """
    name: str
    query_any: tuple[str, ...]
    field: str
    contains: str
    weight: float


_DEFAULT_BOOSTS: tuple[RankingBoost, ...] = (
    RankingBoost(
        name="definition_wordt_verstaan",
        query_any=_DEFINITION_QUERY_PATTERNS,
        field="text",
        contains="wordt verstaan",
        weight=0.7,
    ),
    RankingBoost(
        name="definition_schriftelijke_beslissing",
        query_any=_DEFINITION_QUERY_PATTERNS,
        field="text",
        contains="een schriftelijke beslissing",
        weight=1.0,
    ),
    RankingBoost(
        name="besluit_label_1_3",
        query_any=("besluit",),
        field="label",
        contains="artikel 1:3",
        weight=2.5,
    ),
)


@dataclass(frozen=True)
class ScoringTable:
    """Declarative feature -> weight table for detection and ranking."""
    detection: DetectionWeights = DetectionWeights()
    boosts: tuple[RankingBoost, ...] = _DEFAULT_BOOSTS


# ─────────────────────────────────────────────────────────────────────────────
# Core Settings Dataclass
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Settings:
    """Application settings - all values loaded from config/settings.yaml.

    This is a frozen dataclass to ensure immutability after loading.
    Secrets (API keys, service keys, ingest token) only come from the environment.
    """
    # OpenAI
    openai_api_key: str = ""
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    temperature: float = 0.1
    max_tokens: int = 650
    openai_timeout_secs: float = 25.0
    openai_max_retries: int = 2
    embedding_max_chars: int = 8000

    # Supabase
    supabase_url: str = ""
    supabase_service_key: str = ""
    documents_table: str = "documents"
    chunks_table: str = "chunks"
    supabase_timeout_secs: float = 20.0

    # Government sources
    wetten_base_url: str = "https://wetten.overheid.nl"
    sru_endpoint: str = "https://zoekservice.overheid.nl/sru/Search"
    sources_timeout_secs: float = 25.0
    user_agent: str = "Beleidsbank/1.0"

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay_secs: float = 0.5

    # Retrieval
    top_k: int = 8
    chat_top_k: int = 5
    exact_max_hits: int = 8
    candidate_limit: int = 5000
    excerpt_chars: int = 1200

    # Ingestion
    min_article_chars: int = 100
    ingest_default_limit: int = 20
    ingest_min_limit: int = 5
    ingest_max_limit: int = 60
    catalog_max_records: int = 50
    catalog_max_calls: int = 20
    ingest_token: str = ""

    # HTTP surface
    rate_limit_per_minute: int = 10
    rate_limit_window_secs: float = 60.0
    cors_origins: tuple[str, ...] = ()

    scoring: ScoringTable = field(default_factory=ScoringTable)


# ─────────────────────────────────────────────────────────────────────────────
# Pydantic Schema for the Scoring Table
# ─────────────────────────────────────────────────────────────────────────────


class AliasSchema(BaseModel):
    """Schema for a detection alias."""

    token: str
    weight: float
    doc_id: str | None = None
    title: str | None = None
    threshold: float | None = None


class DetectionSchema(BaseModel):
    """Schema for document detection weights."""

    title_substring: float = 10.0
    shared_word: float = 2.0
    min_word_length: int = 4
    threshold: float = 6.0
    aliases: list[AliasSchema] | None = None


class BoostSchema(BaseModel):
    """Schema for one ranking boost rule."""

    name: str
    query_any: list[str] = []
    field: str = "text"
    contains: str
    weight: float

    @field_validator("query_any", mode="before")
    @classmethod
    def ensure_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    @field_validator("field")
    @classmethod
    def known_field(cls, v: str) -> str:
        if v not in {"text", "label"}:
            raise ValueError(f"field must be 'text' or 'label' (got {v!r})")
        return v


class RankingSchema(BaseModel):
    """Schema for the ranking section."""

    boosts: list[BoostSchema] | None = None


class ScoringSchema(BaseModel):
    """Schema for the scoring section of settings.yaml."""

    detection: DetectionSchema = DetectionSchema()
    ranking: RankingSchema = RankingSchema()


def build_scoring_table(raw: dict[str, Any] | None) -> ScoringTable:
    """Validate a raw scoring dict and turn it into a ScoringTable.

    Missing sections keep the built-in defaults. A malformed table is logged
    and replaced by the defaults as a whole.
    """
    if not raw:
        return ScoringTable()
    try:
        schema = ScoringSchema.model_validate(raw)
    except ValidationError as e:
        logger.warning("Invalid scoring table, using defaults: %s", e.errors())
        return ScoringTable()

    det = schema.detection
    defaults = DetectionWeights()
    aliases = defaults.aliases
    if det.aliases is not None:
        aliases = tuple(
            DetectionAlias(
                token=a.token.strip().lower(),
                weight=a.weight,
                doc_id=a.doc_id,
                title=(a.title or "").strip().lower() or None,
                threshold=a.threshold,
            )
            for a in det.aliases
        )
    detection = DetectionWeights(
        title_substring=det.title_substring,
        shared_word=det.shared_word,
        min_word_length=det.min_word_length,
        threshold=det.threshold,
        aliases=aliases,
    )

    boosts = _DEFAULT_BOOSTS
    if schema.ranking.boosts is not None:
        boosts = tuple(
            RankingBoost(
                name=b.name,
                query_any=tuple(b.query_any),
                field=b.field,
                contains=b.contains.lower(),
                weight=b.weight,
            )
            for b in schema.ranking.boosts
        )
    return ScoringTable(detection=detection, boosts=boosts)


# ─────────────────────────────────────────────────────────────────────────────
# Settings Loading Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _validate_settings(settings: Settings) -> None:
    """Validate settings values."""
    if settings.top_k < 1:
        raise ValueError(f"rag.top_k must be >= 1 (got {settings.top_k})")
    if settings.chat_top_k < 1:
        raise ValueError(f"rag.chat_top_k must be >= 1 (got {settings.chat_top_k})")
    if settings.exact_max_hits < 1:
        raise ValueError(f"rag.exact_max_hits must be >= 1 (got {settings.exact_max_hits})")
    if settings.rate_limit_per_minute < 1:
        raise ValueError(
            f"rate_limit.per_minute must be >= 1 (got {settings.rate_limit_per_minute})"
        )
    if settings.retry_max_attempts < 1:
        raise ValueError(f"retry.max_attempts must be >= 1 (got {settings.retry_max_attempts})")
    if settings.ingest_min_limit > settings.ingest_max_limit:
        raise ValueError(
            f"ingestion.min_limit must be <= ingestion.max_limit "
            f"(got {settings.ingest_min_limit} > {settings.ingest_max_limit})"
        )


def _load_settings_yaml() -> dict[str, Any]:
    """Load raw settings from config/settings.yaml."""
    settings_path = _CONFIG_DIR / "settings.yaml"
    if not settings_path.exists():
        return {}
    with open(settings_path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _split_origins(raw: str) -> list[str]:
    return [o.strip() for o in (raw or "").split(",") if o.strip()]


@functools.lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and validate application settings from config/settings.yaml.

    Environment variables override YAML values:
    - OPENAI_API_KEY, OPENAI_CHAT_MODEL, OPENAI_EMBEDDING_MODEL
    - SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_SERVICE_KEY)
    - INGEST_TOKEN
    - CORS_ORIGINS (comma separated, added to the configured origins)
    - RATE_LIMIT_PER_MINUTE
    - RAG_TOP_K, RAG_CHAT_TOP_K

    Returns:
        Settings: Validated, frozen settings object
    """
    load_dotenv()

    config = _load_settings_yaml()

    openai_cfg = config.get("openai", {}) or {}
    supabase_cfg = config.get("supabase", {}) or {}
    sources_cfg = config.get("sources", {}) or {}
    retry_cfg = config.get("retry", {}) or {}
    rag_cfg = config.get("rag", {}) or {}
    ingest_cfg = config.get("ingestion", {}) or {}
    rate_cfg = config.get("rate_limit", {}) or {}
    cors_cfg = config.get("cors", {}) or {}

    def _env_int(key: str, default: int) -> int:
        val = os.getenv(key)
        return int(val) if val and val.strip() else default

    def _env_str(key: str, default: str) -> str:
        val = os.getenv(key)
        return val.strip() if val and val.strip() else default

    cors_origins = [str(o).strip() for o in (cors_cfg.get("allowed_origins") or []) if str(o).strip()]
    for origin in _split_origins(os.getenv("CORS_ORIGINS", "")):
        if origin not in cors_origins:
            cors_origins.append(origin)

    settings = Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        chat_model=_env_str("OPENAI_CHAT_MODEL", str(openai_cfg.get("chat_model", "gpt-4o-mini"))),
        embedding_model=_env_str(
            "OPENAI_EMBEDDING_MODEL", str(openai_cfg.get("embedding_model", "text-embedding-3-small"))
        ),
        temperature=float(openai_cfg.get("temperature", 0.1)),
        max_tokens=int(openai_cfg.get("max_tokens", 650)),
        openai_timeout_secs=float(openai_cfg.get("timeout_secs", 25)),
        openai_max_retries=int(openai_cfg.get("max_retries", 2)),
        embedding_max_chars=int(openai_cfg.get("embedding_max_chars", 8000)),
        supabase_url=_env_str("SUPABASE_URL", str(supabase_cfg.get("url", ""))).rstrip("/"),
        supabase_service_key=(
            os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
            or os.getenv("SUPABASE_SERVICE_KEY", "").strip()
        ),
        documents_table=str(supabase_cfg.get("documents_table", "documents")),
        chunks_table=str(supabase_cfg.get("chunks_table", "chunks")),
        supabase_timeout_secs=float(supabase_cfg.get("timeout_secs", 20)),
        wetten_base_url=str(sources_cfg.get("wetten_base_url", "https://wetten.overheid.nl")).rstrip("/"),
        sru_endpoint=str(sources_cfg.get("sru_endpoint", "https://zoekservice.overheid.nl/sru/Search")),
        sources_timeout_secs=float(sources_cfg.get("timeout_secs", 25)),
        user_agent=str(sources_cfg.get("user_agent", "Beleidsbank/1.0")),
        retry_max_attempts=int(retry_cfg.get("max_attempts", 3)),
        retry_base_delay_secs=float(retry_cfg.get("base_delay_secs", 0.5)),
        top_k=_env_int("RAG_TOP_K", int(rag_cfg.get("top_k", 8))),
        chat_top_k=_env_int("RAG_CHAT_TOP_K", int(rag_cfg.get("chat_top_k", 5))),
        exact_max_hits=int(rag_cfg.get("exact_max_hits", 8)),
        candidate_limit=int(rag_cfg.get("candidate_limit", 5000)),
        excerpt_chars=int(rag_cfg.get("excerpt_chars", 1200)),
        min_article_chars=int(ingest_cfg.get("min_article_chars", 100)),
        ingest_default_limit=int(ingest_cfg.get("default_limit", 20)),
        ingest_min_limit=int(ingest_cfg.get("min_limit", 5)),
        ingest_max_limit=int(ingest_cfg.get("max_limit", 60)),
        catalog_max_records=int(ingest_cfg.get("catalog_max_records", 50)),
        catalog_max_calls=int(ingest_cfg.get("catalog_max_calls", 20)),
        ingest_token=os.getenv("INGEST_TOKEN", "").strip(),
        rate_limit_per_minute=_env_int("RATE_LIMIT_PER_MINUTE", int(rate_cfg.get("per_minute", 10))),
        rate_limit_window_secs=float(rate_cfg.get("window_secs", 60)),
        cors_origins=tuple(cors_origins),
        scoring=build_scoring_table(config.get("scoring")),
    )

    _validate_settings(settings)
    return settings


def clear_config_cache() -> None:
    """Clear all cached configurations (useful for testing)."""
    load_settings.cache_clear()
