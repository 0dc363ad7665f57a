"""Beleidsbank RAG engine: retrieval + grounded answer synthesis.

BeleidsbankEngine is the only orchestrator. It wires the datastore, the
retriever and the LLM client together:

    engine = BeleidsbankEngine(LegalStore.from_settings())
    result = engine.answer("Wat staat er in artikel 5:1 Awb?")
    result.answer, result.sources

No evidence is not an error: the engine answers with a fixed explanatory
message and an empty source list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from openai import OpenAI

from ..common.config_loader import Settings, load_settings
from .datastore import LegalStore
from .llm_client import call_chat, embed_texts
from .prompt_builder import (
    NO_LEGISLATION_ANSWER,
    NO_PASSAGES_ANSWER,
    SUGGESTIONS_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    build_context,
    build_sources,
    build_suggestions_prompt,
    build_user_message,
    parse_suggestions,
)
from .retrieval import Retriever
from .types import RAGEngineError, RetrievalMode, RetrievalResult

logger = logging.getLogger(__name__)

_SUGGESTIONS_TEMPERATURE = 0.5
_SUGGESTIONS_MAX_TOKENS = 200


@dataclass(frozen=True)
class AnswerResult:
    answer: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    retrieval: RetrievalResult | None = None


class BeleidsbankEngine:
    def __init__(
        self,
        store: LegalStore,
        *,
        settings: Settings | None = None,
        client: OpenAI | None = None,
        retriever: Retriever | None = None,
    ):
        self.settings = settings or load_settings()
        self.store = store
        self.client = client
        self.retriever = retriever or Retriever(store, embed_query=self._embed_query, settings=self.settings)

    def _embed_query(self, text: str) -> list[float]:
        vectors = embed_texts([text], client=self.client, settings=self.settings)
        if not vectors or not vectors[0]:
            raise RAGEngineError("Invalid embedding for query")
        return vectors[0]

    def answer(self, question: str) -> AnswerResult:
        """Answer a question from stored legislation, citing the passages used."""
        q = (question or "").strip()
        if not q:
            raise ValueError("Missing message")

        retrieval = self.retriever.retrieve(q, k=self.settings.chat_top_k)
        logger.info(
            "answer: mode=%s detected=%s ref=%s chunks=%d candidates=%d",
            retrieval.mode.value,
            retrieval.detected.id if retrieval.detected else None,
            retrieval.article_ref,
            len(retrieval.chunks),
            retrieval.total_candidates,
        )

        if retrieval.mode is RetrievalMode.EMPTY:
            return AnswerResult(answer=NO_LEGISLATION_ANSWER, retrieval=retrieval)
        if not retrieval.chunks:
            return AnswerResult(answer=NO_PASSAGES_ANSWER, retrieval=retrieval)

        context = build_context(retrieval.chunks)
        text = call_chat(
            SYSTEM_PROMPT,
            build_user_message(q, context),
            client=self.client,
            settings=self.settings,
        )
        return AnswerResult(answer=text, sources=build_sources(retrieval.chunks), retrieval=retrieval)

    def search(self, query: str, *, k: int | None = None) -> RetrievalResult:
        """Ranked passages for a query, without answer synthesis."""
        q = (query or "").strip()
        if not q:
            raise ValueError("Missing q")
        return self.retriever.retrieve(q, k=k or self.settings.top_k)

    def suggest_questions(self, topic: str | None = None) -> list[str]:
        """Four short example questions, optionally about a topic."""
        raw = call_chat(
            SUGGESTIONS_SYSTEM_PROMPT,
            build_suggestions_prompt(topic),
            temperature=_SUGGESTIONS_TEMPERATURE,
            max_tokens=_SUGGESTIONS_MAX_TOKENS,
            client=self.client,
            settings=self.settings,
        )
        return parse_suggestions(raw)
