"""Retrieval: exact article lookup first, semantic ranking otherwise.

Single Responsibility: turn a question into a RetrievalResult. Uses
query_routing for the routing decision, LegalStore for candidates and
Ranker for scoring. No prompt construction and no chat calls here.

Routing:
1. Detect the document the question is about (may be None).
2. If the question cites an article ("artikel 5.1"), select chunks whose
   label cites exactly that article. Any hit ends retrieval (mode=exact).
3. Otherwise embed the question and rank candidate chunks (mode=semantic),
   restricted to the detected document when it has chunks.
4. No candidates at all gives mode=empty.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..common.config_loader import Settings, load_settings
from .datastore import LegalStore
from .query_routing import detect_document, extract_article_ref, label_matches_ref
from .ranking import Ranker
from .types import Chunk, RetrievalMode, RetrievalResult, ScoredChunk

logger = logging.getLogger(__name__)

QueryEmbedder = Callable[[str], list[float]]

# Labels containing "Artikel 5:1" also match "Artikel 5:10", "5:11", ...;
# candidates are read in pages of this size until enough strict hits are found.
_EXACT_PAGE = 200


class Retriever:
    def __init__(
        self,
        store: LegalStore,
        *,
        embed_query: QueryEmbedder,
        ranker: Ranker | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or load_settings()
        self.store = store
        self.embed_query = embed_query
        self.ranker = ranker or Ranker(self.settings.scoring)

    def exact_lookup(self, ref: str, doc_id: str | None = None) -> list[Chunk]:
        """Chunks whose label cites exactly article `ref`, in id order."""
        max_hits = self.settings.exact_max_hits
        hits: list[Chunk] = []
        offset = 0
        while len(hits) < max_hits:
            page = self.store.select_chunks(
                doc_id=doc_id,
                label_contains=f"Artikel {ref}",
                limit=_EXACT_PAGE,
                offset=offset,
                with_embedding=False,
            )
            hits.extend(c for c in page if label_matches_ref(c.label, ref))
            if len(page) < _EXACT_PAGE:
                break
            offset += _EXACT_PAGE
        return hits[:max_hits]

    def semantic_search(
        self,
        query: str,
        *,
        doc_id: str | None = None,
        k: int | None = None,
    ) -> tuple[list[ScoredChunk], int]:
        """Rank candidate chunks against the query.

        Returns (top-k scored chunks, number of candidates considered). The
        query is not embedded when there are no candidates.
        """
        candidates = self.store.select_chunks(doc_id=doc_id, limit=self.settings.candidate_limit)
        if not candidates:
            return [], 0

        qvec = self.embed_query(query)
        ranked = self.ranker.rank(
            query=query,
            query_vector=qvec,
            chunks=candidates,
            k=k or self.settings.top_k,
        )
        return ranked, len(candidates)

    def retrieve(self, question: str, *, k: int | None = None) -> RetrievalResult:
        detected = detect_document(question, self.store.list_documents(), self.settings.scoring.detection)
        doc_id = detected.id if detected else None
        ref = extract_article_ref(question)

        if ref:
            hits = self.exact_lookup(ref, doc_id)
            if hits:
                logger.debug("Exact lookup artikel %s (doc=%s): %d hits", ref, doc_id, len(hits))
                return RetrievalResult(
                    mode=RetrievalMode.EXACT,
                    chunks=tuple(ScoredChunk(chunk=c, similarity=1.0) for c in hits),
                    article_ref=ref,
                    detected=detected,
                    total_candidates=len(hits),
                )

        ranked, total = self.semantic_search(question, doc_id=doc_id, k=k)
        if total == 0 and doc_id:
            # Detected document is registered but not ingested yet.
            logger.info("No chunks for detected document %s, searching all documents", doc_id)
            ranked, total = self.semantic_search(question, k=k)

        mode = RetrievalMode.SEMANTIC if total else RetrievalMode.EMPTY
        return RetrievalResult(
            mode=mode,
            chunks=tuple(ranked),
            article_ref=ref,
            detected=detected,
            total_candidates=total,
            debug={"boosts": [r.name for r in self.ranker.active_boosts(question)]},
        )
