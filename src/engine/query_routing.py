"""Query routing: article citation extraction and document detection.

Single Responsibility: decide *where* to look for evidence. Takes the raw
question and returns an optional article reference ("5:1") and an optional
detected document. No datastore or LLM access here.

Detection scores come from the declarative DetectionWeights table:

    score(doc) = title_substring  if the normalized title occurs in the question
               + shared_word      per distinct shared word of >= min_word_length chars
               + alias.weight     per alias token in the question that points at doc

A document is detected when the best score reaches the threshold (an alias
present in the question may raise the threshold, e.g. 'awb' -> 20).
"""

from __future__ import annotations

import re
from typing import Iterable

from ..common.config_loader import DetectionAlias, DetectionWeights
from ..common.text_normalization import normalize_article_number, normalize_query, tokenize_words
from .types import DetectedDocument, Document

_ARTICLE_REF_RE = re.compile(r"\bartikel\s+(\d+[a-z]?(?:[:.]\d+[a-z]?)?)", re.IGNORECASE)


def extract_article_ref(question: str) -> str | None:
    """Return the normalized article reference cited in the question.

    "Wat staat er in artikel 5.1?" and "artikel 5:1" both give "5:1".
    """
    match = _ARTICLE_REF_RE.search(normalize_query(question))
    if not match:
        return None
    return normalize_article_number(match.group(1))


def _ref_pattern(ref: str) -> re.Pattern[str]:
    parts = [re.escape(p) for p in re.split(r"[:.]", ref)]
    body = r"[:.]".join(parts)
    # Must be the whole article number: "5:1" may not run on into "5:10" or "5:1a".
    return re.compile(r"\bartikel\s+" + body + r"(?![0-9a-z]|[:.][0-9a-z])", re.IGNORECASE)


def label_matches_ref(label: str, ref: str) -> bool:
    """Strict check that a chunk label cites exactly this article."""
    if not label or not ref:
        return False
    return bool(_ref_pattern(ref).search(label))


def _alias_points_at(alias: DetectionAlias, doc: Document, title_norm: str) -> bool:
    if alias.doc_id and doc.id.strip().upper() == alias.doc_id.strip().upper():
        return True
    return bool(alias.title) and title_norm == alias.title


def score_document(question: str, doc: Document, weights: DetectionWeights) -> float:
    """Detection score of one document for one question."""
    q = normalize_query(question)
    title = normalize_query(doc.title)
    score = 0.0

    if title and title in q:
        score += weights.title_substring

    q_words = set(tokenize_words(q, min_length=weights.min_word_length))
    t_words = set(tokenize_words(title, min_length=weights.min_word_length))
    score += weights.shared_word * len(q_words & t_words)

    q_tokens = set(tokenize_words(q))
    for alias in weights.aliases:
        if alias.token in q_tokens and _alias_points_at(alias, doc, title):
            score += alias.weight

    return score


def detection_threshold(question: str, weights: DetectionWeights) -> float:
    """Default threshold, or the strictest alias override present in the question."""
    q_tokens = set(tokenize_words(normalize_query(question)))
    overrides = [a.threshold for a in weights.aliases if a.threshold is not None and a.token in q_tokens]
    return max(overrides) if overrides else weights.threshold


def detect_document(
    question: str,
    documents: Iterable[Document],
    weights: DetectionWeights | None = None,
) -> DetectedDocument | None:
    """Guess which known document the question is about, or None."""
    w = weights or DetectionWeights()
    best: DetectedDocument | None = None
    for doc in documents:
        s = score_document(question, doc, w)
        if best is None or s > best.score:
            best = DetectedDocument(id=doc.id, title=doc.title, score=s)

    if best is None or best.score <= 0:
        return None
    if best.score < detection_threshold(question, w):
        return None
    return best
