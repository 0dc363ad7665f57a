import json
import math
import re
from typing import Any, Iterable, Sequence

from ..common.config_loader import RankingBoost, ScoringTable
from ..common.text_normalization import normalize_query
from .types import Chunk, ScoredChunk


def to_vector(value: Any) -> list[float] | None:
    """Coerce a stored embedding into a float list.

    PostgREST returns pgvector columns as JSON strings ("[0.1, ...]"); some
    rows carry real lists. Anything else (or a non-numeric payload) is None.
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if not isinstance(value, (list, tuple)) or not value:
        return None
    try:
        return [float(x) for x in value]
    except (TypeError, ValueError):
        return None


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for zero vectors."""
    dot = 0.0
    na = 0.0
    nb = 0.0
    for x, y in zip(a, b):
        dot += x * y
        na += x * x
        nb += y * y
    if na <= 0.0 or nb <= 0.0:
        return 0.0
    return dot / (math.sqrt(na) * math.sqrt(nb))


class Ranker:
    """Cosine similarity plus additive boosts from the scoring table.

    score = cosine(query, chunk) + sum(weight of every boost rule that fires)

    Boosts are not normalized against similarity: a large weight (the
    'besluit' -> Artikel 1:3 rule) deliberately overrides similarity.
    """

    def __init__(self, table: ScoringTable | None = None):
        self.table = table or ScoringTable()
        self._compiled: list[tuple[RankingBoost, list[re.Pattern[str]]]] = [
            (rule, [re.compile(p) for p in rule.query_any]) for rule in self.table.boosts
        ]

    def active_boosts(self, query: str) -> list[RankingBoost]:
        """Boost rules whose query condition matches this query."""
        q = normalize_query(query)
        return [
            rule
            for rule, patterns in self._compiled
            if not patterns or any(p.search(q) for p in patterns)
        ]

    @staticmethod
    def _chunk_boost(chunk: Chunk, rules: Iterable[RankingBoost]) -> tuple[float, tuple[str, ...]]:
        text = chunk.text.lower()
        label = chunk.label.lower()
        total = 0.0
        fired: list[str] = []
        for rule in rules:
            haystack = label if rule.field == "label" else text
            if rule.contains.lower() in haystack:
                total += rule.weight
                fired.append(rule.name)
        return total, tuple(fired)

    def score(
        self,
        *,
        query: str,
        query_vector: Sequence[float],
        chunks: Iterable[Chunk],
    ) -> list[ScoredChunk]:
        """Score every chunk with a usable embedding, in input order."""
        rules = self.active_boosts(query)
        dim = len(query_vector)
        scored: list[ScoredChunk] = []
        for chunk in chunks:
            emb = chunk.embedding
            if not emb or len(emb) != dim:
                continue
            boost, fired = self._chunk_boost(chunk, rules)
            scored.append(
                ScoredChunk(
                    chunk=chunk,
                    similarity=cosine(query_vector, emb),
                    boost=boost,
                    boosts_applied=fired,
                )
            )
        return scored

    def rank(
        self,
        *,
        query: str,
        query_vector: Sequence[float],
        chunks: Iterable[Chunk],
        k: int,
    ) -> list[ScoredChunk]:
        """Top-k chunks by similarity + boost, ties kept in input order."""
        scored = self.score(query=query, query_vector=query_vector, chunks=chunks)
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored[: max(1, int(k))]
