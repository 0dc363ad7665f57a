"""Prompt building for answer synthesis and question suggestions.

Transforms ranked chunks into:
- numbered context blocks for the LLM prompt ("[1] <label>\\n<text>\\nBron: <link>")
- the source list returned to the client ({n, id, title, link})

Single Responsibility: Build LLM prompts and source lists. No API calls.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, List

from .types import Chunk, ScoredChunk

SYSTEM_PROMPT = """
Je bent Beleidsbank.
Beantwoord kort en zakelijk in het Nederlands.

Harde regels:
- Gebruik ALLEEN de meegeleverde bronpassages.
- Citeer met [1], [2], ...
- Als iets niet in de passages staat: zeg dat expliciet.
- Verzin geen artikel-/lidnummers.
""".strip()

NO_LEGISLATION_ANSWER = "Ik heb nog geen wetgeving in de database staan om op te zoeken."
NO_PASSAGES_ANSWER = "Ik kon geen relevante passages vinden in de officiële databronnen."

SUGGESTIONS_SYSTEM_PROMPT = "Je geeft strikt JSON terug."

FALLBACK_SUGGESTIONS = (
    "Wet passend onderwijs: wat is de zorgplicht?",
    "Omgevingswet: wanneer participatie verplicht?",
    "Wkb: rol en taken kwaliteitsborger?",
    "Energiebesparingsplicht: wat moet een bedrijf doen?",
)

MAX_SUGGESTIONS = 4


def _as_chunk(item: Chunk | ScoredChunk) -> Chunk:
    return item.chunk if isinstance(item, ScoredChunk) else item


def source_title(chunk: Chunk) -> str:
    return chunk.label or chunk.doc_id or "Wetgeving"


def build_context(chunks: Iterable[Chunk | ScoredChunk]) -> str:
    """Numbered context blocks joined by blank lines."""
    blocks: List[str] = []
    for n, item in enumerate(chunks, start=1):
        c = _as_chunk(item)
        blocks.append(f"[{n}] {source_title(c)}\n{c.text}\nBron: {c.source_url or ''}")
    return "\n\n".join(blocks)


def build_user_message(question: str, context: str) -> str:
    return (
        f"Vraag:\n{question}\n\n"
        f"Bronpassages:\n{context}\n\n"
        "Geef antwoord met bronverwijzingen."
    )


def build_sources(chunks: Iterable[Chunk | ScoredChunk]) -> List[dict[str, Any]]:
    """Source list in context order; `n` matches the [n] markers in the answer."""
    out: List[dict[str, Any]] = []
    for n, item in enumerate(chunks, start=1):
        c = _as_chunk(item)
        out.append({"n": n, "id": c.id, "title": source_title(c), "link": c.source_url or ""})
    return out


def build_suggestions_prompt(topic: str | None = None) -> str:
    return (
        "Genereer 4 korte voorbeeldvragen (Nederlands) die passen bij Beleidsbank.nl:\n"
        "- v1 is landelijk: wetten/regelgeving/beleidsregels\n"
        "- vragen moeten concreet zijn en goed werken met bronnen "
        "(wetten.overheid.nl / Staatscourant)\n"
        "- max 10 woorden per vraag\n"
        "- géén dubbele vragen\n"
        "Geef ALLEEN een JSON array met 4 strings. Geen extra tekst.\n\n"
        f"Topic (optioneel): {(topic or '').strip()}"
    )


def parse_suggestions(raw: str) -> List[str]:
    """Parse the model's JSON array; fall back to fixed questions. At most four."""
    text = (raw or "").strip()
    # Models sometimes wrap JSON in a ```json fence.
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None

    items: List[str] = []
    if isinstance(parsed, list):
        for item in parsed:
            s = str(item).strip() if isinstance(item, (str, int, float)) else ""
            if s and s not in items:
                items.append(s)

    if not items:
        items = list(FALLBACK_SUGGESTIONS)
    return items[:MAX_SUGGESTIONS]
