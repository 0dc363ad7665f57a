"""Split the text of a Dutch law into article segments.

Two inputs are supported, and each goes through one fixed path:

- BWB XML (tekst.xml): every <artikel> element is one article. The number
  comes from <kop><nr>, else from a <label> child ("Artikel 5.1"), else from
  the element's label attribute.
- HTML (wetten.overheid.nl page): the markup is flattened to lines and split
  at lines that start with "Artikel <n>[letter][:<m>[letter]]".

Article numbers are normalized ("5.1" -> "5:1") and segments shorter than
`min_chars` are dropped as noise (table-of-contents entries, "Vervallen").
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

from ..common.text_normalization import collapse_whitespace, html_to_text, normalize_article_number
from ..engine.types import RAGEngineError

DEFAULT_MIN_CHARS = 100

# Short names used in chunk labels for the laws the chat is tuned on.
DOC_SHORT_NAMES = {
    "BWBR0005537": "Awb",
    "BWBR0037885": "Omgevingswet",
    "BWBR0041330": "Bal",
    "BWBR0041297": "Bbl",
    "BWBR0041313": "Bkl",
}

_HEADING_RE = re.compile(r"^(Artikel\s+(\d+[a-zA-Z]?(?:[:.]\d+[a-zA-Z]?)?))", re.MULTILINE)
_NUMBER_IN_LABEL_RE = re.compile(r"(\d+[a-zA-Z]?(?:[:.]\d+[a-zA-Z]?)?)")
_ARTIKEL_TAG_RE = re.compile(r"<artikel[\s>]", re.IGNORECASE)


class SegmentationError(RAGEngineError):
    """No article could be extracted from the law text."""


@dataclass(frozen=True)
class ArticleSegment:
    number: str
    text: str


def infer_doc_short(bwb_id: str) -> str:
    return DOC_SHORT_NAMES.get((bwb_id or "").strip().upper(), bwb_id)


def article_label(doc_short: str, number: str) -> str:
    """Chunk label, e.g. "Awb — Artikel 1:3"."""
    if number:
        return f"{doc_short} — Artikel {number}"
    return f"{doc_short} — Artikel"


def _number_from_artikel(el) -> str:
    kop = el.find("kop")
    if kop is not None:
        nr = kop.find("nr")
        if nr is not None and nr.get_text(strip=True):
            return normalize_article_number(nr.get_text(" "))

    label = el.find("label")
    if label is not None:
        m = _NUMBER_IN_LABEL_RE.search(label.get_text(" "))
        if m:
            return normalize_article_number(m.group(1))

    attr = el.get("label") or ""
    m = _NUMBER_IN_LABEL_RE.search(attr)
    return normalize_article_number(m.group(1)) if m else ""


def _segments_from_xml(raw: str) -> list[ArticleSegment]:
    soup = BeautifulSoup(raw, "html.parser")
    out: list[ArticleSegment] = []
    for el in soup.find_all("artikel"):
        # Nested <artikel> (rare, in amendment texts) is covered by its parent.
        if el.find_parent("artikel") is not None:
            continue
        out.append(ArticleSegment(number=_number_from_artikel(el), text=collapse_whitespace(el.get_text(" "))))
    return out


def _segments_from_html(raw: str) -> list[ArticleSegment]:
    text = html_to_text(raw)
    matches = list(_HEADING_RE.finditer(text))
    out: list[ArticleSegment] = []
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        block = text[m.start():end].strip()
        out.append(ArticleSegment(number=normalize_article_number(m.group(2)), text=block))
    return out


def segment_articles(raw: str, *, min_chars: int = DEFAULT_MIN_CHARS) -> list[ArticleSegment]:
    """Ordered article segments of a law (XML or HTML).

    Raises:
        SegmentationError: if no segment of at least `min_chars` remains
    """
    if _ARTIKEL_TAG_RE.search(raw or ""):
        segments = _segments_from_xml(raw)
        source = "xml"
    else:
        segments = _segments_from_html(raw or "")
        source = "html"

    kept = [s for s in segments if len(s.text) >= min_chars]
    if not kept:
        raise SegmentationError(
            f"No articles found in {source} input "
            f"({len(segments)} candidate blocks, min_chars={min_chars})"
        )
    return kept
