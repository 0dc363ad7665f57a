from __future__ import annotations

import re
from typing import Any

from bs4 import BeautifulSoup


_WORD_RE = re.compile(r"[0-9a-zà-öø-ÿ]+")

# Tags that end a visual line in wetten.overheid.nl markup.
_BLOCK_TAGS = (
    "p", "div", "li", "br", "h1", "h2", "h3", "h4", "h5", "h6",
    "tr", "td", "section", "article", "table", "ul", "ol",
)


def collapse_whitespace(value: Any) -> str:
    """Collapse all runs of whitespace (including nbsp) into single spaces."""
    text = str(value or "").replace("\u00a0", " ")
    return re.sub(r"\s+", " ", text).strip()


def normalize_query(value: Any) -> str:
    """Lowercase, strip and collapse whitespace of a user question."""
    return collapse_whitespace(value).lower()


def tokenize_words(text: str, *, min_length: int = 1) -> list[str]:
    """Split normalized text into lowercase word tokens.

    Keeps Dutch diacritics ("één", "geïnterpreteerd") inside words.
    """
    if not text:
        return []
    return [w for w in _WORD_RE.findall(text.lower()) if len(w) >= min_length]


def normalize_article_number(raw: Any) -> str:
    """Canonical article number: dots become colons ("5.1" -> "5:1").

    Trailing punctuation from headings ("1:3." / "4a,") is dropped.
    """
    value = collapse_whitespace(raw)
    value = value.strip(" .,;")
    return value.replace(".", ":")


def html_to_text(html: str) -> str:
    """Convert HTML to plain text with one line per block element."""
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_after("\n")
    text = soup.get_text()
    text = text.replace("\u00a0", " ").replace("\r", "")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
