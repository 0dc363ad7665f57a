"""Tests for src/common/text_normalization.py."""

import pytest

from src.common.text_normalization import (
    collapse_whitespace,
    html_to_text,
    normalize_article_number,
    normalize_query,
    tokenize_words,
)


class TestWhitespace:
    def test_collapse_handles_nbsp_and_newlines(self):
        assert collapse_whitespace("  Artikel 1:3\n\n  besluit\t") == "Artikel 1:3 besluit"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_values(self, value):
        assert collapse_whitespace(value) == ""

    def test_normalize_query_lowercases(self):
        assert normalize_query("  Wat is een  BESLUIT? ") == "wat is een besluit?"


class TestTokenizeWords:
    def test_keeps_dutch_diacritics(self):
        assert tokenize_words("Één geïnterpreteerd besluit!") == ["één", "geïnterpreteerd", "besluit"]

    def test_min_length(self):
        assert tokenize_words("de wet op het notarisambt", min_length=4) == ["notarisambt"]

    def test_empty(self):
        assert tokenize_words("") == []


class TestNormalizeArticleNumber:
    @pytest.mark.parametrize(
        "raw, expected",
        [("5.1", "5:1"), ("5:1", "5:1"), (" 1.3. ", "1:3"), ("4a,", "4a"), ("12", "12")],
    )
    def test_canonical_form(self, raw, expected):
        assert normalize_article_number(raw) == expected


class TestHtmlToText:
    def test_block_elements_become_lines(self):
        text = html_to_text("<div><h4>Artikel 1</h4><p>Eerste   lid.</p><p>Tweede lid.</p></div>")
        assert text.splitlines() == ["Artikel 1", "Eerste lid.", "Tweede lid."]

    def test_scripts_and_styles_are_removed(self):
        text = html_to_text("<style>p{}</style><script>alert(1)</script><p>Tekst</p>")
        assert text == "Tekst"

    def test_no_runs_of_blank_lines(self):
        text = html_to_text("<p>a</p><div></div><div></div><div></div><p>b</p>")
        assert "\n\n\n" not in text
        assert text.startswith("a") and text.endswith("b")
