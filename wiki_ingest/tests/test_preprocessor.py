"""Unit tests for wikitext preprocessing."""
from __future__ import annotations

import pytest

from wiki_ingest.preprocessor import (
    clean_text,
    clean_wiki_links,
    extract_paragraphs,
    is_section_header,
    parse_sections,
    remove_formatting,
    remove_refs,
    remove_templates,
    split_paragraphs,
)


class TestCleanText:
    """Test markup removal."""

    def test_links(self):
        """Test piped and plain links."""
        assert clean_wiki_links("See [[Paris|the capital]] and [[Lyon]].") == (
            "See the capital and Lyon."
        )

    def test_nested_templates(self):
        """Test templates are peeled from the inside out."""
        assert remove_templates("a{{outer|{{inner}}}}b") == "ab"

    def test_refs(self):
        """Test self-closing and paired refs."""
        text = 'Fact.<ref name="a" /> More.<ref name="b">Cite\nline</ref> End.'
        assert remove_refs(text) == "Fact. More. End."

    def test_self_closing_ref_does_not_swallow_text(self):
        """Test a self-closing ref before a paired ref keeps the text between."""
        text = 'One<ref name="x"/> two <ref>c</ref>three'
        assert remove_refs(text) == "One two three"

    def test_formatting(self):
        """Test bold and italic markers."""
        assert remove_formatting("'''bold''' and ''italic''") == "bold and italic"

    def test_full_pipeline(self):
        """Test all steps combined and trimmed."""
        text = "  '''[[Python (language)|Python]]''' is a language.{{citation needed}}<ref>x</ref>  "
        assert clean_text(text) == "Python is a language."

    @pytest.mark.parametrize(
        "text",
        [
            "plain text",
            "[[a|[[b]]]]",
            "[[{{x}}Link]]",
            "''''' five quotes '''''",
            "{{a|{{b|{{c}}}}}} tail",
            "<ref>unterminated",
            "  [[A]] {{B}} <ref/> '''C'''  ",
        ],
    )
    def test_idempotent(self, text):
        """Test cleaning twice equals cleaning once."""
        once = clean_text(text)
        assert clean_text(once) == once


class TestSections:
    """Test section splitting."""

    def test_introduction_and_headings(self):
        """Test intro section plus nested headings."""
        sections = parse_sections(
            "Intro text.\n== History ==\nOld times.\n=== Early ===\nVery old.\n"
        )
        assert [(s.name, s.level) for s in sections] == [
            ("", 0),
            ("History", 2),
            ("Early", 3),
        ]
        assert sections[0].content == "Intro text."
        assert sections[1].content == "Old times."
        assert sections[2].content == "Very old."

    def test_heading_with_trailing_whitespace(self):
        """Test headings are matched after right trimming."""
        sections = parse_sections("== See also ==   \nLinks")
        assert sections[0].name == "See also"

    def test_no_intro_when_text_starts_with_heading(self):
        """Test no empty intro section is created."""
        sections = parse_sections("== Only ==\nBody")
        assert [s.name for s in sections] == ["Only"]

    def test_header_detection(self):
        """Test header pattern edges."""
        assert is_section_header("== A ==")
        assert is_section_header("====== Deep ======")
        assert not is_section_header("= Title =")
        assert not is_section_header("== A == trailing")

    def test_empty_body(self):
        """Test empty wikitext gives an empty introduction."""
        sections = parse_sections("")
        assert [(s.name, s.level, s.content) for s in sections] == [("", 0, "")]
        assert extract_paragraphs("T", "", sections[0].content) == []


class TestParagraphs:
    """Test paragraph extraction."""

    def test_split(self):
        """Test splitting on blank lines."""
        assert split_paragraphs("a\n\nb\n\n\nc") == ["a", "b", "c"]

    def test_positions_are_gap_free(self):
        """Test short and empty-after-clean paragraphs do not leave gaps."""
        content = (
            "First paragraph is long enough.\n\n"
            "short\n\n"
            "{{only a template here}}\n\n"
            "Second kept paragraph text."
        )
        units = extract_paragraphs("Title", "Sec", content, min_length=10, article_id="7")
        assert [u.position for u in units] == [0, 1]
        assert [u.content for u in units] == [
            "First paragraph is long enough.",
            "Second kept paragraph text.",
        ]
        assert all(u.article_id == "7" and u.section_name == "Sec" for u in units)

    def test_min_length_applies_to_raw_text(self):
        """Test the length filter sees the text before cleanup."""
        units = extract_paragraphs("T", "", "[[Long link target|Hi]]", min_length=10)
        assert [u.content for u in units] == ["Hi"]

    def test_every_paragraph_reproducible(self):
        """Test each unit equals clean_text of some raw candidate."""
        content = "[[A|One]] is here.\n\n'''Two''' is here too.\n\nx"
        candidates = {clean_text(p) for p in split_paragraphs(content)}
        units = extract_paragraphs("T", "", content)
        assert units
        assert all(u.content in candidates for u in units)
