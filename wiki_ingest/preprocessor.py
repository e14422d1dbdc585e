"""
Wikitext preprocessing: section splitting, paragraph extraction and cleanup.

Everything here is a pure string transformation so each step can be tested
in isolation and safely run from several block workers at once.
"""

from __future__ import annotations

import logging
import re

from wiki_ingest.models import TextUnit, WikiSection

logger = logging.getLogger("wiki_ingest.preprocessor")

# Regex patterns compiled once for performance
SECTION_HEADER_PATTERN = re.compile(r"^={2,6}[^=]+={2,6}$")
SECTION_LEVEL_PATTERN = re.compile(r"^=+")
PARAGRAPH_SPLIT_PATTERN = re.compile(r"\n\n+")
LINK_PATTERN = re.compile(r"\[\[(?:[^|\]]+\|)?([^\]]+)\]\]")
TEMPLATE_PATTERN = re.compile(r"\{\{[^{}]*\}\}")
REF_PATTERN = re.compile(r"<ref[^>]*/>|<ref[^>]*>.*?</ref>", re.DOTALL)

DEFAULT_MIN_PARAGRAPH_LENGTH = 10


# =============================================================================
# WIKITEXT CLEANUP
# =============================================================================


def clean_wiki_links(text: str) -> str:
    """[[Target|Display]] -> Display, [[Target]] -> Target."""
    return LINK_PATTERN.sub(r"\1", text)


def remove_templates(text: str) -> str:
    """
    Remove {{...}} templates.

    The pattern only matches templates without inner braces, so nested
    templates are peeled from the inside out until nothing changes.
    """
    while True:
        stripped = TEMPLATE_PATTERN.sub("", text)
        if stripped == text:
            return stripped
        text = stripped


def remove_refs(text: str) -> str:
    """Remove <ref .../> and <ref ...>...</ref> citations."""
    return REF_PATTERN.sub("", text)


def remove_formatting(text: str) -> str:
    """Remove bold (''') and italic ('') markers."""
    return text.replace("'''", "").replace("''", "")


def _clean_once(text: str) -> str:
    text = clean_wiki_links(text)
    text = remove_templates(text)
    text = remove_refs(text)
    text = remove_formatting(text)
    return text.strip()


def clean_text(text: str) -> str:
    """
    Strip wiki markup from text.

    Removing one construct can expose another (a template between two
    brackets leaves a link behind), so the pipeline runs until it reaches a
    fixed point. Every step only shortens the text, which bounds the loop.
    """
    while True:
        cleaned = _clean_once(text)
        if cleaned == text:
            return cleaned
        text = cleaned


# =============================================================================
# SECTIONS
# =============================================================================


def is_section_header(line: str) -> bool:
    return SECTION_HEADER_PATTERN.match(line) is not None


def parse_sections(wikitext: str) -> list[WikiSection]:
    """
    Split wikitext into sections on ``== Heading ==`` lines.

    Text before the first heading becomes the introduction section with an
    empty name and level 0. Headings carry the number of leading ``=`` as
    their level.
    """
    sections: list[WikiSection] = []
    current_lines: list[str] = []

    def _close_current() -> None:
        if sections:
            sections[-1].content = "\n".join(current_lines).strip()

    for line in wikitext.split("\n"):
        header = line.rstrip()
        if is_section_header(header):
            _close_current()
            level_match = SECTION_LEVEL_PATTERN.match(header)
            sections.append(
                WikiSection(
                    name=header.strip("=").strip(),
                    level=len(level_match.group(0)) if level_match else 0,
                    content="",
                )
            )
            current_lines = []
            continue

        if not sections:
            sections.append(WikiSection(name="", level=0, content=""))
        current_lines.append(line)

    _close_current()
    return sections


# =============================================================================
# PARAGRAPHS
# =============================================================================


def split_paragraphs(content: str) -> list[str]:
    """Split on blank lines and trim each candidate."""
    return [p.strip() for p in PARAGRAPH_SPLIT_PATTERN.split(content)]


def extract_paragraphs(
    article_title: str,
    section_name: str,
    content: str,
    min_length: int = DEFAULT_MIN_PARAGRAPH_LENGTH,
    article_id: str = "",
) -> list[TextUnit]:
    """
    Extract numbered, cleaned paragraphs from one section.

    Candidates shorter than ``min_length`` (before cleanup) or empty after
    cleanup are dropped; survivors are numbered 0..n-1 in original order.
    """
    units: list[TextUnit] = []
    for candidate in split_paragraphs(content):
        if not candidate or len(candidate) < min_length:
            continue
        cleaned = clean_text(candidate)
        if not cleaned:
            continue
        units.append(
            TextUnit(
                article_id=article_id,
                article_title=article_title,
                section_name=section_name,
                position=len(units),
                content=cleaned,
            )
        )
    return units
