"""
Sequential Wikipedia dump parser.

Pipeline:
1. Stream pages from the dump (plain or bz2)
2. Skip redirects (if enabled)
3. Split wikitext into sections
4. Extract cleaned paragraphs from each section
5. Yield paragraphs one at a time

Only one page is held in memory at any point regardless of dump size.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Generator, Iterable
from pathlib import Path

from wiki_ingest.errors import WikiParserError
from wiki_ingest.models import ParserOptions, TextUnit, WikiPage
from wiki_ingest.preprocessor import extract_paragraphs, parse_sections
from wiki_ingest.xml_stream import stream_pages

logger = logging.getLogger("wiki_ingest.dump_parser")


def page_to_units(page: WikiPage, options: ParserOptions) -> list[TextUnit]:
    """
    Turn one page into its paragraphs.

    A section name can repeat inside an article; numbering continues across
    the repeats so positions stay strictly increasing per section name.
    """
    units: list[TextUnit] = []
    next_position: dict[str, int] = {}

    for section in parse_sections(page.raw_text):
        extracted = extract_paragraphs(
            page.title,
            section.name,
            section.content,
            options.min_paragraph_length,
            article_id=page.id,
        )
        offset = next_position.get(section.name, 0)
        if offset:
            extracted = [
                dataclasses.replace(unit, position=offset + unit.position)
                for unit in extracted
            ]
        next_position[section.name] = offset + len(extracted)
        units.extend(extracted)

    return units


def iter_page_units(
    pages: Iterable[WikiPage],
    options: ParserOptions | None = None,
) -> Generator[TextUnit]:
    """Yield the paragraphs of each page, skipping pages that fail to parse."""
    opts = options or ParserOptions()
    pages_processed = 0
    redirects_skipped = 0
    page_errors = 0

    for page in pages:
        if opts.skip_redirects and page.is_redirect:
            redirects_skipped += 1
            logger.debug(f"Skipping redirect: {page.title}")
            continue

        try:
            units = page_to_units(page, opts)
        except Exception as e:
            page_errors += 1
            logger.warning(f"⚠️  Error processing page {page.title!r} ({page.id}): {e}")
            continue

        yield from units
        pages_processed += 1
        if pages_processed % 1000 == 0:
            logger.debug(
                f"Processed {pages_processed} pages, skipped {redirects_skipped} redirects"
            )

    logger.debug(
        f"Parsing complete: {pages_processed} pages, {redirects_skipped} redirects "
        f"skipped, {page_errors} errors"
    )


def parse_wikipedia_dump(
    file_path: str | Path,
    options: ParserOptions | None = None,
) -> Generator[TextUnit]:
    """
    Parse a Wikipedia XML dump and stream paragraphs with metadata.

    Args:
        file_path: Path to a ``.xml`` or ``.xml.bz2`` dump
        options: Parser configuration options

    Yields:
        TextUnit objects in dump order
    """
    logger.info(f"📖 Parsing {Path(file_path).name}...")
    try:
        yield from iter_page_units(stream_pages(file_path), options)
    except WikiParserError:
        raise
    except (OSError, EOFError) as e:
        raise WikiParserError(
            f"Failed to parse Wikipedia dump {file_path}: {e}",
            "parse_wikipedia_dump",
        ) from e
