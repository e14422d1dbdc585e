"""
Wikipedia multistream index parser.

Parses the side-car index (``*-multistream-index.txt[.bz2]``) that maps every
article to the byte offset of the bz2 stream holding it:

    byteOffset:articleId:articleTitle

Each distinct byte offset starts an independently decompressible block of
roughly 100 pages. Titles may contain colons; only the first two are
structural.

Two ways to turn the index into blocks:
- Full materialization: parse every entry, sort, group. Simple, fine for
  moderate indexes and tests.
- Streaming compaction: scan line by line, keep only the current boundary and
  emit each block as soon as the next offset appears. Used for production
  indexes with tens of millions of lines.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Iterable
from itertools import groupby
from pathlib import Path

from wiki_ingest.errors import (
    MalformedIndexError,
    MultistreamIndexError,
    UnsortedIndexError,
    WikiParserError,
)
from wiki_ingest.models import IndexEntry, IndexScanProgress, StreamBlock
from wiki_ingest.streams import open_text_stream

logger = logging.getLogger("wiki_ingest.multistream_index")

DEFAULT_PROGRESS_INTERVAL = 250_000

ProgressCallback = Callable[[IndexScanProgress], None]


def parse_index_line(line: str, line_number: int | None = None) -> IndexEntry | None:
    """
    Parse a single index line.

    Returns:
        IndexEntry, or None for a blank line

    Raises:
        MalformedIndexError: If the line is not ``offset:id:title``
    """
    trimmed = line.strip()
    if not trimmed:
        return None

    where = f" (line {line_number})" if line_number is not None else ""
    offset_str, sep, rest = trimmed.partition(":")
    article_id, sep2, article_title = rest.partition(":")
    if not sep or not sep2 or not article_id or not article_title:
        raise MalformedIndexError(
            f"Malformed index line{where}: {trimmed[:120]!r}", "parse_index_line"
        )

    try:
        byte_offset = int(offset_str)
    except ValueError as e:
        raise MalformedIndexError(
            f"Invalid byte offset{where}: {offset_str!r}", "parse_index_line"
        ) from e
    if byte_offset < 0:
        raise MalformedIndexError(
            f"Negative byte offset{where}: {byte_offset}", "parse_index_line"
        )

    return IndexEntry(
        byte_offset=byte_offset,
        article_id=article_id,
        article_title=article_title,
    )


def iter_index_entries(lines: Iterable[str]) -> Generator[IndexEntry]:
    """Parse index lines, skipping blanks."""
    for line_number, line in enumerate(lines, start=1):
        entry = parse_index_line(line, line_number)
        if entry is not None:
            yield entry


# =============================================================================
# FULL MATERIALIZATION
# =============================================================================


def parse_multistream_index(index_file: str | Path) -> list[IndexEntry]:
    """
    Parse the whole index into memory.

    Supports both compressed (.txt.bz2) and uncompressed (.txt) files.

    Returns:
        Index entries sorted by byte offset (stable for equal offsets)
    """
    try:
        with open_text_stream(index_file) as fh:
            entries = list(iter_index_entries(fh))
    except WikiParserError:
        raise
    except (OSError, EOFError) as e:
        raise MultistreamIndexError(
            f"Failed to parse multistream index {index_file}: {e}",
            "parse_multistream_index",
        ) from e

    ordered = sorted(entries, key=lambda entry: entry.byte_offset)
    if ordered != entries:
        logger.warning(f"⚠️  Index {Path(index_file).name} was not sorted; sorted in memory")
    return ordered


def compute_blocks(entries: Iterable[IndexEntry]) -> list[StreamBlock]:
    """
    Group index entries into byte-range blocks.

    Each block's end offset is the next block's start minus one; the last
    block reads to the end of the file (-1).
    """
    ordered = sorted(entries, key=lambda entry: entry.byte_offset)
    grouped = [
        (offset, [entry.article_id for entry in group])
        for offset, group in groupby(ordered, key=lambda entry: entry.byte_offset)
    ]

    blocks: list[StreamBlock] = []
    for i, (offset, article_ids) in enumerate(grouped):
        end_offset = grouped[i + 1][0] - 1 if i + 1 < len(grouped) else -1
        blocks.append(
            StreamBlock(byte_offset=offset, end_offset=end_offset, article_ids=article_ids)
        )
    return blocks


# =============================================================================
# STREAMING COMPACTION
# =============================================================================


def iter_stream_blocks(
    lines: Iterable[str],
    progress_callback: ProgressCallback | None = None,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
) -> Generator[StreamBlock]:
    """
    Compact index lines into blocks without retaining every entry.

    Args:
        lines: Index lines, non-decreasing by byte offset
        progress_callback: Called every ``progress_interval`` scanned lines
        progress_interval: Lines between progress callbacks

    Yields:
        StreamBlock objects as soon as each one is closed

    Raises:
        UnsortedIndexError: If an offset is smaller than the current boundary
    """
    interval = max(1, progress_interval)
    current_offset: int | None = None
    article_ids: list[str] = []
    blocks_found = 0

    for line_number, line in enumerate(lines, start=1):
        entry = parse_index_line(line, line_number)

        if entry is not None:
            if current_offset is None:
                current_offset = entry.byte_offset
                article_ids = [entry.article_id]
            elif entry.byte_offset == current_offset:
                article_ids.append(entry.article_id)
            elif entry.byte_offset > current_offset:
                yield StreamBlock(
                    byte_offset=current_offset,
                    end_offset=entry.byte_offset - 1,
                    article_ids=article_ids,
                )
                blocks_found += 1
                current_offset = entry.byte_offset
                article_ids = [entry.article_id]
            else:
                raise UnsortedIndexError(
                    f"Index is not sorted: offset {entry.byte_offset} on line "
                    f"{line_number} is smaller than current boundary {current_offset}",
                    "iter_stream_blocks",
                )

        if progress_callback is not None and line_number % interval == 0:
            progress_callback(
                IndexScanProgress(lines_scanned=line_number, blocks_found=blocks_found)
            )

    if current_offset is not None:
        yield StreamBlock(byte_offset=current_offset, end_offset=-1, article_ids=article_ids)


def load_stream_blocks(
    index_file: str | Path,
    progress_callback: ProgressCallback | None = None,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
) -> list[StreamBlock]:
    """Compact an index file into blocks using streaming compaction."""
    logger.info(f"🔍 Scanning multistream index {Path(index_file).name}...")
    try:
        with open_text_stream(index_file) as fh:
            blocks = list(iter_stream_blocks(fh, progress_callback, progress_interval))
    except WikiParserError:
        raise
    except (OSError, EOFError) as e:
        raise MultistreamIndexError(
            f"Failed to scan multistream index {index_file}: {e}",
            "load_stream_blocks",
        ) from e

    logger.info(
        f"📦 Found {len(blocks):,} blocks covering "
        f"{sum(len(b.article_ids) for b in blocks):,} articles"
    )
    return blocks


def load_blocks(
    index_file: str | Path,
    mode: str = "stream",
    progress_callback: ProgressCallback | None = None,
) -> list[StreamBlock]:
    """Load blocks with the given mode ("stream" or "full")."""
    if mode == "full":
        return compute_blocks(parse_multistream_index(index_file))
    if mode == "stream":
        return load_stream_blocks(index_file, progress_callback)
    raise ValueError(f"Unknown index mode: {mode!r}")
