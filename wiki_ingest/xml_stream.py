"""
Bounded-memory page streamer for MediaWiki XML exports.

Approach:
1. Read the (already decompressed) input incrementally
2. Accumulate text until complete <page>...</page> elements are available
3. Parse each element on its own with lxml
4. Yield WikiPage objects one at a time, keeping only the unconsumed tail

Memory stays bounded by the largest single page. A ceiling guards against
corrupt or misaligned input: a pending element over it fails as soon as the
next <page> opens inside it, or at the end of input if it never closes.
"""

from __future__ import annotations

import codecs
import logging
import os
import threading
from collections.abc import Generator, Iterable
from pathlib import Path
from typing import IO, Union

from lxml import etree  # type: ignore[import-untyped]

from wiki_ingest.errors import StreamFramingError
from wiki_ingest.models import WikiPage
from wiki_ingest.streams import open_dump_stream

logger = logging.getLogger("wiki_ingest.xml_stream")

PAGE_OPEN = "<page>"
PAGE_CLOSE = "</page>"

MAX_BUFFER_CHARS = 10 * 1024 * 1024
DEFAULT_CHUNK_SIZE = 1024 * 1024

PageSource = Union[str, os.PathLike, IO[bytes], IO[str], Iterable[bytes], Iterable[str]]

_local = threading.local()


def _page_parser() -> etree.XMLParser:
    """lxml parsers must not be shared between threads."""
    parser = getattr(_local, "parser", None)
    if parser is None:
        parser = etree.XMLParser(huge_tree=True, resolve_entities=False)
        _local.parser = parser
    return parser


# =============================================================================
# FRAMING
# =============================================================================


class PageFramer:
    """
    Splits a text stream into complete ``<page>`` elements.

    Text outside of any element is dropped, except for a short tail that may
    hold the beginning of the next opening marker. A pending element always
    sits at the start of the buffer.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._close_scan_from = 0
        self._open_scan_from = 0
        self._nested_open = False

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def has_open_element(self) -> bool:
        return self._buffer.startswith(PAGE_OPEN)

    @property
    def is_misaligned(self) -> bool:
        """True when a second ``<page>`` opened before the pending one closed."""
        return self._nested_open

    def feed(self, text: str) -> list[str]:
        """Add text and return every element completed by it."""
        buf = self._buffer + text
        close_from = self._close_scan_from
        open_from = self._open_scan_from
        nested = self._nested_open
        elements: list[str] = []
        pos = 0

        while True:
            start = buf.find(PAGE_OPEN, pos)
            if start == -1:
                pos = max(pos, len(buf) - len(PAGE_OPEN) + 1)
                close_from = open_from = 0
                nested = False
                break

            # Scan positions carried over from the previous feed are relative
            # to the pending element, which starts at offset 0.
            end = buf.find(PAGE_CLOSE, start + max(len(PAGE_OPEN), close_from))
            if end == -1:
                pending = len(buf) - start
                if not nested:
                    nested = buf.find(PAGE_OPEN, start + max(len(PAGE_OPEN), open_from)) != -1
                close_from = max(pending - len(PAGE_CLOSE) + 1, 0)
                open_from = max(pending - len(PAGE_OPEN) + 1, 0)
                pos = start
                break

            end += len(PAGE_CLOSE)
            elements.append(buf[start:end])
            pos = end
            close_from = open_from = 0
            nested = False

        self._buffer = buf[pos:]
        self._close_scan_from = close_from
        self._open_scan_from = open_from
        self._nested_open = nested
        return elements


# =============================================================================
# ELEMENT PARSING
# =============================================================================


def _element_text(elem) -> str:
    """Text of an element whether it is a plain scalar or has nested children."""
    if elem is None:
        return ""
    return "".join(elem.itertext())


def parse_page_element(page_xml: str) -> WikiPage | None:
    """
    Parse one ``<page>`` element.

    Returns:
        WikiPage, or None when the element is malformed
    """
    try:
        root = etree.fromstring(page_xml, _page_parser())
    except (etree.XMLSyntaxError, ValueError) as e:
        logger.warning(f"⚠️  Skipping malformed page element: {e}")
        return None

    if root.tag != "page":
        logger.warning(f"⚠️  Skipping unexpected root element <{root.tag}>")
        return None

    return WikiPage(
        title=_element_text(root.find("title")).strip(),
        id=(root.findtext("id") or "").strip(),
        is_redirect=root.find("redirect") is not None,
        raw_text=_element_text(root.find("revision/text")),
    )


# =============================================================================
# STREAMING
# =============================================================================


def _iter_chunks(
    source: PageSource,
    start: int | None,
    end: int | None,
    chunk_size: int,
) -> Generator[bytes | str]:
    if isinstance(source, (str, os.PathLike)):
        with open_dump_stream(Path(source), start=start, end=end) as stream:
            while chunk := stream.read(chunk_size):
                yield chunk
        return

    if start is not None or end is not None:
        raise ValueError("Byte ranges are only supported for file path sources")

    read = getattr(source, "read", None)
    if callable(read):
        while chunk := read(chunk_size):
            yield chunk
        return

    yield from source  # type: ignore[misc]


def stream_pages(
    source: PageSource,
    start: int | None = None,
    end: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_buffer_chars: int = MAX_BUFFER_CHARS,
) -> Generator[WikiPage]:
    """
    Stream pages from a MediaWiki XML export.

    Args:
        source: Dump path, open file object, or iterable of bytes/str chunks
        start: First byte of the range to read (path sources only)
        end: Last byte of the range, inclusive (path sources only)
        chunk_size: Read size for file sources
        max_buffer_chars: Ceiling for a pending element that is misaligned or
            never closed

    Yields:
        WikiPage objects in document order

    Raises:
        StreamFramingError: If a pending element over the ceiling overlaps the
            next opener or is still open at the end of input
    """
    framer = PageFramer()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pages_yielded = 0
    malformed = 0

    def _emit(elements: list[str]) -> Generator[WikiPage]:
        nonlocal pages_yielded, malformed
        for element in elements:
            page = parse_page_element(element)
            if page is None:
                malformed += 1
                continue
            pages_yielded += 1
            yield page

    for chunk in _iter_chunks(source, start, end, chunk_size):
        text = decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        yield from _emit(framer.feed(text))

        # A single open page may grow past the ceiling; a second opener
        # before its close means the framing has gone wrong.
        if framer.buffered > max_buffer_chars and framer.is_misaligned:
            raise StreamFramingError(
                f"Buffer exceeded {max_buffer_chars:,} characters without finding "
                "a complete page element",
                "stream_pages",
            )

    yield from _emit(framer.feed(decoder.decode(b"", final=True)))

    if framer.has_open_element:
        if framer.buffered > max_buffer_chars:
            raise StreamFramingError(
                f"Input ended inside a <page> element of {framer.buffered:,} characters "
                f"(ceiling {max_buffer_chars:,})",
                "stream_pages",
            )
        logger.warning("⚠️  Input ended inside an unterminated <page> element; discarded")

    if malformed:
        logger.warning(f"Streamed {pages_yielded} pages, skipped {malformed} malformed")
    else:
        logger.debug(f"Streamed {pages_yielded} pages")
