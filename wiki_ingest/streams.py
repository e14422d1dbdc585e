"""
Dump file format detection and stream factory.

Plain ``.xml`` dumps are read as-is; ``.bz2`` dumps are decompressed on the
fly. Multistream dumps are a concatenation of independent bz2 streams, so a
byte range starting at a stream boundary can be decompressed on its own.
"""

from __future__ import annotations

import bz2
import io
import logging
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from wiki_ingest.errors import UnsupportedDumpFormatError, WikiParserError

logger = logging.getLogger("wiki_ingest.streams")

READ_BUFFER_SIZE = 1024 * 1024


class DumpFormat(Enum):
    """Supported on-disk formats."""

    XML = "xml"
    BZ2 = "bz2"


def detect_dump_format(path: str | Path) -> DumpFormat:
    """Detect the dump format from the file extension."""
    name = str(path)
    if name.endswith(".bz2"):
        return DumpFormat.BZ2
    if name.endswith((".xml", ".txt")):
        return DumpFormat.XML
    raise UnsupportedDumpFormatError(
        f"Unsupported dump format for file: {name}. "
        "Expected .xml, .txt or a .bz2 compressed variant.",
        "detect_dump_format",
    )


class ByteRangeReader(io.RawIOBase):
    """Raw reader exposing only ``[start, end]`` (inclusive) of a file."""

    def __init__(self, path: str | Path, start: int = 0, end: int | None = None):
        super().__init__()
        if start < 0:
            raise ValueError(f"start offset must be >= 0, got {start}")
        if end is not None and end < start:
            raise ValueError(f"end offset {end} precedes start offset {start}")
        self._file = open(path, "rb")
        self._file.seek(start)
        self._remaining = None if end is None else end - start + 1

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self._remaining == 0:
            return 0
        view = memoryview(buffer)
        if self._remaining is not None and len(view) > self._remaining:
            view = view[: self._remaining]
        count = self._file.readinto(view)
        if self._remaining is not None:
            self._remaining -= count
        return count

    def close(self) -> None:
        if not self.closed:
            self._file.close()
        super().close()


class RangeBZ2File(bz2.BZ2File):
    """BZ2File over a byte range that also closes the range reader."""

    def __init__(self, raw: ByteRangeReader):
        super().__init__(raw, "rb")
        self._raw = raw

    def close(self) -> None:
        try:
            super().close()
        finally:
            self._raw.close()


def open_dump_stream(
    path: str | Path,
    start: int | None = None,
    end: int | None = None,
) -> BinaryIO:
    """
    Open a dump (or index) file as a decompressed binary stream.

    Args:
        path: Path to a ``.xml``/``.txt`` file or its ``.bz2`` variant
        start: First byte of the range to read (compressed offset for bz2)
        end: Last byte of the range, inclusive; None reads to end of file

    Returns:
        Buffered binary stream of decompressed content
    """
    dump_format = detect_dump_format(path)
    file_path = Path(path)
    if not file_path.exists():
        raise WikiParserError(
            f"Dump file does not exist: {file_path}", "open_dump_stream"
        )

    try:
        raw = ByteRangeReader(file_path, start or 0, end)
    except OSError as e:
        raise WikiParserError(
            f"Failed to open dump file {file_path}: {e}", "open_dump_stream"
        ) from e

    if dump_format is DumpFormat.BZ2:
        logger.debug(f"Opening bz2 range {start or 0}-{end if end is not None else 'EOF'}")
        return RangeBZ2File(raw)
    return io.BufferedReader(raw, buffer_size=READ_BUFFER_SIZE)


def open_text_stream(path: str | Path) -> io.TextIOWrapper:
    """Open a (possibly bz2-compressed) text file for line iteration."""
    return io.TextIOWrapper(open_dump_stream(path), encoding="utf-8", errors="replace")
