"""
Data models for the Wikipedia ingestion pipeline.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

# =============================================================================
# PARSER OPTIONS
# =============================================================================


@dataclass
class ParserOptions:
    """Options shared by the sequential and multi-block parsers."""

    skip_redirects: bool = True
    min_paragraph_length: int = 10


# =============================================================================
# ARTICLE DATA MODELS
# =============================================================================


@dataclass(frozen=True)
class WikiPage:
    """Raw page as found between ``<page>`` and ``</page>`` in the dump."""

    title: str
    id: str
    is_redirect: bool
    raw_text: str


@dataclass
class WikiSection:
    """A section of an article body ("" name = introduction)."""

    name: str
    level: int
    content: str


@dataclass(frozen=True)
class TextUnit:
    """One cleaned, position-numbered paragraph tagged with its source."""

    article_id: str
    article_title: str
    section_name: str
    position: int
    content: str

    def to_payload(self) -> dict[str, Any]:
        """Payload shape handed to downstream stores."""
        return {
            "articleId": self.article_id,
            "articleTitle": self.article_title,
            "sectionName": self.section_name,
            "paragraphPosition": self.position,
            "content": self.content,
        }


# =============================================================================
# MULTISTREAM INDEX MODELS
# =============================================================================


@dataclass(frozen=True)
class IndexEntry:
    """One line of the multistream index file."""

    byte_offset: int
    article_id: str
    article_title: str


@dataclass
class StreamBlock:
    """
    An independently decompressible byte range of the dump.

    ``end_offset`` is inclusive; -1 means "to the end of the file".
    """

    byte_offset: int
    end_offset: int
    article_ids: list[str] = field(default_factory=list)

    @property
    def is_last(self) -> bool:
        return self.end_offset == -1


@dataclass
class IndexScanProgress:
    """Progress snapshot reported while compacting a large index."""

    lines_scanned: int
    blocks_found: int


# =============================================================================
# STATISTICS
# =============================================================================


@dataclass
class PipelineStats:
    """Run statistics for one ingestion invocation."""

    # Counters
    articles_processed: int = 0
    paragraphs_emitted: int = 0
    blocks_total: int = 0
    blocks_completed: int = 0
    blocks_skipped: int = 0

    # Outcome
    interrupted: bool = False
    limit_reached: bool = False

    # Timing
    start_time: float = field(default_factory=time.time)

    def rate(self) -> float:
        """Calculate articles per second."""
        elapsed = time.time() - self.start_time
        return self.articles_processed / elapsed if elapsed > 0 else 0.0

    def eta_seconds(self, total: int | None) -> float | None:
        """Estimate time remaining."""
        if total is None or self.articles_processed == 0:
            return None
        rate = self.rate()
        if rate == 0:
            return None
        remaining = total - self.articles_processed
        return max(remaining, 0) / rate

    def summary(self) -> str:
        """Generate summary string."""
        elapsed = time.time() - self.start_time
        return (
            f"\n{'=' * 70}\n"
            f"📊 INGESTION SUMMARY\n"
            f"{'=' * 70}\n"
            f"⏱️  Duration: {elapsed:.1f}s\n"
            f"📄 Articles: {self.articles_processed:,}\n"
            f"🧩 Paragraphs: {self.paragraphs_emitted:,}\n"
            f"⚡ Rate: {self.rate():.1f} articles/sec\n"
            f"📦 Blocks: {self.blocks_completed}/{self.blocks_total} "
            f"(skipped {self.blocks_skipped})\n"
            f"{'=' * 70}"
        )
