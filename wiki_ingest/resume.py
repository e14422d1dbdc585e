"""
Resume position filtering by article id.

The checkpoint records the last fully processed article. On restart every
unit up to and including that article is dropped:

    NOT_FOUND --(anchor id)--> FOUND_SKIPPING_TAIL --(other id)--> FOUND_PAST_ANCHOR

If the anchor never shows up the dump does not match the checkpoint, which is
reported once the stream is exhausted.
"""

from __future__ import annotations

import logging
from collections.abc import Generator, Iterable
from dataclasses import dataclass
from enum import Enum

from wiki_ingest.checkpoint import NO_ARTICLE
from wiki_ingest.errors import ResumeAnchorNotFoundError
from wiki_ingest.models import TextUnit

logger = logging.getLogger("wiki_ingest.resume")


class ResumeState(Enum):
    NOT_FOUND = "not_found"
    FOUND_SKIPPING_TAIL = "found_skipping_tail"
    FOUND_PAST_ANCHOR = "found_past_anchor"


@dataclass
class ResumeScanState:
    anchor_found: bool = False
    skipping_anchor_tail: bool = False


class ResumeFilter:
    """Decides unit by unit whether a resumed run should emit it."""

    def __init__(self, last_article_id: str):
        self.last_article_id = last_article_id
        self.skipped = 0
        if last_article_id == NO_ARTICLE:
            self._scan = ResumeScanState(anchor_found=True, skipping_anchor_tail=False)
        else:
            self._scan = ResumeScanState()

    @property
    def state(self) -> ResumeState:
        if not self._scan.anchor_found:
            return ResumeState.NOT_FOUND
        if self._scan.skipping_anchor_tail:
            return ResumeState.FOUND_SKIPPING_TAIL
        return ResumeState.FOUND_PAST_ANCHOR

    def should_yield(self, article_id: str) -> bool:
        scan = self._scan
        if not scan.anchor_found:
            if article_id == self.last_article_id:
                scan.anchor_found = True
                scan.skipping_anchor_tail = True
                logger.info(f"🎯 Resume anchor {article_id} found after {self.skipped:,} units")
            self.skipped += 1
            return False

        if scan.skipping_anchor_tail:
            if article_id == self.last_article_id:
                self.skipped += 1
                return False
            scan.skipping_anchor_tail = False

        return True

    def finish(self) -> None:
        """Raise if the stream ended before the anchor article appeared."""
        if self.state is ResumeState.NOT_FOUND:
            raise ResumeAnchorNotFoundError(self.last_article_id)


def iter_resumed(units: Iterable[TextUnit], resume: ResumeFilter) -> Generator[TextUnit]:
    """Apply an existing filter, so the caller can watch its state."""
    for unit in units:
        if resume.should_yield(unit.article_id):
            yield unit
    resume.finish()


def filter_resumed(
    units: Iterable[TextUnit],
    last_article_id: str,
) -> Generator[TextUnit]:
    """
    Drop every unit up to and including the anchor article.

    Raises:
        ResumeAnchorNotFoundError: If the stream ends without the anchor
    """
    yield from iter_resumed(units, ResumeFilter(last_article_id))
