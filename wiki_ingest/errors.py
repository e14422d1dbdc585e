"""
Exception hierarchy for the ingestion pipeline.

Parser-side failures carry the operation that raised them so log lines can
point at the failing stage without a traceback.
"""

from __future__ import annotations


class WikiParserError(Exception):
    """Exception raised when reading or parsing a dump fails."""

    def __init__(
        self,
        message: str,
        operation: str,
        article_title: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.article_title = article_title

    def __str__(self) -> str:
        return f"[{self.operation}] {self.args[0]}"


class StreamFramingError(WikiParserError):
    """The page buffer grew past its ceiling without a complete element."""


class UnsupportedDumpFormatError(WikiParserError):
    """The dump or index file extension is not recognised."""


class MultistreamIndexError(WikiParserError):
    """Base class for multistream index failures."""


class MalformedIndexError(MultistreamIndexError):
    """An index line does not follow ``byteOffset:articleId:articleTitle``."""


class UnsortedIndexError(MultistreamIndexError):
    """An index line's byte offset is smaller than the current block boundary."""


class BlockSequenceError(WikiParserError):
    """No in-flight result exists for the block that must be emitted next."""


class CheckpointError(Exception):
    """Base class for checkpoint store failures."""


class CheckpointNotFoundError(CheckpointError):
    """The checkpoint file does not exist (expected on a first run)."""


class CheckpointCorruptError(CheckpointError):
    """The checkpoint file is not valid JSON or lacks required fields."""


class CheckpointSaveError(CheckpointError):
    """Writing the checkpoint file failed."""


class IngestionError(Exception):
    """Base class for orchestrator failures."""


class ResumeAnchorNotFoundError(IngestionError):
    """The checkpointed article never appeared in the dump."""

    def __init__(self, last_article_id: str) -> None:
        super().__init__(
            f"Resume anchor article {last_article_id!r} was not found in the dump; "
            "the dump file has changed or does not match the checkpoint"
        )
        self.last_article_id = last_article_id
