"""
Checkpoint store for resumable ingestion.

Features:
- Atomic checkpoint saves (temp file + fsync + replace)
- Strict validation of the on-disk record
- One checkpoint per (strategy, dump file, dump date)
- Block-level progress for multi-block runs
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from wiki_ingest.errors import (
    CheckpointCorruptError,
    CheckpointNotFoundError,
    CheckpointSaveError,
)

logger = logging.getLogger("wiki_ingest.checkpoint")

NO_ARTICLE = "0"
CHECKPOINT_FILE_TEMPLATE = "indexing-checkpoint-{strategy}.json"


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


class Checkpoint(BaseModel):
    """
    Persisted progress of one ingestion run.

    ``completed_block_offsets`` is None when the run never used multi-block
    mode; an empty list means multi-block mode with nothing completed yet.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    last_article_id: str = Field(..., alias="lastArticleId")
    articles_processed: int = Field(..., ge=0, alias="articlesProcessed")
    total_articles: int | None = Field(default=None, ge=0, alias="totalArticles")
    strategy: str
    dump_file: str = Field(..., alias="dumpFile")
    dump_date: str = Field(..., alias="dumpDate")
    embedding_model: str = Field(..., alias="embeddingModel")
    collection_name: str = Field(..., alias="collectionName")
    timestamp: str
    completed_block_offsets: list[int] | None = Field(
        default=None, alias="completedBlockOffsets"
    )

    @property
    def is_fresh(self) -> bool:
        return self.last_article_id == NO_ARTICLE and not self.completed_block_offsets

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True, exclude_none=True), indent=2)


class CheckpointParams(BaseModel):
    """Values needed to start a new checkpoint."""

    strategy: str
    dump_file: str
    dump_date: str
    embedding_model: str
    collection_name: str
    total_articles: int | None = None


class CheckpointValidationParams(BaseModel):
    """Identity triple a checkpoint must match to be resumed."""

    strategy: str
    dump_file: str
    dump_date: str


# =============================================================================
# PERSISTENCE
# =============================================================================


def save_checkpoint(checkpoint: Checkpoint, checkpoint_path: str | Path) -> None:
    """
    Write the checkpoint atomically.

    The record is written to ``<path>.tmp``, flushed to disk and renamed over
    the target, so readers only ever see the old or the new version.

    Raises:
        CheckpointSaveError: If any step fails (the temp file is removed)
    """
    path = Path(checkpoint_path)
    temp_path = path.with_name(path.name + ".tmp")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(checkpoint.to_json())
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        raise CheckpointSaveError(f"Failed to save checkpoint {path}: {e}") from e

    logger.debug(
        f"💾 Checkpoint saved: {checkpoint.articles_processed:,} articles, "
        f"last={checkpoint.last_article_id}"
    )


def load_checkpoint(checkpoint_path: str | Path) -> Checkpoint:
    """
    Load and validate a checkpoint.

    Raises:
        CheckpointNotFoundError: If the file does not exist
        CheckpointCorruptError: If the file is not JSON or misses required fields
    """
    path = Path(checkpoint_path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise CheckpointNotFoundError(f"No checkpoint at {path}") from e
    except OSError as e:
        raise CheckpointCorruptError(f"Cannot read checkpoint {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CheckpointCorruptError(f"Checkpoint {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CheckpointCorruptError(f"Checkpoint {path} is not a JSON object")

    try:
        return Checkpoint.model_validate(data)
    except ValidationError as e:
        missing = [
            str(err["loc"][0]) for err in e.errors() if err["type"] == "missing" and err["loc"]
        ]
        if missing:
            detail = f"missing required fields: {', '.join(missing)}"
        else:
            detail = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
        raise CheckpointCorruptError(f"Checkpoint {path} is invalid ({detail})") from e


def checkpoint_exists(checkpoint_path: str | Path) -> bool:
    return Path(checkpoint_path).is_file()


def clear_checkpoint(checkpoint_path: str | Path) -> bool:
    """Delete the checkpoint file. Returns True if a file was removed."""
    path = Path(checkpoint_path)
    if not path.exists():
        return False
    path.unlink()
    logger.info(f"🗑️  Checkpoint cleared: {path}")
    return True


# =============================================================================
# HELPERS
# =============================================================================


def validate_checkpoint(checkpoint: Checkpoint, params: CheckpointValidationParams) -> bool:
    """True only if strategy, dump file and dump date all match."""
    return (
        checkpoint.strategy == params.strategy
        and checkpoint.dump_file == params.dump_file
        and checkpoint.dump_date == params.dump_date
    )


def create_initial_checkpoint(params: CheckpointParams) -> Checkpoint:
    return Checkpoint(
        last_article_id=NO_ARTICLE,
        articles_processed=0,
        total_articles=params.total_articles,
        strategy=params.strategy,
        dump_file=params.dump_file,
        dump_date=params.dump_date,
        embedding_model=params.embedding_model,
        collection_name=params.collection_name,
        timestamp=utc_timestamp(),
        completed_block_offsets=None,
    )


def get_checkpoint_path(strategy: str, base_dir: str | Path | None = None) -> Path:
    """Default checkpoint location for a strategy."""
    name = CHECKPOINT_FILE_TEMPLATE.format(strategy=strategy)
    return Path(base_dir) / name if base_dir is not None else Path(name)


def get_checkpoint_metadata(checkpoint: Checkpoint) -> dict[str, Any]:
    """Summary used in log lines and the CLI."""
    total = checkpoint.total_articles
    progress = (
        round(checkpoint.articles_processed / total * 100, 2) if total else None
    )
    return {
        "strategy": checkpoint.strategy,
        "dumpDate": checkpoint.dump_date,
        "collection": checkpoint.collection_name,
        "articlesProcessed": checkpoint.articles_processed,
        "totalArticles": total,
        "progressPercent": progress,
        "completedBlocks": len(checkpoint.completed_block_offsets or []),
        "lastArticleId": checkpoint.last_article_id,
        "timestamp": checkpoint.timestamp,
    }


def describe_resume(checkpoint: Checkpoint) -> str:
    """Human-readable description of where a run will resume."""
    if checkpoint.is_fresh:
        return "Starting fresh"
    parts = [f"Resuming after {checkpoint.articles_processed:,} articles"]
    if checkpoint.total_articles:
        pct = checkpoint.articles_processed / checkpoint.total_articles * 100
        parts.append(f"of {checkpoint.total_articles:,} ({pct:.1f}%)")
    if checkpoint.completed_block_offsets is not None:
        parts.append(f"with {len(checkpoint.completed_block_offsets):,} blocks complete")
    else:
        parts.append(f"from article {checkpoint.last_article_id}")
    return " ".join(parts)
