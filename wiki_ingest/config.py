"""
Configuration Management
========================

Pydantic-settings based configuration for an ingestion run.
Values come from CLI arguments first, then ``WIKI_INGEST_*`` environment
variables, then the defaults below.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from wiki_ingest.checkpoint import get_checkpoint_path

Strategy = Literal["paragraph", "chunked", "document"]


class IngestionSettings(BaseSettings):
    """Configuration for one ingestion run."""

    model_config = SettingsConfigDict(env_prefix="WIKI_INGEST_", extra="ignore")

    # Source
    dump_file: str = Field(..., description="Path to the .xml or .xml.bz2 dump")
    dump_date: str = Field(..., pattern=r"^\d{8}$", description="Dump date (YYYYMMDD)")
    strategy: Strategy = Field(default="paragraph", description="Chunking strategy tag")
    index_file: str | None = Field(
        default=None,
        description="Multistream index (.txt or .txt.bz2), enables multi-block mode",
    )
    index_mode: Literal["stream", "full"] = Field(
        default="stream",
        description="Index loading: streaming compaction or full materialization",
    )
    streams: int = Field(default=1, ge=1, description="Blocks decompressed in parallel")

    # Parsing
    min_paragraph_length: int = Field(default=10, ge=0)
    skip_redirects: bool = Field(default=True)

    # Delivery
    batch_size: int = Field(default=100, ge=1, le=2048)
    limit: int | None = Field(default=None, ge=1, description="Stop after N articles")
    sink: Literal["jsonl", "qdrant"] = Field(default="jsonl")
    output_file: str | None = Field(
        default=None, description="JSONL output (default: <collection>.jsonl)"
    )

    # Embeddings / Qdrant
    embedding_model: str = Field(default="all-MiniLM-L12-v2")
    embedding_device: str | None = Field(default=None, description="cpu, cuda, ...")
    qdrant_host: str = Field(default="localhost")
    qdrant_port: int = Field(default=6333)
    qdrant_api_key: SecretStr | None = Field(default=None)
    collection_name: str | None = Field(
        default=None, description="Override for wiki-<strategy>-<dumpDate>"
    )
    vector_size: int = Field(default=384, ge=1)

    # Checkpointing
    checkpoint_file: str | None = Field(default=None)
    checkpoint_interval: int = Field(default=100, ge=1)
    clear_checkpoint: bool = Field(default=False)

    # Output
    show_progress: bool = Field(default=True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @model_validator(mode="after")
    def _check_multistream(self) -> IngestionSettings:
        if self.streams > 1 and not self.index_file:
            raise ValueError("--index-file is required when --streams > 1")
        if self.index_file and not self.dump_file.endswith(".bz2"):
            raise ValueError("--index-file can only be used with a .bz2 multistream dump")
        return self

    @property
    def collection(self) -> str:
        return self.collection_name or f"wiki-{self.strategy}-{self.dump_date}"

    @property
    def checkpoint_path(self) -> Path:
        if self.checkpoint_file:
            return Path(self.checkpoint_file)
        return get_checkpoint_path(self.strategy)

    @property
    def output_path(self) -> Path:
        return Path(self.output_file or f"{self.collection}.jsonl")

    @property
    def parallel_mode(self) -> bool:
        return self.index_file is not None and self.streams > 1
