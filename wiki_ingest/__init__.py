"""
Resumable Wikipedia Dump Ingestion
==================================

Turns multi-gigabyte Wikipedia XML exports into a bounded-memory stream of
cleaned, position-numbered paragraphs, with checkpoints so a run can be
interrupted and restarted.

Architecture:
- Incremental <page> framing with a hard buffer ceiling
- Section and paragraph extraction with wikitext cleanup
- Multistream index compaction into independent bz2 blocks
- Ordered parallel block decompression with a rolling window
- Atomic checkpoints at article or block granularity

Modules:
- errors: Exception hierarchy
- config: Run settings from CLI and environment
- streams: Dump format detection and byte-range decompression
- xml_stream: Page streaming from XML text
- preprocessor: Sections, paragraphs and wikitext cleanup
- dump_parser: Sequential dump parsing
- multistream_index: Index parsing and block computation
- parallel_reader: Ordered parallel block reading
- checkpoint: Checkpoint persistence
- resume: Resume position filtering
- sinks: JSONL and Qdrant sinks
- pipeline: Run orchestration
"""

from wiki_ingest.checkpoint import Checkpoint, load_checkpoint, save_checkpoint
from wiki_ingest.config import IngestionSettings
from wiki_ingest.dump_parser import parse_wikipedia_dump
from wiki_ingest.models import (
    IndexEntry,
    ParserOptions,
    PipelineStats,
    StreamBlock,
    TextUnit,
    WikiPage,
    WikiSection,
)
from wiki_ingest.multistream_index import compute_blocks, load_stream_blocks
from wiki_ingest.parallel_reader import read_multistream_parallel
from wiki_ingest.pipeline import IngestionPipeline, run_ingestion
from wiki_ingest.resume import filter_resumed
from wiki_ingest.sinks import JsonlSink, QdrantSink, TextUnitSink
from wiki_ingest.xml_stream import stream_pages

__version__ = "1.0.0"

__all__ = [
    # Models
    "WikiPage",
    "WikiSection",
    "TextUnit",
    "IndexEntry",
    "StreamBlock",
    "ParserOptions",
    "PipelineStats",
    # Parsing
    "stream_pages",
    "parse_wikipedia_dump",
    "compute_blocks",
    "load_stream_blocks",
    "read_multistream_parallel",
    # Resume
    "Checkpoint",
    "load_checkpoint",
    "save_checkpoint",
    "filter_resumed",
    # Sinks
    "TextUnitSink",
    "JsonlSink",
    "QdrantSink",
    # Pipeline
    "IngestionSettings",
    "IngestionPipeline",
    "run_ingestion",
]
