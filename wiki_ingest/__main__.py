#!/usr/bin/env python3
"""
Wikipedia Dump Ingestion Tool
=============================

Streams a Wikipedia XML dump (plain or multistream bz2) into cleaned,
position-numbered paragraphs and hands them to a sink (JSONL file or Qdrant).

Runs are resumable: progress is checkpointed to
``indexing-checkpoint-<strategy>.json`` and an interrupted run continues
where it stopped when started again with the same arguments.

Usage:
    python -m wiki_ingest --dump-file enwiki-latest-pages-articles.xml.bz2 \\
        --dump-date 20240101
    python -m wiki_ingest --dump-file enwiki-20240101-pages-articles-multistream.xml.bz2 \\
        --index-file enwiki-20240101-pages-articles-multistream-index.txt.bz2 \\
        --streams 8 --dump-date 20240101 --sink qdrant
"""

from __future__ import annotations

import argparse
import json
import sys

from pydantic import ValidationError

from wiki_ingest.checkpoint import checkpoint_exists, get_checkpoint_metadata, load_checkpoint
from wiki_ingest.config import IngestionSettings
from wiki_ingest.errors import CheckpointError
from wiki_ingest.pipeline import EXIT_FAILURE, EXIT_OK, run_ingestion


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wiki-ingest",
        description="Resumable Wikipedia dump ingestion",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        argument_default=argparse.SUPPRESS,
    )

    # Source settings
    src_group = parser.add_argument_group("Source Settings")
    src_group.add_argument(
        "--dump-file", required=True, help="Path to the .xml or .xml.bz2 dump"
    )
    src_group.add_argument(
        "--dump-date", required=True, help="Dump date in YYYYMMDD format"
    )
    src_group.add_argument(
        "--strategy",
        choices=["paragraph", "chunked", "document"],
        help="Chunking strategy (default: paragraph)",
    )
    src_group.add_argument(
        "--index-file",
        help="Multistream index (.txt or .txt.bz2); required with --streams > 1",
    )
    src_group.add_argument(
        "--index-mode",
        choices=["stream", "full"],
        help="How the index is loaded (default: stream)",
    )
    src_group.add_argument(
        "--streams", type=int, help="Number of bz2 blocks decompressed in parallel (default: 1)"
    )

    # Processing settings
    proc_group = parser.add_argument_group("Processing Settings")
    proc_group.add_argument(
        "--limit", type=int, help="Maximum articles to process in this run"
    )
    proc_group.add_argument(
        "--batch-size", type=int, help="Units per sink batch, 1-2048 (default: 100)"
    )
    proc_group.add_argument(
        "--min-paragraph-length",
        type=int,
        help="Minimum raw paragraph length in characters (default: 10)",
    )
    proc_group.add_argument(
        "--include-redirects",
        dest="skip_redirects",
        action="store_false",
        help="Process redirect pages instead of skipping them",
    )

    # Sink settings
    sink_group = parser.add_argument_group("Sink Settings")
    sink_group.add_argument(
        "--sink", choices=["jsonl", "qdrant"], help="Where units are sent (default: jsonl)"
    )
    sink_group.add_argument(
        "--output", dest="output_file", help="JSONL output file (default: <collection>.jsonl)"
    )
    sink_group.add_argument("--qdrant-host", help="Qdrant host (default: localhost)")
    sink_group.add_argument("--qdrant-port", type=int, help="Qdrant HTTP port (default: 6333)")
    sink_group.add_argument(
        "--collection",
        dest="collection_name",
        help="Collection name (default: wiki-<strategy>-<dump-date>)",
    )
    sink_group.add_argument(
        "--embedding-model", help="Sentence-transformers model (default: all-MiniLM-L12-v2)"
    )
    sink_group.add_argument("--embedding-device", help="Embedding device, e.g. cpu or cuda")

    # Checkpoint settings
    ckpt_group = parser.add_argument_group("Checkpoint Settings")
    ckpt_group.add_argument(
        "--checkpoint-file",
        help="Checkpoint file path (default: indexing-checkpoint-<strategy>.json)",
    )
    ckpt_group.add_argument(
        "--checkpoint-interval",
        type=int,
        help="Articles between checkpoint saves in sequential mode (default: 100)",
    )
    ckpt_group.add_argument(
        "--clear-checkpoint",
        action="store_true",
        help="Delete the existing checkpoint and start from the beginning",
    )
    ckpt_group.add_argument(
        "--show-checkpoint",
        action="store_true",
        help="Print the checkpoint for these options as JSON and exit",
    )

    # Output settings
    out_group = parser.add_argument_group("Output Settings")
    out_group.add_argument(
        "--no-progress",
        dest="show_progress",
        action="store_false",
        help="Disable the progress bar",
    )
    out_group.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    return parser


def show_checkpoint(settings: IngestionSettings) -> int:
    path = settings.checkpoint_path
    if not checkpoint_exists(path):
        print(f"No checkpoint at {path}", file=sys.stderr)
        return EXIT_FAILURE
    try:
        checkpoint = load_checkpoint(path)
    except CheckpointError as e:
        print(f"Cannot read checkpoint: {e}", file=sys.stderr)
        return EXIT_FAILURE
    print(json.dumps(get_checkpoint_metadata(checkpoint), indent=2))
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    show = vars(args).pop("show_checkpoint", False)

    # Only explicitly given options override environment and defaults
    try:
        settings = IngestionSettings(**vars(args))
    except ValidationError as e:
        print(f"Invalid options:\n{e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    if show:
        sys.exit(show_checkpoint(settings))
    sys.exit(run_ingestion(settings))


if __name__ == "__main__":
    main()
