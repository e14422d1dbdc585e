"""
Ingestion orchestrator.

Drives one run end to end:

    checkpoint → source (sequential or multi-block) → article tracking
               → sink batches → checkpoint commits

Progress is committed at article granularity in sequential mode (every
``checkpoint_interval`` completed articles) and at block granularity in
multi-block mode (once per finished block). The checkpoint never moves past
units that are still sitting in an unflushed sink batch.

Interrupts (SIGINT/SIGTERM) are cooperative: the flag is checked between
units, after which the run flushes, saves and exits with code 130. A second
signal exits immediately.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from collections.abc import Iterator
from contextlib import ExitStack, closing
from types import FrameType

from tqdm import tqdm

from wiki_ingest.checkpoint import (
    NO_ARTICLE,
    Checkpoint,
    CheckpointParams,
    CheckpointValidationParams,
    checkpoint_exists,
    clear_checkpoint,
    create_initial_checkpoint,
    describe_resume,
    load_checkpoint,
    save_checkpoint,
    utc_timestamp,
    validate_checkpoint,
)
from wiki_ingest.config import IngestionSettings
from wiki_ingest.dump_parser import parse_wikipedia_dump
from wiki_ingest.errors import CheckpointError
from wiki_ingest.models import IndexScanProgress, ParserOptions, PipelineStats, StreamBlock, TextUnit
from wiki_ingest.multistream_index import load_blocks
from wiki_ingest.parallel_reader import read_multistream_parallel
from wiki_ingest.resume import ResumeFilter, ResumeState, filter_resumed, iter_resumed
from wiki_ingest.sinks import TextUnitSink, build_sink

logger = logging.getLogger("wiki_ingest.pipeline")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

PROGRESS_LOG_INTERVAL = 10_000


def _format_eta(seconds: float | None) -> str:
    if seconds is None:
        return ""
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f", ETA {hours:d}:{minutes:02d}:{secs:02d}"


# =============================================================================
# SHUTDOWN HANDLING
# =============================================================================


class ShutdownHandler:
    """
    Cooperative SIGINT/SIGTERM handling.

    The first signal only sets ``requested``; the pipeline notices it at the
    next unit boundary. A second signal terminates the process at once.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self) -> None:
        self.requested = False
        self._previous: dict[int, object] = {}

    def install(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return
        for sig in self.SIGNALS:
            self._previous[sig] = signal.signal(sig, self._handle)

    def restore(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]
        self._previous.clear()

    def request(self) -> None:
        self.requested = True

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        if self.requested:
            logger.error("❌ Second interrupt received, exiting without saving")
            os._exit(EXIT_FAILURE)
        logger.warning(
            f"⚠️  Received {signal.Signals(signum).name}, finishing current unit "
            "and saving checkpoint (interrupt again to force exit)"
        )
        self.requested = True


# =============================================================================
# PIPELINE
# =============================================================================


class IngestionPipeline:
    """
    Streams TextUnits from a dump into a sink with resumable progress.

    The sink and shutdown handler are injected; the pipeline never closes
    over process-wide clients.
    """

    def __init__(
        self,
        settings: IngestionSettings,
        sink: TextUnitSink,
        shutdown: ShutdownHandler | None = None,
    ):
        self.settings = settings
        self.sink = sink
        self.shutdown = shutdown or ShutdownHandler()
        self.checkpoint_path = settings.checkpoint_path
        self.options = ParserOptions(
            skip_redirects=settings.skip_redirects,
            min_paragraph_length=settings.min_paragraph_length,
        )

        self.stats = PipelineStats()
        self.checkpoint: Checkpoint | None = None

        # Run state
        self._batch: list[TextUnit] = []
        self._current_article: str | None = None
        self._pending_articles = 0
        self._pending_last_id: str | None = None
        self._pbar: tqdm | None = None
        self._expected_total: int | None = None
        self._legacy_resume: ResumeFilter | None = None
        self._blocks_before_anchor: list[int] = []

    # -------------------------------------------------------------------------
    # Checkpoint
    # -------------------------------------------------------------------------

    def load_or_create_checkpoint(self) -> Checkpoint:
        """
        Load a matching checkpoint or start a fresh one.

        A missing or mismatching checkpoint starts fresh; a corrupt one is
        fatal unless ``clear_checkpoint`` is set.
        """
        settings = self.settings
        if settings.clear_checkpoint:
            clear_checkpoint(self.checkpoint_path)

        existing: Checkpoint | None = None
        if checkpoint_exists(self.checkpoint_path):
            existing = load_checkpoint(self.checkpoint_path)
        else:
            logger.info("📍 No checkpoint found, starting fresh")

        params = CheckpointValidationParams(
            strategy=settings.strategy,
            dump_file=settings.dump_file,
            dump_date=settings.dump_date,
        )
        if existing is not None and validate_checkpoint(existing, params):
            self.checkpoint = existing
        else:
            if existing is not None:
                logger.warning(
                    f"⚠️  Checkpoint is for a different run "
                    f"({existing.strategy}/{existing.dump_file}/{existing.dump_date}). "
                    "Starting fresh."
                )
            self.checkpoint = create_initial_checkpoint(
                CheckpointParams(
                    strategy=settings.strategy,
                    dump_file=settings.dump_file,
                    dump_date=settings.dump_date,
                    embedding_model=settings.embedding_model,
                    collection_name=settings.collection,
                )
            )

        logger.info(f"📍 {describe_resume(self.checkpoint)}")
        return self.checkpoint

    def _save(self) -> None:
        assert self.checkpoint is not None
        self.checkpoint.timestamp = utc_timestamp()
        save_checkpoint(self.checkpoint, self.checkpoint_path)

    def _close_sink(self) -> None:
        try:
            self.sink.close()
        except Exception as e:
            logger.warning(f"⚠️  Error closing sink: {e}")

    def _flush(self) -> None:
        if self._batch:
            self.sink.write_batch(self._batch)
            self._batch = []

    def _commit(self, block_offset: int | None = None) -> None:
        """
        Flush pending units, then move the checkpoint past completed articles
        (and the finished block, in multi-block mode).
        """
        assert self.checkpoint is not None
        self._flush()
        if self._pending_last_id is not None:
            self.checkpoint.articles_processed += self._pending_articles
            self.checkpoint.last_article_id = self._pending_last_id
        self._pending_articles = 0
        self._pending_last_id = None
        if block_offset is not None:
            if self.checkpoint.completed_block_offsets is None:
                self.checkpoint.completed_block_offsets = []
            self.checkpoint.completed_block_offsets.append(block_offset)
        self._save()

    # -------------------------------------------------------------------------
    # Article tracking
    # -------------------------------------------------------------------------

    def _complete_article(self, article_id: str) -> None:
        self._pending_articles += 1
        self._pending_last_id = article_id
        self.stats.articles_processed += 1
        if self._pbar is not None:
            self._pbar.update(1)
        if self.stats.articles_processed % PROGRESS_LOG_INTERVAL == 0:
            logger.info(
                f"📊 {self.stats.articles_processed:,} articles, "
                f"{self.stats.paragraphs_emitted:,} paragraphs "
                f"({self.stats.rate():.1f} articles/sec)"
                + _format_eta(self.stats.eta_seconds(self._expected_total))
            )

    def _on_block_complete(self, block: StreamBlock) -> None:
        assert self.checkpoint is not None
        if self._legacy_resume is not None:
            # Blocks before the anchor are recorded once it has been seen
            if self._legacy_resume.state is ResumeState.NOT_FOUND:
                self._blocks_before_anchor.append(block.byte_offset)
                return
            self.checkpoint.completed_block_offsets = self._blocks_before_anchor
            self._legacy_resume = None
            self._blocks_before_anchor = []

        if self._current_article is not None:
            self._complete_article(self._current_article)
            self._current_article = None
        self._commit(block_offset=block.byte_offset)
        self.stats.blocks_completed += 1

    def _limit_reached(self) -> bool:
        limit = self.settings.limit
        if limit is None or self.stats.articles_processed < limit:
            return False
        if not self.stats.limit_reached:
            logger.info(f"🛑 Limit of {limit:,} articles reached")
            self.stats.limit_reached = True
        return True

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------

    def _log_index_progress(self, progress: IndexScanProgress) -> None:
        logger.info(
            f"🔍 Index scan: {progress.lines_scanned:,} lines, "
            f"{progress.blocks_found:,} blocks"
        )

    def _sequential_source(self, stack: ExitStack) -> Iterator[TextUnit]:
        assert self.checkpoint is not None
        units = stack.enter_context(
            closing(parse_wikipedia_dump(self.settings.dump_file, self.options))
        )
        if self.checkpoint.last_article_id == NO_ARTICLE:
            return units
        return stack.enter_context(
            closing(filter_resumed(units, self.checkpoint.last_article_id))
        )

    def _parallel_source(self, stack: ExitStack) -> Iterator[TextUnit]:
        assert self.checkpoint is not None and self.settings.index_file is not None
        blocks = load_blocks(
            self.settings.index_file,
            self.settings.index_mode,
            progress_callback=self._log_index_progress,
        )
        self.checkpoint.total_articles = sum(len(b.article_ids) for b in blocks)

        legacy_anchor = None
        if self.checkpoint.completed_block_offsets is None:
            if self.checkpoint.last_article_id == NO_ARTICLE:
                self.checkpoint.completed_block_offsets = []
            else:
                # Stays in article-anchor form until the anchor is found
                legacy_anchor = self.checkpoint.last_article_id

        completed = set(self.checkpoint.completed_block_offsets or [])
        pending = [b for b in blocks if b.byte_offset not in completed]
        self.stats.blocks_total = len(blocks)
        self.stats.blocks_skipped = len(blocks) - len(pending)
        if self.stats.blocks_skipped:
            logger.info(f"⏭️  Skipping {self.stats.blocks_skipped:,} completed blocks")

        units = stack.enter_context(
            closing(
                read_multistream_parallel(
                    self.settings.dump_file,
                    pending,
                    concurrency=self.settings.streams,
                    options=self.options,
                    on_block_complete=self._on_block_complete,
                )
            )
        )
        if legacy_anchor is None:
            return units
        logger.info(f"📍 Checkpoint has no block progress, resuming after {legacy_anchor}")
        self._legacy_resume = ResumeFilter(legacy_anchor)
        self._blocks_before_anchor = []
        return stack.enter_context(closing(iter_resumed(units, self._legacy_resume)))

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def _consume(self, units: Iterator[TextUnit]) -> None:
        settings = self.settings
        parallel = settings.parallel_mode

        for unit in units:
            if self.shutdown.requested:
                self.stats.interrupted = True
                return

            if unit.article_id != self._current_article:
                if self._current_article is not None:
                    self._complete_article(self._current_article)
                    self._current_article = None
                    if not parallel and self._pending_articles >= settings.checkpoint_interval:
                        self._commit()
                if self._limit_reached():
                    return

            self._current_article = unit.article_id
            self._batch.append(unit)
            self.stats.paragraphs_emitted += 1
            if len(self._batch) >= settings.batch_size:
                self._flush()

        if self._current_article is not None:
            self._complete_article(self._current_article)
            self._current_article = None

    def _finish(self) -> None:
        """Persist progress after the stream ended or was stopped."""
        stopped_early = self.stats.interrupted or self.stats.limit_reached
        if self.settings.parallel_mode and stopped_early:
            # Articles of a partially processed block are redone on resume
            self._flush()
            self._save()
        else:
            self._commit()

    def run(self) -> PipelineStats:
        """
        Run the ingestion.

        Returns:
            Final pipeline statistics

        Raises:
            Any fatal error, after a last checkpoint save has been attempted
        """
        self.stats = PipelineStats()
        parallel = self.settings.parallel_mode

        try:
            checkpoint = self.load_or_create_checkpoint()
            logger.info(
                f"🚀 Mode: {f'multi-block x{self.settings.streams}' if parallel else 'sequential'}, "
                f"collection={self.settings.collection}, batch_size={self.settings.batch_size}"
            )

            with ExitStack() as stack:
                source = self._parallel_source(stack) if parallel else self._sequential_source(stack)

                total = self.settings.limit
                if total is None and checkpoint.total_articles:
                    total = max(checkpoint.total_articles - checkpoint.articles_processed, 0)
                self._expected_total = total
                self._pbar = stack.enter_context(
                    tqdm(
                        total=total,
                        unit="articles",
                        desc="Ingesting",
                        dynamic_ncols=True,
                        disable=not self.settings.show_progress,
                    )
                )

                self._consume(source)

            self._finish()
        except Exception:
            if self.checkpoint is not None:
                logger.error("❌ Fatal error, saving last committed checkpoint")
                try:
                    self._save()
                except CheckpointError as save_error:
                    logger.error(f"❌ Final checkpoint save failed: {save_error}")
            raise
        finally:
            self._pbar = None
            self._close_sink()

        if self.stats.interrupted:
            logger.warning(
                f"⏸️  Interrupted. Checkpoint saved to {self.checkpoint_path}; "
                "run the same command again to resume."
            )
        return self.stats


# =============================================================================
# ENTRY POINT
# =============================================================================


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Suppress noisy loggers
    for name in ["qdrant_client", "httpx", "urllib3", "sentence_transformers"]:
        logging.getLogger(name).setLevel(logging.WARNING)


def run_ingestion(
    settings: IngestionSettings,
    sink: TextUnitSink | None = None,
    shutdown: ShutdownHandler | None = None,
) -> int:
    """
    Convenience function to run a full ingestion.

    Args:
        settings: Run configuration
        sink: Sink to deliver units to (built from settings if omitted)
        shutdown: Shutdown handler (a fresh one is installed if omitted)

    Returns:
        Process exit code: 0 success, 130 interrupted, 1 failure
    """
    configure_logging(settings.log_level)
    logger.info(f"🚀 Starting Wikipedia ingestion of {settings.dump_file}")

    shutdown = shutdown or ShutdownHandler()
    shutdown.install()
    try:
        pipeline = IngestionPipeline(settings, sink or build_sink(settings), shutdown)
        stats = pipeline.run()
    except Exception as e:
        logger.error(f"❌ Ingestion failed: {e}")
        logger.debug("Traceback:", exc_info=True)
        return EXIT_FAILURE
    finally:
        shutdown.restore()

    logger.info(stats.summary())
    if stats.interrupted:
        return EXIT_INTERRUPTED
    return EXIT_OK
