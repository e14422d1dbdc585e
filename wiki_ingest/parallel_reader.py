"""
Parallel multistream bz2 decompression and parsing.

Blocks are decompressed and parsed in a thread pool while paragraphs are
yielded strictly in block order. A rolling window keeps ``concurrency``
blocks in flight: as soon as the next expected block is done its slot is
refilled, so a slow block never stops later blocks from being scheduled and
no batch barrier is needed.

    in flight:  [ i ][ i+1 ] ... [ i+N-1 ]
    emit i  ->  submit i+N  ->  yield units of i  ->  on_block_complete(i)
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Generator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from wiki_ingest.dump_parser import iter_page_units
from wiki_ingest.errors import BlockSequenceError, WikiParserError
from wiki_ingest.models import ParserOptions, StreamBlock, TextUnit
from wiki_ingest.xml_stream import stream_pages

logger = logging.getLogger("wiki_ingest.parallel_reader")

BlockWork = Callable[[StreamBlock], list[TextUnit]]
BlockCompleteCallback = Callable[[StreamBlock], None]


def parse_block(
    dump_file: str | Path,
    block: StreamBlock,
    options: ParserOptions | None = None,
) -> list[TextUnit]:
    """
    Decompress and parse a single bz2 stream block into paragraphs.

    Args:
        dump_file: Path to the ``.xml.bz2`` multistream dump
        block: Byte range of the block
        options: Parser options

    Returns:
        All paragraphs of the block in parse order
    """
    end = None if block.is_last else block.end_offset
    try:
        pages = stream_pages(dump_file, start=block.byte_offset, end=end)
        return list(iter_page_units(pages, options))
    except WikiParserError:
        raise
    except (OSError, EOFError) as e:
        raise WikiParserError(
            f"Failed to decompress block at offset {block.byte_offset}: {e}",
            "parse_block",
        ) from e


def read_blocks_parallel(
    blocks: Sequence[StreamBlock],
    work: BlockWork,
    concurrency: int = 1,
    on_block_complete: BlockCompleteCallback | None = None,
) -> Generator[TextUnit]:
    """
    Run ``work`` over blocks concurrently and yield results in block order.

    Args:
        blocks: Blocks in the order their units must be emitted
        work: Function computing all units of one block (runs in a worker thread)
        concurrency: Maximum number of blocks in flight
        on_block_complete: Called once per block right after its units were
            emitted, including blocks without units

    Yields:
        TextUnit objects; all units of block i precede those of block i+1

    Raises:
        BlockSequenceError: If the next expected block has no in-flight result
    """
    if not blocks:
        return

    window = max(1, concurrency)

    # Leaving the with-block waits for in-flight work, so closing this
    # generator early never abandons a block halfway through.
    with ThreadPoolExecutor(max_workers=window, thread_name_prefix="block_reader") as executor:
        in_flight: dict[int, Future[list[TextUnit]]] = {}

        for index in range(min(window, len(blocks))):
            in_flight[index] = executor.submit(work, blocks[index])

        for index, block in enumerate(blocks):
            future = in_flight.pop(index, None)
            if future is None:
                raise BlockSequenceError(
                    f"Missing in-flight result for block index {index}",
                    "read_blocks_parallel",
                )

            units = future.result()

            next_index = index + window
            if next_index < len(blocks):
                in_flight[next_index] = executor.submit(work, blocks[next_index])

            logger.debug(
                f"Block {index + 1}/{len(blocks)} at offset {block.byte_offset}: "
                f"{len(units)} paragraphs"
            )
            yield from units

            if on_block_complete is not None:
                on_block_complete(block)


def read_multistream_parallel(
    dump_file: str | Path,
    blocks: Sequence[StreamBlock],
    concurrency: int = 1,
    options: ParserOptions | None = None,
    on_block_complete: BlockCompleteCallback | None = None,
) -> Generator[TextUnit]:
    """
    Read a Wikipedia multistream bz2 dump in parallel.

    Args:
        dump_file: Path to the ``.xml.bz2`` dump
        blocks: Block ranges from the multistream index
        concurrency: Number of blocks decompressed at once
        options: Parser options
        on_block_complete: Block completion callback (see read_blocks_parallel)

    Yields:
        TextUnit objects in block order
    """
    work = functools.partial(parse_block, dump_file, options=options)
    logger.info(
        f"⚡ Reading {len(blocks):,} blocks from {Path(dump_file).name} "
        f"with {max(1, concurrency)} streams"
    )
    yield from read_blocks_parallel(blocks, work, concurrency, on_block_complete)
