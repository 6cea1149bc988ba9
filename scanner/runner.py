"""
scanner/runner.py - Resumable concurrent block-range scanner.

One scan = one chain, one closed height range [start, end].

Flow per height (worker i of N handles start+i, start+i+N, ...):
    1. adapter.block_at(height) + adapter.events_at(hash, use_segments)
       ChainAccessError -> retry the same height with exponential backoff
    2. extract_block() upserts rows / records failures (in a thread; the store serializes writes)
    3. cursor.mark_done(height) -> persists ScanProgress over the completed prefix

Resume: effective start = max(start, progress + 1). Reprocessing after a
crash is bounded by the in-flight window and safe (idempotent upserts).

StoreError is fatal: it propagates, the other workers are cancelled.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from chains.adapter import ChainAdapter
from core.constants import DEFAULT_BLOCK_CONCURRENCY, PROGRESS_LOG_EVERY
from core.exceptions import ChainAccessError, RetryExhaustedError
from core.logging import get_logger
from core.models import Block, ChainEvent
from core.retry import RetryPolicy
from scanner.cursor import CommitCursor, worker_heights
from scanner.extract import ExtractionStats, extract_block
from store.sqlite import EventStore

logger = get_logger("xdm.scanner")


@dataclass
class ScanOptions:
    """What to scan."""
    chain: str
    start: int
    end: int
    concurrency: int = DEFAULT_BLOCK_CONCURRENCY
    use_segments: bool = False

    def __post_init__(self):
        if self.start < 0 or self.end < 0:
            raise ValueError("heights must be non-negative")
        if self.start > self.end:
            raise ValueError(f"start {self.start} is after end {self.end}")
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")


@dataclass
class ScanResult:
    """Outcome of one scan invocation."""
    chain: str
    requested_start: int
    requested_end: int
    scan_start: int
    resumed_from: Optional[int] = None
    workers: int = 0
    blocks_processed: int = 0
    retries: int = 0
    committed_height: Optional[int] = None
    elapsed_ms: int = 0
    stats: ExtractionStats = field(default_factory=ExtractionStats)

    @property
    def skipped(self) -> bool:
        return self.scan_start > self.requested_end

    def to_dict(self) -> dict:
        return {
            "chain": self.chain,
            "requested_start": self.requested_start,
            "requested_end": self.requested_end,
            "scan_start": self.scan_start,
            "resumed_from": self.resumed_from,
            "skipped": self.skipped,
            "workers": self.workers,
            "blocks_processed": self.blocks_processed,
            "retries": self.retries,
            "committed_height": self.committed_height,
            "elapsed_ms": self.elapsed_ms,
            "events": self.stats.to_dict(),
        }


class BlockScanner:
    """
    Scans one chain's height range into the event store.

    The adapter and retry policy are injected; the scanner owns neither.
    """

    def __init__(
        self,
        adapter: ChainAdapter,
        store: EventStore,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.adapter = adapter
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()

    def resolve_start(self, options: ScanOptions) -> tuple[int, Optional[int]]:
        """(effective start, persisted progress)."""
        progress = self.store.get_scan_progress(options.chain)
        if progress is None:
            return options.start, None
        if progress < options.start - 1:
            logger.warning(
                f"Stored progress #{progress} is below range start #{options.start}; "
                f"heights in between are not covered by this scan",
                extra={"context": {"chain": options.chain}},
            )
            return options.start, progress
        return max(options.start, progress + 1), progress

    async def run(self, options: ScanOptions) -> ScanResult:
        scan_start, progress = self.resolve_start(options)
        result = ScanResult(
            chain=options.chain,
            requested_start=options.start,
            requested_end=options.end,
            scan_start=scan_start,
            resumed_from=progress,
            committed_height=progress,
        )

        if result.skipped:
            logger.info(
                f"Range already captured up to #{progress}; nothing to do",
                extra={"context": {"chain": options.chain, "start": options.start, "end": options.end}},
            )
            return result

        total = options.end - scan_start + 1
        result.workers = min(options.concurrency, total)
        logger.info(
            f"Capture start: heights {scan_start}..{options.end} (total {total})",
            extra={"context": {
                "chain": options.chain,
                "workers": result.workers,
                "resumed_from": progress,
                "use_segments": options.use_segments,
            }},
        )

        cursor = CommitCursor(
            scan_start,
            options.end,
            on_advance=lambda height: self.store.set_scan_progress(options.chain, height),
        )

        started = time.monotonic()
        tasks = [
            asyncio.create_task(self._worker(worker, result.workers, scan_start, options, cursor, result))
            for worker in range(result.workers)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            result.elapsed_ms = int((time.monotonic() - started) * 1000)
            if cursor.committed is not None:
                result.committed_height = cursor.committed

        logger.info(
            "Capture complete",
            extra={"context": {"chain": options.chain, **result.stats.to_dict(), "retries": result.retries}},
        )
        return result

    async def _worker(
        self,
        worker: int,
        workers: int,
        scan_start: int,
        options: ScanOptions,
        cursor: CommitCursor,
        result: ScanResult,
    ) -> None:
        for height in worker_heights(scan_start, options.end, worker, workers):
            block, events = await self._fetch(height, options, result)

            if height % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    f"Processing #{height}",
                    extra={"context": {"chain": options.chain, "worker": worker}},
                )

            stats = await asyncio.to_thread(extract_block, self.store, options.chain, block, events)
            result.stats.merge(stats)
            result.blocks_processed += 1
            cursor.mark_done(height)

    async def _fetch(
        self, height: int, options: ScanOptions, result: ScanResult
    ) -> tuple[Block, list[ChainEvent]]:
        """Fetch a block and its events, retrying transient failures on this height."""
        failures = 0
        while True:
            try:
                block = await self.adapter.block_at(height)
                events = await self.adapter.events_at(block.hash, options.use_segments)
                return block, events
            except ChainAccessError as e:
                failures += 1
                result.retries += 1
                if not self.retry_policy.should_retry(failures):
                    raise RetryExhaustedError(
                        f"Giving up on #{height} after {failures} attempts: {e.message}",
                        details={"chain": options.chain, "height": height},
                    ) from e
                delay_ms = self.retry_policy.delay_ms(failures - 1)
                logger.warning(
                    f"Error at #{height}: {e.message}. retrying in {delay_ms}ms",
                    extra={"context": {
                        "chain": options.chain,
                        "block_height": height,
                        "attempt": failures,
                        "backoff_ms": delay_ms,
                        "code": e.code.value,
                    }},
                )
                await self.retry_policy.wait(failures - 1)
