"""
Orchestrator - Scan loop for one S3 feed.

Each cycle:
- Gate: skip the cycle if the feed is STOPPED
- List: full listing of the prefix, scan time captured first
- Diff: objects modified after the last watermark
- Write: fetch + extract + queue changed, indexable objects
- Reconcile: queue deletes for indexed ids no longer listed
- Flush: submit what is left in the batch
- Persist: store the scan time as the new watermark

Then sleep for the update rate (interruptible) and repeat until stopped.
"""

import asyncio
import json
import logging
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Set

from .batch import BatchAccumulator
from .changes import partition
from .config import get_config, FeedConfig, set_config
from .connector import ObjectStore, S3Connector
from .errors import FeedError, StateError, handle_error
from .extractor import ContentExtractor, Extractor
from .filters import is_indexable
from .indexer import FeedStateStore, SearchIndex, get_indexer
from .models import BatchOperation, CycleOutcome, CycleReport, FeedStatus
from .reconciler import reconcile_deletions
from .scanner import Scanner, current_millis
from .writer import DocumentWriter


logger = logging.getLogger(__name__)


class LoopState(Enum):
    """Where the scan loop currently is."""
    INITIALIZED = "initialized"
    GATED = "gated"
    LISTING = "listing"
    DIFFING = "diffing"
    WRITING = "writing"
    RECONCILING = "reconciling"
    FLUSHING = "flushing"
    WATERMARK_PERSIST = "watermark_persist"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class FeedRunner:
    """
    Runs scan cycles for one feed, one at a time, on a dedicated worker.

    The store, index and feed state are injected so the loop itself
    holds no global state; by default they are the S3 connector and a
    SQLite index that also stores the feed state.
    """

    def __init__(
        self,
        config: Optional[FeedConfig] = None,
        store: Optional[ObjectStore] = None,
        index: Optional[SearchIndex] = None,
        state_store: Optional[FeedStateStore] = None,
        extractor: Optional[ContentExtractor] = None,
        clock: Callable[[], int] = current_millis,
    ):
        self.config = config or get_config()
        if config:
            set_config(config)

        self._store = store or S3Connector(self.config)
        self._index = index or get_indexer(self.config)
        self._state_store = state_store or self._index
        if extractor is None and not self.config.raw:
            extractor = Extractor()
        self._extractor = extractor
        self._scanner = Scanner(self._store, clock)

        self.state = LoopState.INITIALIZED
        self.last_report: Optional[CycleReport] = None
        self.cycles_run = 0

        self._stop_requested = threading.Event()
        self._wake: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def feed_id(self) -> str:
        return self.config.feed_name

    def setup(self) -> None:
        """
        Connect to the bucket and make sure the target index exists.

        Raises:
            StoreConnectionError: bad credentials or bucket
            IndexSetupError: index or mapping cannot be created
        """
        self.config.validate_for_run()
        self._store.connect()
        self._index.ensure_index(self.config.index_name, self.config.type_name)

    # ═══════════════════════════════════════════════════════════════════
    # ONE CYCLE
    # ═══════════════════════════════════════════════════════════════════

    def run_cycle(self) -> CycleReport:
        """
        Run one full cycle. Never raises: failures end up in the report.

        The watermark is persisted only when the cycle reaches the end,
        even if some objects or bulk operations failed on the way.
        """
        report = CycleReport()
        start_time = time.monotonic()
        feed = self.feed_id

        try:
            self.state = LoopState.GATED
            if not self._is_started():
                logger.info(f"Amazon S3 feed is disabled for {feed}")
                report.outcome = CycleOutcome.DISABLED
                return report

            watermark = self._read_watermark()
            logger.debug(f"Starting scanning of bucket {self.config.bucket} since {watermark}")

            self.state = LoopState.LISTING
            listing = self._scanner.list(self.config.bucket, self.config.path_prefix)
            report.objects_listed = len(listing.summaries)

            self.state = LoopState.DIFFING
            changes = partition(listing, watermark)
            report.objects_changed = len(changes.changed)

            # Read before writing so this cycle's own writes are not included
            indexed_ids = self._read_indexed_ids()

            batch = BatchAccumulator(
                self._index,
                self.config.index_name,
                self.config.type_name,
                threshold=self.config.bulk_size,
            )
            writer = DocumentWriter(self.config, self._store, batch, self._extractor)

            self.state = LoopState.WRITING
            for summary in changes.changed:
                if not is_indexable(summary.key, self.config.includes, self.config.excludes):
                    logger.debug(f"Skipping {summary.key}: not indexable")
                    report.objects_filtered += 1
                    continue
                result = writer.write(summary)
                if result.ok:
                    report.documents_written += 1
                else:
                    report.skipped.append(result)

            self.state = LoopState.RECONCILING
            for doc_id in reconcile_deletions(changes.all_keys, indexed_ids):
                logger.debug(f"Deleting {doc_id}: source object is gone")
                batch.add(BatchOperation.delete(doc_id))
                report.documents_deleted += 1

            self.state = LoopState.FLUSHING
            batch.flush_remainder()
            report.flushes = batch.flushes
            report.failed_operations = len(batch.failures)

            self.state = LoopState.WATERMARK_PERSIST
            self._persist_watermark(watermark, listing.captured_at)
            report.watermark = listing.captured_at

        except Exception as e:
            handle_error(e, self.config.bucket, f"cycle {feed}")
            report.outcome = CycleOutcome.FAILED
            report.error = str(e)

        finally:
            self.cycles_run += 1
            report.duration_seconds = time.monotonic() - start_time
            self.last_report = report

        logger.info(f"Feed {feed}: {report}")
        return report

    def _is_started(self) -> bool:
        """Read the feed flag; record STARTED on first observation."""
        feed = self.feed_id
        try:
            status = self._state_store.get_feed_status(feed)
        except Exception as e:
            logger.warning(f"Failed to get status for {feed}, assuming started: {e}")
            return True

        if status is FeedStatus.UNKNOWN:
            try:
                self._state_store.set_feed_status(feed, FeedStatus.STARTED)
            except Exception as e:
                logger.warning(f"Failed to record STARTED status for {feed}: {e}")
            return True

        return status is not FeedStatus.STOPPED

    def _read_watermark(self) -> Optional[int]:
        try:
            watermark = self._state_store.get_watermark(self.feed_id)
        except Exception as e:
            raise StateError(f"Cannot read lastScanTime of {self.feed_id}: {e}") from e
        if watermark is None:
            logger.debug("lastScanTime doesn't exist, indexing everything")
        return watermark

    def _read_indexed_ids(self) -> Set[str]:
        limit = self.config.indexed_ids_limit
        ids = self._index.get_document_ids(self.config.index_name, self.config.type_name, limit)
        if len(ids) >= limit:
            logger.warning(
                f"Index [{self.config.index_name}/{self.config.type_name}] returned "
                f"{len(ids)} ids (limit {limit}); deletions beyond the limit are missed"
            )
        return ids

    def _persist_watermark(self, previous: Optional[int], captured_at: int) -> None:
        if previous is not None and captured_at < previous:
            logger.warning(
                f"Scan time {captured_at} is older than stored lastScanTime {previous}; "
                f"local clock moved backwards"
            )
        self._state_store.set_watermark(self.feed_id, captured_at)

    # ═══════════════════════════════════════════════════════════════════
    # LOOP
    # ═══════════════════════════════════════════════════════════════════

    async def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Run cycles until stop() is called (or max_cycles have run).

        Cycles execute on a single worker thread, so two cycles never
        overlap. The sleep between cycles ends as soon as stop() is called.
        """
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        if self._stop_requested.is_set():
            self._wake.set()

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="s3feed")
        logger.info(f"Starting amazon s3 feed scanning for {self.feed_id}")

        try:
            cycles = 0
            while not self._stop_requested.is_set():
                await self._loop.run_in_executor(executor, self.run_cycle)
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                if self._stop_requested.is_set():
                    break

                self.state = LoopState.SLEEPING
                logger.debug(f"Amazon S3 feed is going to sleep for {self.config.update_rate_ms} ms")
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.config.update_rate_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.state = LoopState.STOPPED
            await self._loop.run_in_executor(None, executor.shutdown)
            logger.info(f"Amazon S3 feed {self.feed_id} stopped")

    def stop(self) -> None:
        """Stop the loop. Safe to call from any thread."""
        self._stop_requested.set()
        if self._loop is not None and self._wake is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wake.set)

    @property
    def stopped(self) -> bool:
        return self.state is LoopState.STOPPED

    def close(self):
        """Stop the loop and release the index."""
        self.stop()
        close = getattr(self._index, "close", None)
        if close is not None:
            close()


def run_once(config: Optional[FeedConfig] = None) -> CycleReport:
    """
    Convenience function to connect and run a single cycle.

    Usage:
        report = run_once(FeedConfig(bucket="my-bucket"))
        print(report)
    """
    runner = FeedRunner(config)
    try:
        runner.setup()
        return runner.run_cycle()
    finally:
        runner.close()


def load_config(settings_path: Optional[str], db_path: Optional[str]) -> FeedConfig:
    """Build the feed config from a JSON settings file or the environment."""
    if settings_path:
        settings = json.loads(Path(settings_path).read_text(encoding="utf-8"))
        return FeedConfig.from_settings(settings, db_path=Path(db_path) if db_path else None)
    config = FeedConfig.from_env()
    if db_path:
        config.db_path = Path(db_path).expanduser().resolve()
    return config


def _format_millis(value: Optional[int]) -> str:
    if value is None:
        return "never"
    stamp = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return f"{value} ({stamp.isoformat()})"


def main(argv=None):
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Incremental S3 bucket to index sync")
    parser.add_argument("--settings", help="JSON settings file (amazon-s3 / index sections)")
    parser.add_argument("--db", help="Path to the SQLite index")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    sub = parser.add_subparsers(dest="command", required=True)
    run_parser = sub.add_parser("run", help="Run the scan loop")
    run_parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    sub.add_parser("start", help="Enable the feed")
    sub.add_parser("stop", help="Disable the feed")
    sub.add_parser("status", help="Show feed status and last scan time")

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    try:
        config = load_config(args.settings, args.db)
    except (FeedError, OSError, ValueError) as e:
        logger.error(f"Invalid settings: {e}")
        return 2

    if args.command in {"start", "stop", "status"}:
        index = get_indexer(config)
        try:
            if args.command == "start":
                index.set_feed_status(config.feed_name, FeedStatus.STARTED)
            elif args.command == "stop":
                index.set_feed_status(config.feed_name, FeedStatus.STOPPED)
            status = index.get_feed_status(config.feed_name)
            watermark = index.get_watermark(config.feed_name)
            print(f"{config.feed_name}: {status.value}, last scan {_format_millis(watermark)}")
        finally:
            index.close()
        return 0

    runner = FeedRunner(config)
    try:
        runner.setup()
    except FeedError as e:
        logger.error(f"Cannot start feed {config.feed_name}: {e}")
        runner.close()
        return 1

    if args.once:
        try:
            report = runner.run_cycle()
            print(f"\n{report}")
        finally:
            runner.close()
        return 0 if report.outcome is not CycleOutcome.FAILED else 1

    async def _main():
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, runner.stop)
            except (NotImplementedError, RuntimeError):
                pass
        await runner.run()

    try:
        print("Scanning bucket (Ctrl+C to stop)...")
        asyncio.run(_main())
    except KeyboardInterrupt:
        print("\nStopped.")
    finally:
        runner.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
