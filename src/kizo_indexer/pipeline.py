"""Main pipeline orchestrator for the Kizo indexer.

This module provides the Pipeline class that wires together event
extraction, persistence, and the backend sync hook, and processes
transaction batches one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from kizo_indexer.alerter.backend_sync import BackendSyncNotifier
from kizo_indexer.config import Settings, get_settings
from kizo_indexer.ingestor.events import EventSignatures
from kizo_indexer.ingestor.fanout import aggregate_batch
from kizo_indexer.ingestor.models import Transaction, TransactionBatch
from kizo_indexer.storage.database import DatabaseManager, DatabaseUnavailableError
from kizo_indexer.storage.repos import BatchRows, BatchWriteResult, EventRowRepository

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    batches_processed: int = 0
    transactions_processed: int = 0
    rows_extracted: int = 0
    rows_written: int = 0
    write_failures: int = 0
    notifications_sent: int = 0
    last_version: int | None = None
    last_error: str | None = None


@dataclass
class BatchResult:
    """Outcome of processing one transaction batch."""

    start_version: int | None
    end_version: int | None
    transactions: int
    rows: BatchRows = field(default_factory=BatchRows)
    writes: BatchWriteResult = field(default_factory=BatchWriteResult)
    notified: bool = False

    @property
    def ok(self) -> bool:
        return self.writes.ok


class Pipeline:
    """Batch pipeline for the Kizo prediction market contract.

    Pipeline flow:
        Transaction batch → Event fan-out (parallel per transaction)
        → Per-kind chunked writes → Backend sync notification

    Example:
        ```python
        from kizo_indexer.config import get_settings
        from kizo_indexer.pipeline import Pipeline

        async with Pipeline(get_settings()) as pipeline:
            result = await pipeline.process_batch(transactions)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db_manager: DatabaseManager | None = None,
        notifier: BackendSyncNotifier | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            db_manager: Database manager to use instead of one built from settings.
            notifier: Sync notifier to use instead of one built from settings.
        """
        self._settings = settings or get_settings()

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._signatures = EventSignatures.for_contract(
            self._settings.contract.address,
            self._settings.contract.module_name,
        )

        # Components (initialized in start())
        self._db_manager = db_manager
        self._owns_db_manager = db_manager is None
        self._notifier = notifier
        self._repository: EventRowRepository | None = None
        self._executor: ThreadPoolExecutor | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def signatures(self) -> EventSignatures:
        return self._signatures

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            DatabaseUnavailableError: If no database connection can be obtained.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")
        await self._cleanup()
        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        db = self._settings.database
        if self._db_manager is None:
            self._db_manager = DatabaseManager(
                db.url,
                pool_size=db.pool_size,
                max_overflow=db.max_overflow,
                echo=db.echo,
            )
            self._owns_db_manager = True
        await self._db_manager.check_connection()

        self._repository = EventRowRepository(
            self._db_manager.session_factory,
            max_params=self._settings.processor.max_db_params,
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self._settings.processor.max_workers,
            thread_name_prefix="kizo-fanout",
        )

        if self._notifier is None:
            sync = self._settings.backend_sync
            self._notifier = BackendSyncNotifier(
                sync.url,
                timeout=sync.timeout_seconds,
                enabled=sync.enabled,
            )

        logger.info(
            "Indexing %s::%s (max_db_params=%d, workers=%d)",
            self._signatures.contract_address,
            self._signatures.module_name,
            self._repository.max_params,
            self._settings.processor.max_workers,
        )

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._notifier:
            await self._notifier.aclose()

        if self._executor:
            self._executor.shutdown(wait=True)
            self._executor = None

        self._repository = None

        if self._db_manager and self._owns_db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        logger.debug("Resources cleaned up")

    async def process_batch(self, transactions: Sequence[Transaction] | TransactionBatch) -> BatchResult:
        """Extract, store, and announce the rows of one transaction batch.

        Per-kind write failures are logged and reported in the result; they
        never abort the batch.

        Raises:
            RuntimeError: If the pipeline is not running.
            DatabaseUnavailableError: If no database connection can be
                obtained. The batch is not acknowledged in the stats.
        """
        if not self.is_running or self._repository is None:
            raise RuntimeError(f"Cannot process batch in state {self._state}")

        if isinstance(transactions, TransactionBatch):
            transactions = transactions.transactions

        result = BatchResult(
            start_version=transactions[0].version if transactions else None,
            end_version=transactions[-1].version if transactions else None,
            transactions=len(transactions),
        )
        if not transactions:
            return result

        result.rows = await aggregate_batch(transactions, self._signatures, executor=self._executor)
        if not result.rows.is_empty:
            try:
                result.writes = await self._repository.write_all(result.rows)
            except DatabaseUnavailableError as e:
                self._stats.last_error = str(e)
                logger.error(
                    "Database unavailable, transactions version [%d, %d] not stored: %s",
                    result.start_version,
                    result.end_version,
                    e,
                )
                raise

        logger.info(
            "Processed transactions version [%d, %d]",
            result.start_version,
            result.end_version,
        )

        total_new_items = result.writes.total_written
        if self._notifier is not None and self._notifier.notify(total_new_items) is not None:
            result.notified = True

        self._record(result)
        return result

    def _record(self, result: BatchResult) -> None:
        self._stats.batches_processed += 1
        self._stats.transactions_processed += result.transactions
        self._stats.rows_extracted += result.rows.total
        self._stats.rows_written += result.writes.total_written
        self._stats.last_version = result.end_version
        if result.notified:
            self._stats.notifications_sent += 1
        for failure in result.writes.failures:
            self._stats.write_failures += 1
            self._stats.last_error = failure.error

    async def run(self, source: AsyncIterable[TransactionBatch | Sequence[Transaction]]) -> PipelineStats:
        """Start the pipeline and process every batch from ``source`` in order.

        Each batch completes before the next one is read.
        """
        await self.start()
        try:
            async for batch in source:
                await self.process_batch(batch)
        except asyncio.CancelledError:
            logger.info("Pipeline run cancelled")
            raise
        finally:
            await self.stop()
        return self._stats

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
