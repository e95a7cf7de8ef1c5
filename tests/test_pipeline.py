"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from kizo_indexer.alerter.backend_sync import BackendSyncNotifier
from kizo_indexer.config import BackendSyncSettings, DatabaseSettings, Settings
from kizo_indexer.ingestor.events import EventKind
from kizo_indexer.ingestor.models import Event, Transaction, TransactionBatch
from kizo_indexer.pipeline import Pipeline, PipelineState
from kizo_indexer.storage.database import DatabaseManager, DatabaseUnavailableError, create_async_db_engine
from kizo_indexer.storage.models import BetModel, MarketModel, MarketResolutionModel


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}"


@pytest.fixture
def settings(db_url) -> Settings:
    """Real settings pointing at a temporary SQLite file, sync disabled."""
    return Settings(
        database=DatabaseSettings(DATABASE_URL=db_url),
        backend_sync=BackendSyncSettings(BACKEND_SYNC_ENABLED=False),
    )


@pytest.fixture
async def db_manager(db_url):
    db = DatabaseManager(db_url)
    await db.init_schema_async()
    yield db
    await db.dispose_async()


@pytest.fixture
def sync_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def notifier(sync_requests) -> BackendSyncNotifier:
    def handler(request: httpx.Request) -> httpx.Response:
        sync_requests.append(request)
        return httpx.Response(200)

    return BackendSyncNotifier("http://backend.test/sync", transport=httpx.MockTransport(handler))


class TestPipelineLifecycle:
    """Tests for pipeline lifecycle management."""

    def test_initial_state(self, settings) -> None:
        pipeline = Pipeline(settings)
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running
        assert pipeline.stats.batches_processed == 0

    def test_signatures_from_settings(self, settings) -> None:
        pipeline = Pipeline(settings)
        assert pipeline.signatures.module_name == "kizo_prediction_market"
        assert pipeline.signatures.signature(EventKind.BET_PLACED).startswith(settings.contract.address)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, settings, db_manager) -> None:
        pipeline = Pipeline(settings, db_manager=db_manager)
        await pipeline.start()
        assert pipeline.is_running
        assert pipeline.stats.started_at is not None

        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED

    @pytest.mark.asyncio
    async def test_start_twice_fails(self, settings, db_manager) -> None:
        pipeline = Pipeline(settings, db_manager=db_manager)
        await pipeline.start()
        try:
            with pytest.raises(RuntimeError, match="Cannot start"):
                await pipeline.start()
        finally:
            await pipeline.stop()

    @pytest.mark.asyncio
    async def test_start_fails_without_database(self, settings) -> None:
        db = DatabaseManager("sqlite+aiosqlite:///:memory:")
        with patch.object(
            db, "check_connection", AsyncMock(side_effect=DatabaseUnavailableError("Cannot connect"))
        ):
            pipeline = Pipeline(settings, db_manager=db)
            with pytest.raises(DatabaseUnavailableError):
                await pipeline.start()
        assert pipeline.state == PipelineState.ERROR
        assert pipeline.stats.last_error == "Cannot connect"

    @pytest.mark.asyncio
    async def test_process_batch_requires_running(self, settings) -> None:
        with pytest.raises(RuntimeError, match="Cannot process batch"):
            await Pipeline(settings).process_batch([])

    @pytest.mark.asyncio
    async def test_context_manager(self, settings, db_manager) -> None:
        async with Pipeline(settings, db_manager=db_manager) as pipeline:
            assert pipeline.is_running
        assert pipeline.state == PipelineState.STOPPED


class TestProcessBatch:
    """Tests for batch processing."""

    @pytest.mark.asyncio
    async def test_stores_rows_and_notifies(
        self, settings, db_manager, notifier, sync_requests, all_kinds_transaction
    ) -> None:
        async with Pipeline(settings, db_manager=db_manager, notifier=notifier) as pipeline:
            result = await pipeline.process_batch(TransactionBatch((all_kinds_transaction,)))

        assert result.ok
        assert result.start_version == result.end_version == 42
        assert result.rows.total == 6
        assert result.writes.total_written == 6
        assert result.notified
        assert len(sync_requests) == 1

        async with db_manager.get_async_session() as session:
            market = await session.get(MarketModel, 1)
        assert market is not None
        assert market.transaction_version == 42
        assert market.transaction_block_height == 7

    @pytest.mark.asyncio
    async def test_unrecognized_only_batch_does_not_notify(
        self, settings, db_manager, notifier, sync_requests
    ) -> None:
        txns = [
            Transaction(1, 1, (Event("0x1::coin::DepositEvent", '{"amount":"5"}'),)),
            Transaction(2, 1, None),
        ]
        async with Pipeline(settings, db_manager=db_manager, notifier=notifier) as pipeline:
            result = await pipeline.process_batch(txns)

        assert result.rows.is_empty
        assert not result.notified
        assert sync_requests == []
        assert pipeline.stats.batches_processed == 1
        assert pipeline.stats.last_version == 2

    @pytest.mark.asyncio
    async def test_redelivered_batch_counts_only_upserts(
        self, settings, db_manager, notifier, sync_requests, all_kinds_transaction
    ) -> None:
        async with Pipeline(settings, db_manager=db_manager, notifier=notifier) as pipeline:
            await pipeline.process_batch([all_kinds_transaction])
            again = await pipeline.process_batch([all_kinds_transaction])

        # Only the resolution upsert rewrites its row.
        assert again.writes.total_written == 1
        assert again.notified
        assert len(sync_requests) == 2

    @pytest.mark.asyncio
    async def test_later_resolution_wins(
        self, settings, db_manager, make_event, sample_payloads
    ) -> None:
        def resolved(version: int, outcome: bool, yield_earned: int) -> Transaction:
            payload = {"market_id": "1", "outcome": outcome, "total_yield_earned": str(yield_earned)}
            return Transaction(version, version // 10, (make_event(EventKind.MARKET_RESOLVED, payload),))

        created = Transaction(
            40, 4, (make_event(EventKind.MARKET_CREATED, sample_payloads[EventKind.MARKET_CREATED]),)
        )
        async with Pipeline(settings, db_manager=db_manager) as pipeline:
            await pipeline.process_batch([created, resolved(50, True, 100)])
            await pipeline.process_batch([resolved(60, False, 250)])

        async with db_manager.get_async_session() as session:
            row = await session.get(MarketResolutionModel, 1)
            count = (await session.execute(select(func.count()).select_from(MarketResolutionModel))).scalar_one()
        assert count == 1
        assert row.outcome is False
        assert row.total_yield_earned == 250
        assert row.transaction_version == 60

    @pytest.mark.asyncio
    async def test_write_failure_is_reported_not_raised(
        self, settings, db_manager, all_kinds_transaction
    ) -> None:
        async with Pipeline(settings, db_manager=db_manager) as pipeline:
            repo = pipeline._repository
            original = repo._write_chunk

            async def failing_fees(kind, rows):
                if kind is EventKind.PROTOCOL_FEE_COLLECTED:
                    raise RuntimeError("fees unavailable")
                return await original(kind, rows)

            with patch.object(repo, "_write_chunk", failing_fees):
                result = await pipeline.process_batch([all_kinds_transaction])

        assert not result.ok
        assert result.writes.total_written == 5
        assert pipeline.stats.write_failures == 1
        assert pipeline.stats.last_error == "fees unavailable"
        assert pipeline.stats.last_version == 42

    @pytest.mark.asyncio
    async def test_market_and_bet_in_same_batch(
        self, settings, db_manager, make_event, sample_payloads
    ) -> None:
        txn = Transaction(
            42,
            7,
            (
                make_event(EventKind.BET_PLACED, sample_payloads[EventKind.BET_PLACED]),
                make_event(EventKind.MARKET_CREATED, sample_payloads[EventKind.MARKET_CREATED]),
            ),
        )
        async with Pipeline(settings, db_manager=db_manager) as pipeline:
            result = await pipeline.process_batch([txn])

        assert result.ok
        assert result.writes.total_written == 2
        async with db_manager.get_async_session() as session:
            bet = await session.get(BetModel, 10)
        assert bet is not None
        assert bet.market_id == 1

    @pytest.mark.asyncio
    async def test_unreachable_database_raises(
        self, settings, db_manager, tmp_path, all_kinds_transaction
    ) -> None:
        unreachable = create_async_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'gone' / 'kizo.db'}")
        try:
            async with Pipeline(settings, db_manager=db_manager) as pipeline:
                pipeline._repository._session_factory = async_sessionmaker(bind=unreachable)
                with pytest.raises(DatabaseUnavailableError):
                    await pipeline.process_batch([all_kinds_transaction])

            assert pipeline.stats.batches_processed == 0
            assert pipeline.stats.last_version is None
            assert pipeline.stats.last_error.startswith("Cannot connect to database")
        finally:
            await unreachable.dispose()

    @pytest.mark.asyncio
    async def test_empty_batch(self, settings, db_manager) -> None:
        async with Pipeline(settings, db_manager=db_manager) as pipeline:
            result = await pipeline.process_batch([])
        assert result.transactions == 0
        assert result.start_version is None


class TestRun:
    """Tests for Pipeline.run."""

    @pytest.mark.asyncio
    async def test_run_consumes_source(self, settings, db_manager, make_event, sample_payloads) -> None:
        async def source():
            for i, (kind, payload) in enumerate(sample_payloads.items()):
                yield TransactionBatch((Transaction(100 + i, 10, (make_event(kind, payload),)),))

        pipeline = Pipeline(settings, db_manager=db_manager)
        stats = await pipeline.run(source())

        assert pipeline.state == PipelineState.STOPPED
        assert stats.batches_processed == 6
        assert stats.transactions_processed == 6
        assert stats.rows_extracted == 6
        assert stats.rows_written == 6
        assert stats.last_version == 105
        assert stats.notifications_sent == 0
