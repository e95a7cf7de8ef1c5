"""Tests for per-transaction extraction and batch aggregation."""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from kizo_indexer.ingestor.events import EventKind, standardize_address
from kizo_indexer.ingestor.fanout import (
    aggregate_batch,
    aggregate_batch_sync,
    merge_rows,
    rows_for_transaction,
)
from kizo_indexer.ingestor.models import Event, Transaction
from kizo_indexer.storage.repos import BatchRows, MarketDTO


def _comparable(rows: BatchRows) -> dict[str, set[tuple]]:
    """Row values per table, ignoring insertion timestamps and order."""
    out: dict[str, set[tuple]] = {}
    for kind, attr in BatchRows.ATTRS.items():
        values = set()
        for row in rows.for_kind(kind):
            data = row.to_values()
            data.pop("inserted_at")
            values.add(tuple(sorted(data.items())))
        out[attr] = values
    return out


class TestRowsForTransaction:
    """Tests for rows_for_transaction."""

    def test_market_created_row(self, signatures, make_event, sample_payloads) -> None:
        txn = Transaction(
            version=42,
            block_height=7,
            events=(make_event(EventKind.MARKET_CREATED, sample_payloads[EventKind.MARKET_CREATED]),),
        )
        rows = rows_for_transaction(txn, signatures)

        assert rows.total == 1
        market = rows.markets[0]
        assert isinstance(market, MarketDTO)
        assert market.market_id == 1
        assert market.question == "Will it rain tomorrow?"
        assert market.end_time == 1700000000
        assert market.yield_protocol_addr == standardize_address("0xabc")
        assert market.transaction_version == 42
        assert market.transaction_block_height == 7
        assert market.resolved is False
        assert market.outcome is None
        assert market.total_yield_earned == 0
        assert market.resolution_transaction_version is None

    def test_one_row_per_kind(self, signatures, all_kinds_transaction) -> None:
        rows = rows_for_transaction(all_kinds_transaction, signatures)
        assert rows.counts() == {attr: 1 for attr in BatchRows.ATTRS.values()}

        bet = rows.bets[0]
        assert bet.user_addr == standardize_address("0xbeef")
        assert bet.claimed is False
        assert bet.winning_amount == 0
        assert bet.yield_share == 0
        assert bet.claim_transaction_version is None

        assert rows.market_resolutions[0].outcome is True
        assert rows.winnings_claims[0].event_index == 3
        assert rows.yield_deposits[0].event_index == 4
        assert rows.protocol_fees[0].fee_amount == 25

    def test_unrecognized_events_skipped(self, signatures) -> None:
        txn = Transaction(
            version=1,
            block_height=1,
            events=(
                Event("0x1::coin::DepositEvent", '{"amount":"1"}'),
                Event(f"{signatures.contract_address}::kizo_prediction_market::OtherEvent", "{}"),
            ),
        )
        assert rows_for_transaction(txn, signatures).is_empty

    def test_malformed_payload_logged_and_skipped(
        self, signatures, make_event, sample_payloads, caplog
    ) -> None:
        bad = Event(signatures.signature(EventKind.BET_PLACED), json.dumps({"bet_id": "x"}))
        good = make_event(EventKind.PROTOCOL_FEE_COLLECTED, sample_payloads[EventKind.PROTOCOL_FEE_COLLECTED])
        txn = Transaction(version=9, block_height=2, events=(bad, good))

        with caplog.at_level(logging.ERROR):
            rows = rows_for_transaction(txn, signatures)

        assert rows.bets == []
        assert len(rows.protocol_fees) == 1
        assert "Failed to parse BetPlacedEvent at version 9" in caplog.text

    def test_missing_events_warns(self, signatures, caplog) -> None:
        txn = Transaction(version=77, block_height=3, events=None)
        with caplog.at_level(logging.WARNING):
            rows = rows_for_transaction(txn, signatures)
        assert rows.is_empty
        assert "transaction_version=77" in caplog.text

    def test_empty_events(self, signatures) -> None:
        assert rows_for_transaction(Transaction(1, 1, ()), signatures).is_empty


class TestAggregateBatch:
    """Tests for batch aggregation."""

    def _transactions(self, make_event, sample_payloads) -> list[Transaction]:
        txns = []
        for i, (kind, payload) in enumerate(sample_payloads.items()):
            txns.append(Transaction(version=100 + i, block_height=10, events=(make_event(kind, payload),)))
        return txns

    def test_merge_rows(self, signatures, all_kinds_transaction) -> None:
        part = rows_for_transaction(all_kinds_transaction, signatures)
        merged = merge_rows([part, part])
        assert merged.total == 12
        assert merge_rows([]).is_empty

    @pytest.mark.asyncio
    async def test_matches_sequential(self, signatures, make_event, sample_payloads) -> None:
        txns = self._transactions(make_event, sample_payloads)
        with ThreadPoolExecutor(max_workers=3) as executor:
            parallel = await aggregate_batch(txns, signatures, executor=executor)
        assert _comparable(parallel) == _comparable(aggregate_batch_sync(txns, signatures))
        assert parallel.total == 6

    @pytest.mark.asyncio
    async def test_independent_of_transaction_order(self, signatures, make_event, sample_payloads) -> None:
        txns = self._transactions(make_event, sample_payloads)
        forward = await aggregate_batch(txns, signatures)
        backward = await aggregate_batch(list(reversed(txns)), signatures)
        assert _comparable(forward) == _comparable(backward)

    @pytest.mark.asyncio
    async def test_empty_batch(self, signatures) -> None:
        assert (await aggregate_batch([], signatures)).is_empty

    @pytest.mark.asyncio
    async def test_unrecognized_only_batch(self, signatures) -> None:
        txns = [Transaction(1, 1, (Event("0x1::coin::DepositEvent", "{}"),)), Transaction(2, 1, None)]
        assert (await aggregate_batch(txns, signatures)).is_empty
