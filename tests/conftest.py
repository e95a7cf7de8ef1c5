"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from kizo_indexer.config import DEFAULT_CONTRACT_ADDRESS, DEFAULT_MODULE_NAME
from kizo_indexer.ingestor.events import EventKind, EventSignatures
from kizo_indexer.ingestor.models import Event, Transaction
from kizo_indexer.storage.database import create_async_db_engine
from kizo_indexer.storage.models import Base


@pytest.fixture
def signatures() -> EventSignatures:
    """Signature table for the default Kizo deployment."""
    return EventSignatures.for_contract(DEFAULT_CONTRACT_ADDRESS, DEFAULT_MODULE_NAME)


@pytest.fixture
def sample_payloads() -> dict[EventKind, dict[str, Any]]:
    """One well-formed payload per event kind, u64s wrapped in strings."""
    return {
        EventKind.MARKET_CREATED: {
            "market_id": "1",
            "question": "Will it rain tomorrow?",
            "end_time": "1700000000",
            "yield_protocol_addr": "0xabc",
        },
        EventKind.BET_PLACED: {
            "bet_id": "10",
            "market_id": "1",
            "user": "0xBEEF",
            "position": True,
            "amount": "5000",
        },
        EventKind.MARKET_RESOLVED: {
            "market_id": "1",
            "outcome": True,
            "total_yield_earned": "250",
        },
        EventKind.WINNINGS_CLAIMED: {
            "bet_id": "10",
            "user": "0xbeef",
            "winning_amount": "9000",
            "yield_share": "40",
        },
        EventKind.YIELD_DEPOSITED: {
            "market_id": "1",
            "amount": "700",
            "protocol_addr": "0xabc",
        },
        EventKind.PROTOCOL_FEE_COLLECTED: {
            "market_id": "1",
            "fee_amount": "25",
        },
    }


@pytest.fixture
def make_event(signatures: EventSignatures):
    """Build a contract Event for a kind and payload."""

    def _make(kind: EventKind, payload: dict[str, Any]) -> Event:
        return Event(type_str=signatures.signature(kind), data=json.dumps(payload))

    return _make


@pytest.fixture
def all_kinds_transaction(make_event, sample_payloads) -> Transaction:
    """Transaction at version 42, block 7, emitting one event of each kind."""
    return Transaction(
        version=42,
        block_height=7,
        events=tuple(make_event(kind, payload) for kind, payload in sample_payloads.items()),
    )


@pytest.fixture
async def async_engine(tmp_path):
    """Create an async SQLite engine backed by a temporary file, foreign keys enforced."""
    engine = create_async_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'kizo.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(bind=async_engine, expire_on_commit=False)
