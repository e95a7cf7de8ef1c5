"""Data ingestion layer - Transactions and Kizo contract events."""

from kizo_indexer.ingestor.events import (
    BetPlacedEvent,
    EventKind,
    EventSignatures,
    MarketCreatedEvent,
    MarketResolvedEvent,
    ProtocolFeeCollectedEvent,
    WinningsClaimedEvent,
    YieldDepositedEvent,
    decode_event,
    standardize_address,
)
from kizo_indexer.ingestor.models import Event, Transaction, TransactionBatch

__all__ = [
    "BetPlacedEvent",
    "Event",
    "EventKind",
    "EventSignatures",
    "MarketCreatedEvent",
    "MarketResolvedEvent",
    "ProtocolFeeCollectedEvent",
    "Transaction",
    "TransactionBatch",
    "WinningsClaimedEvent",
    "YieldDepositedEvent",
    "decode_event",
    "standardize_address",
]
