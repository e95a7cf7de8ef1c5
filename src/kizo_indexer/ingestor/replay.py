"""Replay source: transaction batches read from a JSON-lines file.

Each line holds one decoded transaction::

    {"version": 42, "block_height": 7, "events": [
        {"type_str": "0x...::kizo_prediction_market::MarketCreatedEvent",
         "data": "{\\"market_id\\": \\"1\\", ...}"}]}

Consecutive transactions are grouped into batches of ``batch_size``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable, Iterator
from pathlib import Path

from kizo_indexer.ingestor.models import Transaction, TransactionBatch

logger = logging.getLogger(__name__)


def parse_transactions(lines: Iterable[str]) -> Iterator[Transaction]:
    """Parse JSON lines into transactions, skipping malformed lines."""
    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            yield Transaction.from_dict(json.loads(line))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Skipping malformed transaction on line %d: %s", line_no, e)


def batched(transactions: Iterable[Transaction], batch_size: int) -> Iterator[TransactionBatch]:
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    batch: list[Transaction] = []
    for txn in transactions:
        batch.append(txn)
        if len(batch) >= batch_size:
            yield TransactionBatch(tuple(batch))
            batch = []
    if batch:
        yield TransactionBatch(tuple(batch))


async def read_batches(path: Path, *, batch_size: int) -> AsyncIterator[TransactionBatch]:
    """Yield transaction batches from a JSON-lines file, in file order."""
    with path.open(encoding="utf-8") as f:
        for batch in batched(parse_transactions(f), batch_size):
            yield batch
