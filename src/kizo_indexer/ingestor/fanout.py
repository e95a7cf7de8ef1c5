"""Per-transaction event extraction and per-batch aggregation.

Each transaction is processed independently into its own BatchRows; the
partial results are merged only after every transaction of the batch has
been processed.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Sequence
from concurrent.futures import Executor

from kizo_indexer.ingestor.events import EventSignatures, decode_event
from kizo_indexer.ingestor.models import Transaction
from kizo_indexer.storage.repos import DTO_TYPES, BatchRows

logger = logging.getLogger(__name__)


def rows_for_transaction(transaction: Transaction, signatures: EventSignatures) -> BatchRows:
    """Decode the contract events of one transaction into rows.

    Events whose type is not one of the contract's six signatures are
    skipped. A recognized event whose payload fails to decode is logged and
    skipped.
    """
    rows = BatchRows()
    if transaction.events is None:
        logger.warning("Transaction data doesn't exist: transaction_version=%d", transaction.version)
        return rows

    for event_index, event in enumerate(transaction.events):
        kind = signatures.kind_for(event.type_str)
        if kind is None:
            if signatures.is_contract_event(event.type_str):
                logger.debug(
                    "Skipping unindexed contract event at version %d: %s",
                    transaction.version,
                    event.type_str,
                )
            continue

        decoded = decode_event(kind, event.data)
        if decoded is None:
            logger.error(
                "Failed to parse %s at version %d: %s",
                kind.value,
                transaction.version,
                event.data,
            )
            continue

        rows.for_kind(kind).append(
            DTO_TYPES[kind].from_event(
                decoded,  # type: ignore[arg-type]
                transaction.version,
                transaction.block_height,
                event_index=event_index,
            )
        )
    return rows


def merge_rows(partials: Sequence[BatchRows]) -> BatchRows:
    merged = BatchRows()
    for partial in partials:
        merged.extend(partial)
    return merged


def aggregate_batch_sync(transactions: Sequence[Transaction], signatures: EventSignatures) -> BatchRows:
    """Extract and merge rows for a batch on the calling thread."""
    return merge_rows([rows_for_transaction(txn, signatures) for txn in transactions])


async def aggregate_batch(
    transactions: Sequence[Transaction],
    signatures: EventSignatures,
    *,
    executor: Executor | None = None,
) -> BatchRows:
    """Extract rows for every transaction of a batch in parallel, then merge.

    Args:
        transactions: The batch, in delivery order.
        signatures: Event signature table of the indexed contract.
        executor: Worker pool for per-transaction extraction. The event
            loop's default executor is used when None.

    Returns:
        Rows of the whole batch, grouped by kind.
    """
    if not transactions:
        return BatchRows()

    loop = asyncio.get_running_loop()
    partials = await asyncio.gather(
        *(
            loop.run_in_executor(executor, functools.partial(rows_for_transaction, txn, signatures))
            for txn in transactions
        )
    )
    return merge_rows(partials)
