"""Data models for decoded transactions handed to the indexer."""

from __future__ import annotations

import contextlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Event:
    """A single event emitted by a transaction.

    ``type_str`` is the fully-qualified Move type of the event and ``data`` is
    the JSON-encoded event payload, exactly as delivered by the stream.
    """

    type_str: str
    data: str
    sequence_number: int | None = None
    account_address: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        """Create an Event from a dictionary."""
        payload = data.get("data", "")
        sequence_number = data.get("sequence_number")
        account_address = data.get("account_address")
        return cls(
            type_str=str(data.get("type_str") or data.get("type") or ""),
            data=payload if isinstance(payload, str) else _dump_json(payload),
            sequence_number=int(sequence_number) if sequence_number is not None else None,
            account_address=str(account_address) if account_address is not None else None,
        )


@dataclass(frozen=True)
class Transaction:
    """A transaction with the events it emitted.

    ``events`` is None when the transaction carries no payload that exposes an
    event list (e.g. state checkpoints), and an empty tuple when it has a
    payload without events.
    """

    version: int
    block_height: int
    events: tuple[Event, ...] | None
    timestamp: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        """Create a Transaction from a dictionary."""
        raw_events = data.get("events")
        events = None
        if raw_events is not None:
            events = tuple(Event.from_dict(e) for e in raw_events)

        timestamp = None
        raw_ts = data.get("timestamp")
        if raw_ts:
            with contextlib.suppress(ValueError, AttributeError):
                timestamp = datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00"))

        return cls(
            version=int(data["version"]),
            block_height=int(data["block_height"]),
            events=events,
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class TransactionBatch:
    """An ordered group of transactions delivered together."""

    transactions: tuple[Transaction, ...]

    @property
    def start_version(self) -> int | None:
        return self.transactions[0].version if self.transactions else None

    @property
    def end_version(self) -> int | None:
        return self.transactions[-1].version if self.transactions else None

    def __len__(self) -> int:
        return len(self.transactions)


def _dump_json(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"))
