"""Typed Kizo contract events and the decoder that produces them.

The contract emits six event types. Each is identified by its fully-qualified
Move type string (``<address>::<module>::<EventName>``) and carries a JSON
payload in which every u64 is wrapped in a decimal string, e.g.::

    {"market_id": "1", "question": "Will X happen?", "end_time": "1000",
     "yield_protocol_addr": "0xabc"}

Decoding never raises: a payload that does not match its event structure
decodes to None.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar

U64_MAX = 2**64 - 1
# Rows are stored in signed BIGINT columns.
I64_MAX = 2**63 - 1

ADDRESS_HEX_LENGTH = 64


class EventKind(str, Enum):
    """The six contract events the indexer persists."""

    MARKET_CREATED = "MarketCreatedEvent"
    BET_PLACED = "BetPlacedEvent"
    MARKET_RESOLVED = "MarketResolvedEvent"
    WINNINGS_CLAIMED = "WinningsClaimedEvent"
    YIELD_DEPOSITED = "YieldDepositedEvent"
    PROTOCOL_FEE_COLLECTED = "ProtocolFeeCollectedEvent"


def standardize_address(address: str) -> str:
    """Return the canonical form of an account address.

    Lower-case hex, ``0x`` prefix, left-padded with zeros to 64 digits, so
    ``0xABC`` and ``0x0000...0abc`` compare equal.
    """
    body = address.strip().lower()
    if body.startswith("0x"):
        body = body[2:]
    return "0x" + body.rjust(ADDRESS_HEX_LENGTH, "0")


@dataclass(frozen=True)
class EventSignatures:
    """Immutable mapping of event kind to fully-qualified Move type string."""

    contract_address: str
    module_name: str
    by_kind: Mapping[EventKind, str]
    _by_type: Mapping[str, EventKind]

    @classmethod
    def for_contract(cls, contract_address: str, module_name: str) -> EventSignatures:
        """Build the signature table for a deployed contract."""
        address = standardize_address(contract_address)
        by_kind = {kind: f"{address}::{module_name}::{kind.value}" for kind in EventKind}
        return cls(
            contract_address=address,
            module_name=module_name,
            by_kind=MappingProxyType(by_kind),
            _by_type=MappingProxyType({sig: kind for kind, sig in by_kind.items()}),
        )

    def kind_for(self, type_str: str) -> EventKind | None:
        """Return the event kind for an exact type string match, else None."""
        return self._by_type.get(type_str)

    def signature(self, kind: EventKind) -> str:
        return self.by_kind[kind]

    def is_contract_event(self, type_str: str) -> bool:
        """Whether the type belongs to the indexed contract (known kind or not)."""
        return type_str.startswith(f"{self.contract_address}::")


def _u64(payload: Mapping[str, Any], key: str) -> int:
    raw = payload[key]
    if isinstance(raw, bool):
        raise TypeError(f"{key} must be a u64, got bool")
    if isinstance(raw, str):
        if not (raw.isascii() and raw.isdigit()):
            raise ValueError(f"{key} is not a decimal u64: {raw!r}")
        value = int(raw)
    elif isinstance(raw, int):
        value = raw
    else:
        raise TypeError(f"{key} must be a u64, got {type(raw).__name__}")
    if value < 0 or value > U64_MAX:
        raise ValueError(f"{key} out of u64 range: {value}")
    if value > I64_MAX:
        raise ValueError(f"{key} exceeds storable range: {value}")
    return value


def _str(payload: Mapping[str, Any], key: str) -> str:
    raw = payload[key]
    if not isinstance(raw, str):
        raise TypeError(f"{key} must be a string, got {type(raw).__name__}")
    return raw


def _bool(payload: Mapping[str, Any], key: str) -> bool:
    raw = payload[key]
    if not isinstance(raw, bool):
        raise TypeError(f"{key} must be a bool, got {type(raw).__name__}")
    return raw


@dataclass(frozen=True)
class MarketCreatedEvent:
    kind: ClassVar[EventKind] = EventKind.MARKET_CREATED

    market_id: int
    question: str
    end_time: int
    yield_protocol_addr: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> MarketCreatedEvent:
        return cls(
            market_id=_u64(payload, "market_id"),
            question=_str(payload, "question"),
            end_time=_u64(payload, "end_time"),
            yield_protocol_addr=_str(payload, "yield_protocol_addr"),
        )


@dataclass(frozen=True)
class BetPlacedEvent:
    kind: ClassVar[EventKind] = EventKind.BET_PLACED

    bet_id: int
    market_id: int
    user: str
    position: bool
    amount: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> BetPlacedEvent:
        return cls(
            bet_id=_u64(payload, "bet_id"),
            market_id=_u64(payload, "market_id"),
            user=_str(payload, "user"),
            position=_bool(payload, "position"),
            amount=_u64(payload, "amount"),
        )


@dataclass(frozen=True)
class MarketResolvedEvent:
    kind: ClassVar[EventKind] = EventKind.MARKET_RESOLVED

    market_id: int
    outcome: bool
    total_yield_earned: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> MarketResolvedEvent:
        return cls(
            market_id=_u64(payload, "market_id"),
            outcome=_bool(payload, "outcome"),
            total_yield_earned=_u64(payload, "total_yield_earned"),
        )


@dataclass(frozen=True)
class WinningsClaimedEvent:
    kind: ClassVar[EventKind] = EventKind.WINNINGS_CLAIMED

    bet_id: int
    user: str
    winning_amount: int
    yield_share: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> WinningsClaimedEvent:
        return cls(
            bet_id=_u64(payload, "bet_id"),
            user=_str(payload, "user"),
            winning_amount=_u64(payload, "winning_amount"),
            yield_share=_u64(payload, "yield_share"),
        )


@dataclass(frozen=True)
class YieldDepositedEvent:
    kind: ClassVar[EventKind] = EventKind.YIELD_DEPOSITED

    market_id: int
    amount: int
    protocol_addr: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> YieldDepositedEvent:
        return cls(
            market_id=_u64(payload, "market_id"),
            amount=_u64(payload, "amount"),
            protocol_addr=_str(payload, "protocol_addr"),
        )


@dataclass(frozen=True)
class ProtocolFeeCollectedEvent:
    kind: ClassVar[EventKind] = EventKind.PROTOCOL_FEE_COLLECTED

    market_id: int
    fee_amount: int

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ProtocolFeeCollectedEvent:
        return cls(
            market_id=_u64(payload, "market_id"),
            fee_amount=_u64(payload, "fee_amount"),
        )


ContractEvent = (
    MarketCreatedEvent
    | BetPlacedEvent
    | MarketResolvedEvent
    | WinningsClaimedEvent
    | YieldDepositedEvent
    | ProtocolFeeCollectedEvent
)

EVENT_TYPES: Mapping[EventKind, type[ContractEvent]] = MappingProxyType(
    {
        EventKind.MARKET_CREATED: MarketCreatedEvent,
        EventKind.BET_PLACED: BetPlacedEvent,
        EventKind.MARKET_RESOLVED: MarketResolvedEvent,
        EventKind.WINNINGS_CLAIMED: WinningsClaimedEvent,
        EventKind.YIELD_DEPOSITED: YieldDepositedEvent,
        EventKind.PROTOCOL_FEE_COLLECTED: ProtocolFeeCollectedEvent,
    }
)


def decode_event(kind: EventKind, data: str) -> ContractEvent | None:
    """Decode a JSON event payload into the typed event for ``kind``.

    Args:
        kind: Event kind, resolved from the event's type string.
        data: JSON-encoded payload.

    Returns:
        The typed event, or None if the payload is malformed, misses a
        field, has a field of the wrong type, or a u64 does not parse.
    """
    try:
        payload = json.loads(data)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return EVENT_TYPES[kind].from_payload(payload)
    except (KeyError, TypeError, ValueError):
        return None
