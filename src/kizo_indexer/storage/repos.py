"""Repository pattern implementations for data access.

This module provides the row DTOs built from decoded contract events and the
repository that writes them in parameter-bounded chunks, with a conflict
policy chosen per table.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from kizo_indexer.config import ASYNCPG_MAX_BIND_PARAMS
from kizo_indexer.ingestor.events import (
    BetPlacedEvent,
    EventKind,
    MarketCreatedEvent,
    MarketResolvedEvent,
    ProtocolFeeCollectedEvent,
    WinningsClaimedEvent,
    YieldDepositedEvent,
    standardize_address,
)
from kizo_indexer.storage.database import CONNECTION_ERRORS, DatabaseUnavailableError
from kizo_indexer.storage.models import (
    Base,
    BetModel,
    MarketModel,
    MarketResolutionModel,
    ProtocolFeeModel,
    WinningsClaimModel,
    YieldDepositModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _RowDTO:
    """Shared helpers for row DTOs."""

    @classmethod
    def field_count(cls) -> int:
        """Number of bind parameters one row contributes to an INSERT."""
        return len(dataclasses.fields(cls))  # type: ignore[arg-type]

    def to_values(self) -> dict[str, Any]:
        return dataclasses.asdict(self)  # type: ignore[call-overload]


@dataclass
class MarketDTO(_RowDTO):
    """Data transfer object for markets."""

    market_id: int
    question: str
    end_time: int
    yield_protocol_addr: str
    transaction_version: int
    transaction_block_height: int
    inserted_at: datetime
    resolved: bool | None = False
    outcome: bool | None = None
    total_yield_earned: int | None = 0
    resolution_transaction_version: int | None = None

    @classmethod
    def from_event(
        cls,
        event: MarketCreatedEvent,
        transaction_version: int,
        transaction_block_height: int,
        *,
        event_index: int = 0,  # noqa: ARG003
    ) -> MarketDTO:
        return cls(
            market_id=event.market_id,
            question=event.question,
            end_time=event.end_time,
            yield_protocol_addr=standardize_address(event.yield_protocol_addr),
            transaction_version=transaction_version,
            transaction_block_height=transaction_block_height,
            inserted_at=_utcnow(),
        )


@dataclass
class BetDTO(_RowDTO):
    """Data transfer object for bets."""

    bet_id: int
    market_id: int
    user_addr: str
    position: bool
    amount: int
    transaction_version: int
    transaction_block_height: int
    inserted_at: datetime
    claimed: bool | None = False
    winning_amount: int | None = 0
    yield_share: int | None = 0
    claim_transaction_version: int | None = None

    @classmethod
    def from_event(
        cls,
        event: BetPlacedEvent,
        transaction_version: int,
        transaction_block_height: int,
        *,
        event_index: int = 0,  # noqa: ARG003
    ) -> BetDTO:
        return cls(
            bet_id=event.bet_id,
            market_id=event.market_id,
            user_addr=standardize_address(event.user),
            position=event.position,
            amount=event.amount,
            transaction_version=transaction_version,
            transaction_block_height=transaction_block_height,
            inserted_at=_utcnow(),
        )


@dataclass
class MarketResolutionDTO(_RowDTO):
    """Data transfer object for market resolutions."""

    market_id: int
    outcome: bool
    total_yield_earned: int
    transaction_version: int
    transaction_block_height: int
    inserted_at: datetime

    @classmethod
    def from_event(
        cls,
        event: MarketResolvedEvent,
        transaction_version: int,
        transaction_block_height: int,
        *,
        event_index: int = 0,  # noqa: ARG003
    ) -> MarketResolutionDTO:
        return cls(
            market_id=event.market_id,
            outcome=event.outcome,
            total_yield_earned=event.total_yield_earned,
            transaction_version=transaction_version,
            transaction_block_height=transaction_block_height,
            inserted_at=_utcnow(),
        )


@dataclass
class WinningsClaimDTO(_RowDTO):
    """Data transfer object for winnings claims.

    ``claim_id`` is assigned by the database and is not part of the DTO.
    """

    bet_id: int
    user_addr: str
    winning_amount: int
    yield_share: int
    transaction_version: int
    transaction_block_height: int
    event_index: int
    inserted_at: datetime

    @classmethod
    def from_event(
        cls,
        event: WinningsClaimedEvent,
        transaction_version: int,
        transaction_block_height: int,
        *,
        event_index: int = 0,
    ) -> WinningsClaimDTO:
        return cls(
            bet_id=event.bet_id,
            user_addr=standardize_address(event.user),
            winning_amount=event.winning_amount,
            yield_share=event.yield_share,
            transaction_version=transaction_version,
            transaction_block_height=transaction_block_height,
            event_index=event_index,
            inserted_at=_utcnow(),
        )


@dataclass
class YieldDepositDTO(_RowDTO):
    """Data transfer object for yield deposits."""

    market_id: int
    amount: int
    protocol_addr: str
    transaction_version: int
    transaction_block_height: int
    event_index: int
    inserted_at: datetime

    @classmethod
    def from_event(
        cls,
        event: YieldDepositedEvent,
        transaction_version: int,
        transaction_block_height: int,
        *,
        event_index: int = 0,
    ) -> YieldDepositDTO:
        return cls(
            market_id=event.market_id,
            amount=event.amount,
            protocol_addr=standardize_address(event.protocol_addr),
            transaction_version=transaction_version,
            transaction_block_height=transaction_block_height,
            event_index=event_index,
            inserted_at=_utcnow(),
        )


@dataclass
class ProtocolFeeDTO(_RowDTO):
    """Data transfer object for protocol fees."""

    market_id: int
    fee_amount: int
    transaction_version: int
    transaction_block_height: int
    event_index: int
    inserted_at: datetime

    @classmethod
    def from_event(
        cls,
        event: ProtocolFeeCollectedEvent,
        transaction_version: int,
        transaction_block_height: int,
        *,
        event_index: int = 0,
    ) -> ProtocolFeeDTO:
        return cls(
            market_id=event.market_id,
            fee_amount=event.fee_amount,
            transaction_version=transaction_version,
            transaction_block_height=transaction_block_height,
            event_index=event_index,
            inserted_at=_utcnow(),
        )


RowDTO = MarketDTO | BetDTO | MarketResolutionDTO | WinningsClaimDTO | YieldDepositDTO | ProtocolFeeDTO

DTO_TYPES: Mapping[EventKind, type[RowDTO]] = MappingProxyType(
    {
        EventKind.MARKET_CREATED: MarketDTO,
        EventKind.BET_PLACED: BetDTO,
        EventKind.MARKET_RESOLVED: MarketResolutionDTO,
        EventKind.WINNINGS_CLAIMED: WinningsClaimDTO,
        EventKind.YIELD_DEPOSITED: YieldDepositDTO,
        EventKind.PROTOCOL_FEE_COLLECTED: ProtocolFeeDTO,
    }
)


@dataclass
class BatchRows:
    """Rows extracted from one or more transactions, grouped by event kind."""

    ATTRS: ClassVar[Mapping[EventKind, str]] = MappingProxyType(
        {
            EventKind.MARKET_CREATED: "markets",
            EventKind.BET_PLACED: "bets",
            EventKind.MARKET_RESOLVED: "market_resolutions",
            EventKind.WINNINGS_CLAIMED: "winnings_claims",
            EventKind.YIELD_DEPOSITED: "yield_deposits",
            EventKind.PROTOCOL_FEE_COLLECTED: "protocol_fees",
        }
    )

    markets: list[MarketDTO] = field(default_factory=list)
    bets: list[BetDTO] = field(default_factory=list)
    market_resolutions: list[MarketResolutionDTO] = field(default_factory=list)
    winnings_claims: list[WinningsClaimDTO] = field(default_factory=list)
    yield_deposits: list[YieldDepositDTO] = field(default_factory=list)
    protocol_fees: list[ProtocolFeeDTO] = field(default_factory=list)

    def for_kind(self, kind: EventKind) -> list[Any]:
        rows: list[Any] = getattr(self, self.ATTRS[kind])
        return rows

    def extend(self, other: BatchRows) -> None:
        """Append every row of ``other`` to this collection."""
        for attr in self.ATTRS.values():
            getattr(self, attr).extend(getattr(other, attr))

    def counts(self) -> dict[str, int]:
        return {attr: len(getattr(self, attr)) for attr in self.ATTRS.values()}

    @property
    def total(self) -> int:
        return sum(self.counts().values())

    @property
    def is_empty(self) -> bool:
        return self.total == 0


# ============================================================================
# Chunked writes
# ============================================================================


def chunk_size_for(dto_cls: type[_RowDTO], max_params: int = ASYNCPG_MAX_BIND_PARAMS) -> int:
    """Rows per INSERT so that no statement exceeds ``max_params`` binds."""
    return max(1, max_params // dto_cls.field_count())


def iter_chunks(rows: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` rows."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def collapse_resolutions(rows: Sequence[MarketResolutionDTO]) -> list[MarketResolutionDTO]:
    """Keep one resolution per market: the one from the latest transaction.

    A single ON CONFLICT DO UPDATE statement may not affect the same row
    twice, so duplicates within one batch are resolved here.
    """
    latest: dict[int, MarketResolutionDTO] = {}
    for row in rows:
        current = latest.get(row.market_id)
        if current is None or row.transaction_version >= current.transaction_version:
            latest[row.market_id] = row
    return list(latest.values())


@dataclass(frozen=True)
class ConflictPolicy:
    """ON CONFLICT behaviour for one table.

    An empty ``update_columns`` means DO NOTHING; otherwise the listed
    columns are overwritten with the incoming values.
    """

    model: type[Base]
    index_elements: tuple[str, ...]
    update_columns: tuple[str, ...] = ()


WRITE_POLICIES: Mapping[EventKind, ConflictPolicy] = MappingProxyType(
    {
        EventKind.MARKET_CREATED: ConflictPolicy(MarketModel, ("market_id",)),
        EventKind.BET_PLACED: ConflictPolicy(BetModel, ("bet_id",)),
        EventKind.MARKET_RESOLVED: ConflictPolicy(
            MarketResolutionModel,
            ("market_id",),
            update_columns=(
                "outcome",
                "total_yield_earned",
                "transaction_version",
                "transaction_block_height",
            ),
        ),
        EventKind.WINNINGS_CLAIMED: ConflictPolicy(
            WinningsClaimModel, ("transaction_version", "event_index")
        ),
        EventKind.YIELD_DEPOSITED: ConflictPolicy(
            YieldDepositModel, ("transaction_version", "event_index")
        ),
        EventKind.PROTOCOL_FEE_COLLECTED: ConflictPolicy(
            ProtocolFeeModel, ("transaction_version", "event_index")
        ),
    }
)

# Parents before children: bets, resolutions, deposits and fees reference
# markets; claims reference bets. Kinds within one tier are independent.
WRITE_ORDER: tuple[tuple[EventKind, ...], ...] = (
    (EventKind.MARKET_CREATED,),
    (
        EventKind.BET_PLACED,
        EventKind.MARKET_RESOLVED,
        EventKind.YIELD_DEPOSITED,
        EventKind.PROTOCOL_FEE_COLLECTED,
    ),
    (EventKind.WINNINGS_CLAIMED,),
)

_INSERT_CONSTRUCTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def build_upsert(dialect_name: str, kind: EventKind, rows: Sequence[RowDTO]) -> Any:
    """Build the multi-row INSERT for ``rows`` with the kind's conflict policy.

    Raises:
        RuntimeError: If the dialect has no ON CONFLICT insert construct.
    """
    insert = _INSERT_CONSTRUCTS.get(dialect_name)
    if insert is None:
        raise RuntimeError(f"Unsupported database dialect for upserts: {dialect_name}")

    policy = WRITE_POLICIES[kind]
    stmt = insert(policy.model).values([row.to_values() for row in rows])
    if policy.update_columns:
        return stmt.on_conflict_do_update(
            index_elements=list(policy.index_elements),
            set_={col: stmt.excluded[col] for col in policy.update_columns},
        )
    return stmt.on_conflict_do_nothing(index_elements=list(policy.index_elements))


@dataclass
class WriteResult:
    """Outcome of writing one kind's rows."""

    kind: EventKind
    attempted: int = 0
    written: int = 0
    chunks: int = 0
    failed_chunks: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_chunks == 0


@dataclass
class BatchWriteResult:
    """Per-kind outcomes for one batch."""

    results: dict[EventKind, WriteResult] = field(default_factory=dict)

    @property
    def total_written(self) -> int:
        return sum(r.written for r in self.results.values())

    @property
    def failures(self) -> list[WriteResult]:
        return [r for r in self.results.values() if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failures


class EventRowRepository:
    """Writes extracted rows to their tables.

    Each chunk runs in its own session and transaction, so a failing chunk
    only loses its own rows. Kinds are written tier by tier in WRITE_ORDER,
    concurrently within a tier; statement errors are logged and reported in
    the result, not raised. Only a failure to obtain a connection is raised,
    as DatabaseUnavailableError.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_params: int = ASYNCPG_MAX_BIND_PARAMS,
    ) -> None:
        if max_params < 1:
            raise ValueError("max_params must be positive")
        self._session_factory = session_factory
        self._max_params = max_params

    @property
    def max_params(self) -> int:
        return self._max_params

    def chunk_size(self, kind: EventKind) -> int:
        return chunk_size_for(DTO_TYPES[kind], self._max_params)

    async def _write_chunk(self, kind: EventKind, rows: Sequence[RowDTO]) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                try:
                    conn = await session.connection()
                except CONNECTION_ERRORS as e:
                    raise DatabaseUnavailableError(f"Cannot connect to database: {e}") from e
                result = await session.execute(build_upsert(conn.dialect.name, kind, rows))
        rowcount = getattr(result, "rowcount", -1)
        return rowcount if rowcount is not None and rowcount >= 0 else len(rows)

    async def write_kind(self, kind: EventKind, rows: Sequence[RowDTO]) -> WriteResult:
        """Write all rows of one kind in parameter-bounded chunks.

        Returns:
            WriteResult; ``written`` counts rows inserted or updated, so
            rows absorbed by DO NOTHING are not counted.

        Raises:
            DatabaseUnavailableError: If no connection can be obtained.
        """
        if kind is EventKind.MARKET_RESOLVED:
            rows = collapse_resolutions(rows)  # type: ignore[arg-type]

        result = WriteResult(kind=kind, attempted=len(rows))
        for chunk in iter_chunks(rows, self.chunk_size(kind)):
            result.chunks += 1
            try:
                result.written += await self._write_chunk(kind, chunk)
            except DatabaseUnavailableError:
                raise
            except Exception as e:
                result.failed_chunks += 1
                result.error = str(e)
                logger.error(
                    "Failed to store %d %s rows (chunk %d): %s",
                    len(chunk),
                    BatchRows.ATTRS[kind],
                    result.chunks,
                    e,
                )

        if result.ok:
            logger.info("Stored %d %s (%d new or updated)", result.attempted, BatchRows.ATTRS[kind], result.written)
        return result

    async def write_all(self, rows: BatchRows) -> BatchWriteResult:
        """Write every non-empty kind, parents before children.

        Raises:
            DatabaseUnavailableError: If no connection can be obtained; the
                remaining tiers are not attempted.
        """
        batch = BatchWriteResult()
        for tier in WRITE_ORDER:
            kinds = [kind for kind in tier if rows.for_kind(kind)]
            if not kinds:
                continue
            outcomes = await asyncio.gather(
                *(self.write_kind(kind, rows.for_kind(kind)) for kind in kinds),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
                batch.results[outcome.kind] = outcome
        return batch
