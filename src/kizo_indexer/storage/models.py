"""SQLAlchemy models for persistent storage.

This module defines the database schema for indexed markets, bets, market
resolutions, winnings claims, yield deposits, and protocol fees.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Canonical addresses are 0x + 64 hex digits.
ADDRESS_LENGTH = 66

# SQLite only auto-increments INTEGER PRIMARY KEY columns.
GeneratedId = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class MarketModel(Base):
    """A prediction market, created by MarketCreatedEvent.

    The resolution columns are a denormalized view of ``market_resolutions``
    and are only written by reconciliation outside the indexer.
    """

    __tablename__ = "markets"

    market_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    end_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    yield_protocol_addr: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)
    transaction_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    resolved: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=False)
    outcome: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    total_yield_earned: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=0)
    resolution_transaction_version: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (Index("idx_markets_transaction_version", "transaction_version"),)


class BetModel(Base):
    """A bet on one side of a market, created by BetPlacedEvent."""

    __tablename__ = "bets"

    bet_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    market_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("markets.market_id"), nullable=False)
    user_addr: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)
    position: Mapped[bool] = mapped_column(Boolean, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    claimed: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=False)
    winning_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=0)
    yield_share: Mapped[int | None] = mapped_column(BigInteger, nullable=True, default=0)
    claim_transaction_version: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_bets_market_id", "market_id"),
        Index("idx_bets_user_addr", "user_addr"),
    )


class MarketResolutionModel(Base):
    """Resolution snapshot of a market (one row per market)."""

    __tablename__ = "market_resolutions"

    market_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("markets.market_id"), primary_key=True, autoincrement=False
    )
    outcome: Mapped[bool] = mapped_column(Boolean, nullable=False)
    total_yield_earned: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class WinningsClaimModel(Base):
    """A payout claimed on a winning bet (append-only)."""

    __tablename__ = "winnings_claims"

    claim_id: Mapped[int] = mapped_column(GeneratedId, primary_key=True, autoincrement=True)
    bet_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("bets.bet_id"), nullable=False)
    user_addr: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)
    winning_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    yield_share: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_index: Mapped[int] = mapped_column(Integer, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("transaction_version", "event_index", name="uq_winnings_claims_event"),
        Index("idx_winnings_claims_bet_id", "bet_id"),
    )


class YieldDepositModel(Base):
    """Yield deposited into a market's yield protocol (append-only)."""

    __tablename__ = "yield_deposits"

    deposit_id: Mapped[int] = mapped_column(GeneratedId, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("markets.market_id"), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    protocol_addr: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)
    transaction_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_index: Mapped[int] = mapped_column(Integer, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("transaction_version", "event_index", name="uq_yield_deposits_event"),
        Index("idx_yield_deposits_market_id", "market_id"),
    )


class ProtocolFeeModel(Base):
    """Protocol fee collected from a market (append-only)."""

    __tablename__ = "protocol_fees"

    fee_id: Mapped[int] = mapped_column(GeneratedId, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("markets.market_id"), nullable=False)
    fee_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_block_height: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_index: Mapped[int] = mapped_column(Integer, nullable=False)
    inserted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("transaction_version", "event_index", name="uq_protocol_fees_event"),
        Index("idx_protocol_fees_market_id", "market_id"),
    )
