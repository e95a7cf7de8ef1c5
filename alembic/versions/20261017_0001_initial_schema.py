"""Initial schema for markets, bets, resolutions, claims, deposits and fees.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _provenance_columns() -> list[sa.Column]:
    return [
        sa.Column("transaction_version", sa.BigInteger(), nullable=False),
        sa.Column("transaction_block_height", sa.BigInteger(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "markets",
        sa.Column("market_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("end_time", sa.BigInteger(), nullable=False),
        sa.Column("yield_protocol_addr", sa.String(66), nullable=False),
        *_provenance_columns(),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=True),
        sa.Column("outcome", sa.Boolean(), nullable=True),
        sa.Column("total_yield_earned", sa.BigInteger(), nullable=True),
        sa.Column("resolution_transaction_version", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("market_id"),
    )
    op.create_index("idx_markets_transaction_version", "markets", ["transaction_version"])

    op.create_table(
        "bets",
        sa.Column("bet_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("market_id", sa.BigInteger(), nullable=False),
        sa.Column("user_addr", sa.String(66), nullable=False),
        sa.Column("position", sa.Boolean(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        *_provenance_columns(),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed", sa.Boolean(), nullable=True),
        sa.Column("winning_amount", sa.BigInteger(), nullable=True),
        sa.Column("yield_share", sa.BigInteger(), nullable=True),
        sa.Column("claim_transaction_version", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("bet_id"),
        sa.ForeignKeyConstraint(["market_id"], ["markets.market_id"]),
    )
    op.create_index("idx_bets_market_id", "bets", ["market_id"])
    op.create_index("idx_bets_user_addr", "bets", ["user_addr"])

    op.create_table(
        "market_resolutions",
        sa.Column("market_id", sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column("outcome", sa.Boolean(), nullable=False),
        sa.Column("total_yield_earned", sa.BigInteger(), nullable=False),
        *_provenance_columns(),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("market_id"),
        sa.ForeignKeyConstraint(["market_id"], ["markets.market_id"]),
    )

    op.create_table(
        "winnings_claims",
        sa.Column("claim_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("bet_id", sa.BigInteger(), nullable=False),
        sa.Column("user_addr", sa.String(66), nullable=False),
        sa.Column("winning_amount", sa.BigInteger(), nullable=False),
        sa.Column("yield_share", sa.BigInteger(), nullable=False),
        *_provenance_columns(),
        sa.Column("event_index", sa.Integer(), nullable=False),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("claim_id"),
        sa.ForeignKeyConstraint(["bet_id"], ["bets.bet_id"]),
        sa.UniqueConstraint("transaction_version", "event_index", name="uq_winnings_claims_event"),
    )
    op.create_index("idx_winnings_claims_bet_id", "winnings_claims", ["bet_id"])

    op.create_table(
        "yield_deposits",
        sa.Column("deposit_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("market_id", sa.BigInteger(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("protocol_addr", sa.String(66), nullable=False),
        *_provenance_columns(),
        sa.Column("event_index", sa.Integer(), nullable=False),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("deposit_id"),
        sa.ForeignKeyConstraint(["market_id"], ["markets.market_id"]),
        sa.UniqueConstraint("transaction_version", "event_index", name="uq_yield_deposits_event"),
    )
    op.create_index("idx_yield_deposits_market_id", "yield_deposits", ["market_id"])

    op.create_table(
        "protocol_fees",
        sa.Column("fee_id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("market_id", sa.BigInteger(), nullable=False),
        sa.Column("fee_amount", sa.BigInteger(), nullable=False),
        *_provenance_columns(),
        sa.Column("event_index", sa.Integer(), nullable=False),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("fee_id"),
        sa.ForeignKeyConstraint(["market_id"], ["markets.market_id"]),
        sa.UniqueConstraint("transaction_version", "event_index", name="uq_protocol_fees_event"),
    )
    op.create_index("idx_protocol_fees_market_id", "protocol_fees", ["market_id"])


def downgrade() -> None:
    op.drop_index("idx_protocol_fees_market_id", table_name="protocol_fees")
    op.drop_table("protocol_fees")
    op.drop_index("idx_yield_deposits_market_id", table_name="yield_deposits")
    op.drop_table("yield_deposits")
    op.drop_index("idx_winnings_claims_bet_id", table_name="winnings_claims")
    op.drop_table("winnings_claims")
    op.drop_table("market_resolutions")
    op.drop_index("idx_bets_user_addr", table_name="bets")
    op.drop_index("idx_bets_market_id", table_name="bets")
    op.drop_table("bets")
    op.drop_index("idx_markets_transaction_version", table_name="markets")
    op.drop_table("markets")
