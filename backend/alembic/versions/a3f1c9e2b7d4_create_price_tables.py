"""Create price and ticker master tables

Revision ID: a3f1c9e2b7d4
Revises:
Create Date: 2025-01-06 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a3f1c9e2b7d4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ohlcv_columns() -> list[sa.Column]:
    return [
        sa.Column("open", sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column("high", sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column("low", sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column("close", sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column("volume", sa.BigInteger(), nullable=False),
    ]


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "prices_daily",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        *_ohlcv_columns(),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("source_hash", sa.String(length=64), nullable=True),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("symbol", "date", name="uq_prices_daily_symbol_date"),
        sa.CheckConstraint(
            "open > 0 AND high > 0 AND low > 0 AND close > 0",
            name="ck_prices_daily_positive",
        ),
        sa.CheckConstraint(
            "high >= GREATEST(open, close) AND low <= LEAST(open, close) AND volume >= 0",
            name="ck_prices_daily_ohlc_consistency",
        ),
    )
    op.create_index(op.f("ix_prices_daily_symbol"), "prices_daily", ["symbol"], unique=False)
    op.create_index(op.f("ix_prices_daily_date"), "prices_daily", ["date"], unique=False)

    op.create_table(
        "prices_aggregate",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_kind", sa.String(length=2), nullable=False),
        *_ohlcv_columns(),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "symbol",
            "period_start",
            "period_kind",
            name="uq_prices_aggregate_symbol_start_kind",
        ),
        sa.CheckConstraint("period_kind IN ('1W', '1M')", name="ck_prices_aggregate_kind"),
        sa.CheckConstraint(
            "open > 0 AND high > 0 AND low > 0 AND close > 0",
            name="ck_prices_aggregate_positive",
        ),
        sa.CheckConstraint(
            "high >= GREATEST(open, close) AND low <= LEAST(open, close) AND volume >= 0",
            name="ck_prices_aggregate_ohlc_consistency",
        ),
    )
    op.create_index(op.f("ix_prices_aggregate_symbol"), "prices_aggregate", ["symbol"], unique=False)
    op.create_index(
        "ix_prices_aggregate_kind_start",
        "prices_aggregate",
        ["period_kind", "period_start"],
        unique=False,
    )

    op.create_table(
        "instrument_info",
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("market", sa.String(length=50), nullable=True),
        sa.Column("sector", sa.String(length=100), nullable=True),
        sa.Column("currency", sa.String(length=10), nullable=True),
        sa.Column("active", sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamp_columns(),
        sa.PrimaryKeyConstraint("symbol"),
    )


def downgrade() -> None:
    op.drop_table("instrument_info")
    op.drop_index("ix_prices_aggregate_kind_start", table_name="prices_aggregate")
    op.drop_index(op.f("ix_prices_aggregate_symbol"), table_name="prices_aggregate")
    op.drop_table("prices_aggregate")
    op.drop_index(op.f("ix_prices_daily_date"), table_name="prices_daily")
    op.drop_index(op.f("ix_prices_daily_symbol"), table_name="prices_daily")
    op.drop_table("prices_daily")
