"""Initial schema for positions, signals, wallet scores and daily stats.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "positions",
        sa.Column("position_id", sa.String(32), nullable=False),
        sa.Column("asset_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("signal_kind", sa.String(32), nullable=False),
        sa.Column("confidence", sa.Numeric(6, 4), nullable=False),
        sa.Column("wallets_json", sa.Text(), nullable=False),
        sa.Column("entry_price", sa.Numeric(30, 12), nullable=False),
        sa.Column("entry_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("size", sa.Numeric(18, 2), nullable=False),
        sa.Column("stop_loss_price", sa.Numeric(30, 12), nullable=False),
        sa.Column("take_profit_price", sa.Numeric(30, 12), nullable=False),
        sa.Column("peak_price", sa.Numeric(30, 12), nullable=False),
        sa.Column("current_price", sa.Numeric(30, 12), nullable=False),
        sa.Column("unrealized_pnl", sa.Numeric(18, 6), nullable=False),
        sa.Column("entry_signature", sa.String(128), nullable=False),
        sa.Column("exit_price", sa.Numeric(30, 12), nullable=True),
        sa.Column("exit_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("exit_trigger", sa.String(20), nullable=True),
        sa.Column("realized_pnl", sa.Numeric(18, 6), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("position_id"),
    )
    op.create_index("idx_positions_asset", "positions", ["asset_id"])
    op.create_index("idx_positions_status", "positions", ["status"])
    op.create_index("idx_positions_exit_time", "positions", ["exit_time"])

    op.create_table(
        "signals",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("asset_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("wallets_json", sa.Text(), nullable=False),
        sa.Column("strength", sa.Numeric(6, 4), nullable=False),
        sa.Column("confidence", sa.Numeric(6, 4), nullable=False),
        sa.Column("decision", sa.String(10), nullable=False),
        sa.Column("reject_reason", sa.String(40), nullable=True),
        sa.Column("size", sa.Numeric(18, 2), nullable=True),
        sa.Column("position_id", sa.String(32), nullable=True),
        sa.Column("components_json", sa.Text(), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_signals_asset_detected", "signals", ["asset_id", "detected_at"])
    op.create_index("idx_signals_decision", "signals", ["decision"])

    op.create_table(
        "wallet_scores",
        sa.Column("address", sa.String(64), nullable=False),
        sa.Column("score", sa.Numeric(6, 4), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("trade_count", sa.Integer(), nullable=False),
        sa.Column("win_rate", sa.Numeric(6, 4), nullable=True),
        sa.Column("metrics_json", sa.Text(), nullable=False),
        sa.Column("scored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_trade_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )
    op.create_index(
        "idx_wallet_scores_active_score", "wallet_scores", ["is_active", "score"]
    )

    op.create_table(
        "daily_stats",
        sa.Column("trading_day", sa.Date(), nullable=False),
        sa.Column("trades", sa.Integer(), nullable=False),
        sa.Column("wins", sa.Integer(), nullable=False),
        sa.Column("losses", sa.Integer(), nullable=False),
        sa.Column("realized_pnl", sa.Numeric(18, 6), nullable=False),
        sa.Column("biggest_win", sa.Numeric(18, 6), nullable=False),
        sa.Column("biggest_loss", sa.Numeric(18, 6), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("trading_day"),
    )


def downgrade() -> None:
    op.drop_table("daily_stats")
    op.drop_index("idx_wallet_scores_active_score", table_name="wallet_scores")
    op.drop_table("wallet_scores")
    op.drop_index("idx_signals_decision", table_name="signals")
    op.drop_index("idx_signals_asset_detected", table_name="signals")
    op.drop_table("signals")
    op.drop_index("idx_positions_exit_time", table_name="positions")
    op.drop_index("idx_positions_status", table_name="positions")
    op.drop_index("idx_positions_asset", table_name="positions")
    op.drop_table("positions")
