"""Risk settings and risk events.

Revision ID: 003
Revises: 002
Create Date: 2026-10-05 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "003"
down_revision = "002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "risk_settings",
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("margin_call_level", sa.Float(), nullable=False, server_default="50"),
        sa.Column("stop_out_level", sa.Float(), nullable=False, server_default="20"),
        sa.Column("max_position_size", sa.Float(), nullable=False, server_default="10"),
        sa.Column("max_total_exposure", sa.Float(), nullable=False, server_default="100000"),
        sa.Column("max_positions", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("daily_loss_limit", sa.Float(), nullable=False, server_default="5000"),
        sa.Column("daily_trade_limit", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("enforce_stop_loss", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("min_stop_loss_distance", sa.Float(), nullable=False, server_default="10"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("account_id"),
    )

    op.create_table(
        "risk_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=20), nullable=False),
        sa.Column("margin_level", sa.Float(), nullable=True),
        sa.Column("equity", sa.Float(), nullable=False),
        sa.Column("margin_used", sa.Float(), nullable=False),
        sa.Column("position_id", sa.Integer(), nullable=True),
        sa.Column("message", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_risk_events_account_created", "risk_events", ["account_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_risk_events_account_created", table_name="risk_events")
    op.drop_table("risk_events")
    op.drop_table("risk_settings")
