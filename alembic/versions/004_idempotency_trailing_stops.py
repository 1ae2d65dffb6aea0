"""Order idempotency keys, trailing stops and partial closes.

Revision ID: 004
Revises: 003
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "004"
down_revision = "003"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.add_column(sa.Column("trailing_stop_distance", sa.Float(), nullable=True))
        batch_op.add_column(sa.Column("idempotency_key", sa.String(length=128), nullable=True))
        batch_op.create_unique_constraint("uq_orders_account_idempotency_key", ["account_id", "idempotency_key"])

    with op.batch_alter_table("positions", schema=None) as batch_op:
        batch_op.add_column(sa.Column("trailing_stop_distance", sa.Float(), nullable=True))
        batch_op.add_column(sa.Column("trailing_stop_price", sa.Float(), nullable=True))
        batch_op.add_column(sa.Column("extreme_price", sa.Float(), nullable=True))

    # A position closed in parts leaves one row per partial close
    with op.batch_alter_table("closed_positions", schema=None) as batch_op:
        batch_op.drop_constraint("uq_closed_positions_position_id", type_="unique")
        batch_op.create_index("ix_closed_positions_position", ["position_id"])


def downgrade() -> None:
    with op.batch_alter_table("closed_positions", schema=None) as batch_op:
        batch_op.drop_index("ix_closed_positions_position")
        batch_op.create_unique_constraint("uq_closed_positions_position_id", ["position_id"])

    with op.batch_alter_table("positions", schema=None) as batch_op:
        batch_op.drop_column("extreme_price")
        batch_op.drop_column("trailing_stop_price")
        batch_op.drop_column("trailing_stop_distance")

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.drop_constraint("uq_orders_account_idempotency_key", type_="unique")
        batch_op.drop_column("idempotency_key")
        batch_op.drop_column("trailing_stop_distance")
