"""Create pending reward schedule and shop credential tables.

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "pending_rewards",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("order_name", sa.String(length=64), nullable=False),
        sa.Column("customer_email", sa.String(length=320), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("reward_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("shop_domain", sa.String(length=255), nullable=False),
        sa.Column("order_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatch_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_code", sa.String(length=64), nullable=True),
        sa.Column("discount_id", sa.String(length=128), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("claim_token", sa.String(length=64), nullable=True),
        sa.Column("claimed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("order_id", name="uq_pending_rewards_order_id"),
        sa.UniqueConstraint("issued_code", name="uq_pending_rewards_issued_code"),
    )
    op.create_index("ix_pending_rewards_sent_dispatch_at", "pending_rewards", ["sent", "dispatch_at"])
    op.create_index("ix_pending_rewards_shop_domain", "pending_rewards", ["shop_domain"])

    op.create_table(
        "shop_credentials",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("shop_domain", sa.String(length=255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("is_online", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("shop_domain", "is_online", name="uq_shop_credentials_shop_online"),
    )
    op.create_index("ix_shop_credentials_shop_domain", "shop_credentials", ["shop_domain"])


def downgrade() -> None:
    op.drop_index("ix_shop_credentials_shop_domain", table_name="shop_credentials")
    op.drop_table("shop_credentials")
    op.drop_index("ix_pending_rewards_shop_domain", table_name="pending_rewards")
    op.drop_index("ix_pending_rewards_sent_dispatch_at", table_name="pending_rewards")
    op.drop_table("pending_rewards")
