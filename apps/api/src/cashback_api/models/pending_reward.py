"""Durable schedule of cashback rewards awaiting issuance."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

from cashback_api.db.base import Base


class PendingReward(Base):
    """One scheduled reward per qualifying order.

    A row is created by webhook intake and moves from scheduled to sent exactly
    once. ``claim_token``/``claimed_until`` form a lease held by the dispatch
    sweep currently processing the row; ``dead_lettered_at`` parks rows whose
    retries are exhausted.
    """

    __tablename__ = "pending_rewards"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(String(64), nullable=False)
    order_name = Column(String(64), nullable=False)
    customer_email = Column(String(320), nullable=False)
    customer_name = Column(String(255), nullable=False)
    customer_id = Column(String(64), nullable=True)
    reward_amount = Column(Numeric(12, 2), nullable=False)
    shop_domain = Column(String(255), nullable=False, index=True)
    order_created_at = Column(DateTime(timezone=True), nullable=True)
    dispatch_at = Column(DateTime(timezone=True), nullable=False)
    sent = Column(Boolean, nullable=False, default=False, server_default="false")
    sent_at = Column(DateTime(timezone=True), nullable=True)
    issued_code = Column(String(64), nullable=True)
    discount_id = Column(String(128), nullable=True)
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_error = Column(Text, nullable=True)
    claim_token = Column(String(64), nullable=True)
    claimed_until = Column(DateTime(timezone=True), nullable=True)
    dead_lettered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_pending_rewards_order_id"),
        UniqueConstraint("issued_code", name="uq_pending_rewards_issued_code"),
        Index("ix_pending_rewards_sent_dispatch_at", "sent", "dispatch_at"),
    )
    __mapper_args__ = {"eager_defaults": True}

    @property
    def has_customer_account(self) -> bool:
        return bool(self.customer_id)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<PendingReward order_id={self.order_id!r} sent={self.sent!r} retry_count={self.retry_count!r}>"
