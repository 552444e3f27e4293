"""Per-shop Admin API credentials."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

from cashback_api.db.base import Base


class ShopCredential(Base):
    """Access token installed for a shop; offline tokens are preferred for background work."""

    __tablename__ = "shop_credentials"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_domain = Column(String(255), nullable=False, index=True)
    access_token = Column(Text, nullable=False)
    is_online = Column(Boolean, nullable=False, default=False, server_default="false")
    scope = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("shop_domain", "is_online", name="uq_shop_credentials_shop_online"),
    )
    __mapper_args__ = {"eager_defaults": True}
