"""SQLAlchemy models package."""

from .pending_reward import PendingReward  # noqa: F401
from .shop_credential import ShopCredential  # noqa: F401

__all__ = ["PendingReward", "ShopCredential"]
