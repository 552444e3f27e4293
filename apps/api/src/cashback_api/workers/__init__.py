"""Background workers supporting async processing."""

from .reward_dispatch import DispatchError, DispatchSummary, RewardDispatchWorker

__all__ = ["DispatchError", "DispatchSummary", "RewardDispatchWorker"]
