"""Scheduling utilities for recurring reward dispatch."""

from .runner import RewardDispatchScheduler

__all__ = ["RewardDispatchScheduler"]
