"""In-process counters for reward dispatch sweeps."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RewardDispatchSnapshot:
    totals: Dict[str, int]
    last_sweep_at: datetime | None
    last_sweep_trigger: str | None
    last_sweep_runtime_seconds: float | None
    last_error: str | None
    last_error_at: datetime | None
    failures_by_shop: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": self.totals,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_sweep_trigger": self.last_sweep_trigger,
            "last_sweep_runtime_seconds": self.last_sweep_runtime_seconds,
            "last_error": self.last_error,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
            "failures_by_shop": self.failures_by_shop,
        }


class RewardDispatchObservabilityStore:
    """Tracks issuance outcomes across dispatch sweeps."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._totals: Dict[str, int] = {
                "sweeps": 0,
                "sweep_errors": 0,
                "processed": 0,
                "issued": 0,
                "failed": 0,
                "scope_fallbacks": 0,
                "notification_failures": 0,
                "tag_failures": 0,
                "parked": 0,
            }
            self._failures_by_shop: Dict[str, int] = {}
            self._last_sweep_at: datetime | None = None
            self._last_sweep_trigger: str | None = None
            self._last_runtime: float | None = None
            self._last_error: str | None = None
            self._last_error_at: datetime | None = None

    def _bump(self, key: str, amount: int = 1) -> None:
        self._totals[key] = self._totals.get(key, 0) + amount

    def record_sweep(
        self,
        *,
        trigger: str,
        processed: int,
        succeeded: int,
        failed: int,
        runtime_seconds: float,
    ) -> None:
        with self._lock:
            self._bump("sweeps")
            self._bump("processed", processed)
            self._bump("issued", succeeded)
            self._bump("failed", failed)
            self._last_sweep_at = _utcnow()
            self._last_sweep_trigger = trigger
            self._last_runtime = runtime_seconds

    def record_sweep_error(self, error: str) -> None:
        with self._lock:
            self._bump("sweep_errors")
            self._last_error = error
            self._last_error_at = _utcnow()

    def record_failure(self, shop_domain: str, error: str) -> None:
        with self._lock:
            self._failures_by_shop[shop_domain] = self._failures_by_shop.get(shop_domain, 0) + 1
            self._last_error = error
            self._last_error_at = _utcnow()

    def record_scope_fallback(self) -> None:
        with self._lock:
            self._bump("scope_fallbacks")

    def record_notification_failure(self) -> None:
        with self._lock:
            self._bump("notification_failures")

    def record_tag_failure(self) -> None:
        with self._lock:
            self._bump("tag_failures")

    def record_parked(self) -> None:
        with self._lock:
            self._bump("parked")

    def snapshot(self) -> RewardDispatchSnapshot:
        with self._lock:
            return RewardDispatchSnapshot(
                totals=dict(self._totals),
                last_sweep_at=self._last_sweep_at,
                last_sweep_trigger=self._last_sweep_trigger,
                last_sweep_runtime_seconds=self._last_runtime,
                last_error=self._last_error,
                last_error_at=self._last_error_at,
                failures_by_shop=dict(self._failures_by_shop),
            )


_REWARD_DISPATCH_STORE = RewardDispatchObservabilityStore()


def get_reward_dispatch_store() -> RewardDispatchObservabilityStore:
    return _REWARD_DISPATCH_STORE


__all__ = [
    "RewardDispatchObservabilityStore",
    "RewardDispatchSnapshot",
    "get_reward_dispatch_store",
]
