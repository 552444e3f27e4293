"""Cron-driven scheduler for reward dispatch sweeps."""

from __future__ import annotations

import inspect

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from cashback_api.observability.rewards import get_reward_dispatch_store
from cashback_api.workers.reward_dispatch import RewardDispatchWorker

JOB_ID = "reward-dispatch"


class RewardDispatchScheduler:
    """Run :class:`RewardDispatchWorker` sweeps on a crontab schedule."""

    # meta: scheduler: reward-dispatch

    def __init__(self, worker: RewardDispatchWorker, *, cron: str, timezone: str = "UTC") -> None:
        self._worker = worker
        self.cron = cron
        self.timezone = timezone
        self._scheduler: AsyncIOScheduler | None = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        if self._scheduler is not None:
            return
        zone = ZoneInfo(self.timezone)
        scheduler = AsyncIOScheduler(timezone=zone)
        scheduler.add_job(
            self._run_sweep,
            trigger=CronTrigger.from_crontab(self.cron, timezone=zone),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        self._is_running = True
        logger.info("Reward dispatch scheduler started", cron=self.cron, timezone=self.timezone)

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        self._is_running = False
        logger.info("Reward dispatch scheduler stopped")

    async def _run_sweep(self) -> None:
        try:
            await self._worker.run_once(triggered_by="scheduler")
        except Exception as exc:  # pragma: no cover - the next run retries
            logger.exception("Scheduled reward dispatch failed", error=str(exc))

    def next_run_at(self) -> str | None:
        if not self._scheduler:
            return None
        job = self._scheduler.get_job(JOB_ID)
        if job is None or job.next_run_time is None:
            return None
        return job.next_run_time.isoformat()

    def health(self) -> dict[str, object]:
        """Return scheduler health metadata suitable for diagnostics."""

        snapshot = get_reward_dispatch_store().snapshot()
        return {
            "running": self._is_running,
            "cron": self.cron,
            "timezone": self.timezone,
            "next_run_at": self.next_run_at(),
            "metrics": snapshot.as_dict(),
        }


__all__ = ["RewardDispatchScheduler"]
