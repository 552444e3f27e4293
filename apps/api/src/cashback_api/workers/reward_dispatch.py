"""Sweep due rewards and hand each one to the issuer."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List

import httpx
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.observability.rewards import RewardDispatchObservabilityStore, get_reward_dispatch_store
from cashback_api.observability.tracing import get_tracer
from cashback_api.services.notifications.service import RewardNotifier
from cashback_api.services.rewards.issuer import ClientProvider, IssuanceResult, RewardIssuer
from cashback_api.services.rewards.state import RewardStateUpdater
from cashback_api.services.rewards.store import claim_due, due_shop_domains
from cashback_api.services.shopify.credentials import ShopClientPool

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


@dataclass
class DispatchError:
    order_id: str
    order_name: str
    shop_domain: str
    error: str

    def as_dict(self) -> Dict[str, str]:
        return {
            "orderId": self.order_id,
            "orderName": self.order_name,
            "shopDomain": self.shop_domain,
            "error": self.error,
        }


@dataclass
class DispatchSummary:
    """Outcome of one sweep across every tenant it touched."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[DispatchError] = field(default_factory=list)

    def record(self, result: IssuanceResult) -> None:
        self.processed += 1
        if result.succeeded:
            self.succeeded += 1
            return
        self.failed += 1
        self.errors.append(
            DispatchError(
                order_id=result.order_id,
                order_name=result.order_name,
                shop_domain=result.shop_domain,
                error=result.error or "unknown error",
            )
        )

    def merge(self, other: "DispatchSummary") -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.errors.extend(other.errors)

    def as_dict(self) -> Dict[str, object]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": [error.as_dict() for error in self.errors],
        }


class RewardDispatchWorker:
    """Stateless sweep over due rewards, safe to run from several triggers at once.

    Exclusivity comes from the per-record claim in the store, not from any
    process-level guard, so the scheduler, the HTTP trigger and the CLI can
    overlap without double issuance.
    """

    # meta: worker: reward-dispatch

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        notifier: RewardNotifier | None = None,
        http_client: httpx.AsyncClient | None = None,
        client_provider: ClientProvider | None = None,
        batch_size: int | None = None,
        max_attempts: int | None = None,
        lease_seconds: int | None = None,
        tenant_concurrency: int | None = None,
        trigger_label: str | None = None,
        clock: Callable[[], datetime] | None = None,
        observability: RewardDispatchObservabilityStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._http_client = http_client
        self._client_provider = client_provider
        self.batch_size = batch_size or settings.reward_dispatch_batch_size
        self._max_attempts = settings.reward_dispatch_max_attempts if max_attempts is None else max_attempts
        self._lease = timedelta(seconds=lease_seconds or settings.reward_claim_lease_seconds)
        self._tenant_concurrency = max(tenant_concurrency or settings.reward_dispatch_tenant_concurrency, 1)
        self._trigger_label = trigger_label or settings.reward_dispatch_trigger_label
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._observability = observability or get_reward_dispatch_store()
        self._state = RewardStateUpdater(session_factory, max_attempts=self._max_attempts)

    async def run_once(self, *, shop_domain: str | None = None, triggered_by: str | None = None) -> DispatchSummary:
        """Issue every due reward once, for one shop or all of them."""

        trigger = triggered_by or self._trigger_label
        started_at = time.perf_counter()
        now = self._clock()
        summary = DispatchSummary()

        with get_tracer().start_as_current_span("reward_dispatch.sweep") as span:
            span.set_attribute("reward_dispatch.trigger", trigger)
            try:
                if shop_domain:
                    shops = [shop_domain]
                else:
                    session = await self._ensure_session()
                    async with session as managed_session:
                        shops = await due_shop_domains(managed_session, now=now)
            except Exception as exc:
                self._observability.record_sweep_error(str(exc))
                logger.exception("Reward dispatch sweep could not list shops", error=str(exc))
                raise

            async with ShopClientPool(self._session_factory, http_client=self._http_client) as pool:
                issuer = RewardIssuer(
                    state=self._state,
                    notifier=self._notifier or RewardNotifier(),
                    client_provider=self._client_provider or pool.get,
                    clock=self._clock,
                    observability=self._observability,
                )
                semaphore = asyncio.Semaphore(self._tenant_concurrency)
                tenant_summaries = await asyncio.gather(
                    *(self._sweep_shop(shop, issuer, semaphore, now) for shop in shops)
                )

            for tenant_summary in tenant_summaries:
                summary.merge(tenant_summary)
            span.set_attribute("reward_dispatch.processed", summary.processed)
            span.set_attribute("reward_dispatch.failed", summary.failed)

        runtime = time.perf_counter() - started_at
        self._observability.record_sweep(
            trigger=trigger,
            processed=summary.processed,
            succeeded=summary.succeeded,
            failed=summary.failed,
            runtime_seconds=runtime,
        )
        logger.info(
            "Reward dispatch sweep completed",
            trigger=trigger,
            shops=len(shops),
            processed=summary.processed,
            succeeded=summary.succeeded,
            failed=summary.failed,
            runtime_seconds=round(runtime, 3),
        )
        return summary

    async def _sweep_shop(
        self,
        shop_domain: str,
        issuer: RewardIssuer,
        semaphore: asyncio.Semaphore,
        now: datetime,
    ) -> DispatchSummary:
        summary = DispatchSummary()
        attempted: set[str] = set()
        async with semaphore:
            while True:
                try:
                    session = await self._ensure_session()
                    async with session as managed_session:
                        batch = await claim_due(
                            managed_session,
                            now=now,
                            limit=self.batch_size,
                            lease=self._lease,
                            shop_domain=shop_domain,
                            exclude=attempted,
                        )
                except Exception as exc:
                    self._observability.record_sweep_error(str(exc))
                    logger.exception("Claiming due rewards failed", shop_domain=shop_domain, error=str(exc))
                    break

                for reward in batch.rewards:
                    attempted.add(reward.order_id)
                    try:
                        # The batch lease may have run out while earlier records were issued.
                        if not await self._state.renew_claim(
                            reward.order_id,
                            batch.token,
                            now=self._clock(),
                            lease=self._lease,
                        ):
                            continue
                        result = await issuer.issue(reward)
                    except Exception as exc:
                        logger.exception(
                            "Reward processing aborted",
                            order_id=reward.order_id,
                            shop_domain=shop_domain,
                            error=str(exc),
                        )
                        result = IssuanceResult(
                            order_id=reward.order_id,
                            order_name=reward.order_name,
                            shop_domain=shop_domain,
                            succeeded=False,
                            error=str(exc) or type(exc).__name__,
                        )
                    summary.record(result)

                if len(batch) < self.batch_size:
                    break
        return summary

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["DispatchError", "DispatchSummary", "RewardDispatchWorker"]
