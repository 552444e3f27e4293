"""Terminal and retry transitions for pending rewards."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Awaitable, Callable

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.models.pending_reward import PendingReward

from .store import translate_store_errors

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]

_MAX_ERROR_LENGTH = 2000


class RewardStateUpdater:
    """Apply single-row state changes, each committed in its own transaction."""

    def __init__(self, session_factory: SessionFactory, *, max_attempts: int | None = None) -> None:
        self._session_factory = session_factory
        self.max_attempts = settings.reward_dispatch_max_attempts if max_attempts is None else max_attempts

    async def renew_claim(self, order_id: str, claim_token: str, *, now: datetime, lease: timedelta) -> bool:
        """Extend this sweep's lease on a reward right before it is issued.

        Returns ``False`` when the claim expired and another sweep took the
        reward over, or the reward was sent or parked in the meantime; the
        caller must then leave the reward alone.
        """

        stmt = (
            update(PendingReward)
            .where(
                PendingReward.order_id == order_id,
                PendingReward.claim_token == claim_token,
                PendingReward.sent.is_(False),
                PendingReward.dead_lettered_at.is_(None),
            )
            .values(claimed_until=now + lease)
            .execution_options(synchronize_session=False)
        )
        async with translate_store_errors("renew_claim"):
            session = await self._ensure_session()
            async with session as managed_session:
                result = await managed_session.execute(stmt)
                await managed_session.commit()

        renewed = result.rowcount == 1
        if not renewed:
            logger.warning("Reward claim lost to another sweep", order_id=order_id, claim_token=claim_token)
        return renewed

    async def mark_sent(
        self,
        order_id: str,
        *,
        code: str,
        sent_at: datetime,
        discount_id: str | None = None,
        claim_token: str | None = None,
    ) -> bool:
        """Record a successful issuance. Returns ``False`` when the reward was already sent.

        The code already exists on the platform at this point, so an expired or
        superseded claim does not block the update. A newer claim is
        released with it, and that sweep's :meth:`renew_claim`
        then fails before it creates a second code.
        """

        stmt = (
            update(PendingReward)
            .where(PendingReward.order_id == order_id, PendingReward.sent.is_(False))
            .values(
                sent=True,
                sent_at=sent_at,
                issued_code=code,
                discount_id=discount_id,
                last_error=None,
                claim_token=None,
                claimed_until=None,
            )
            .execution_options(synchronize_session=False)
        )
        async with translate_store_errors("mark_sent"):
            session = await self._ensure_session()
            async with session as managed_session:
                result = await managed_session.execute(stmt)
                await managed_session.commit()

        applied = result.rowcount == 1
        if not applied:
            logger.warning("Reward already marked sent", order_id=order_id, code=code, claim_token=claim_token)
        return applied

    async def mark_failed(
        self,
        order_id: str,
        error: str,
        *,
        failed_at: datetime,
        claim_token: str | None = None,
    ) -> PendingReward | None:
        """Count a failed attempt, release the claim and park the reward once retries run out.

        With ``claim_token`` the update only applies while that claim still
        holds the reward, so a stale sweep never releases a newer sweep's claim.
        """

        message = error[:_MAX_ERROR_LENGTH]
        owned = [PendingReward.order_id == order_id, PendingReward.sent.is_(False)]
        if claim_token is not None:
            owned.append(PendingReward.claim_token == claim_token)
        async with translate_store_errors("mark_failed"):
            session = await self._ensure_session()
            async with session as managed_session:
                counted = await managed_session.execute(
                    update(PendingReward)
                    .where(*owned)
                    .values(
                        retry_count=PendingReward.retry_count + 1,
                        last_error=message,
                        claim_token=None,
                        claimed_until=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                if counted.rowcount == 1 and self.max_attempts > 0:
                    await managed_session.execute(
                        update(PendingReward)
                        .where(
                            PendingReward.order_id == order_id,
                            PendingReward.sent.is_(False),
                            PendingReward.retry_count >= self.max_attempts,
                            PendingReward.dead_lettered_at.is_(None),
                        )
                        .values(dead_lettered_at=failed_at)
                        .execution_options(synchronize_session=False)
                    )
                await managed_session.commit()
                result = await managed_session.execute(
                    select(PendingReward).where(PendingReward.order_id == order_id)
                )
                reward = result.scalar_one_or_none()

        if reward is not None and reward.dead_lettered_at is not None:
            logger.error(
                "Reward parked after exhausting retries",
                order_id=order_id,
                retry_count=reward.retry_count,
                last_error=message,
            )
        return reward

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["RewardStateUpdater"]
