"""Persistence helpers for pending rewards."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import AsyncIterator, Collection
from uuid import uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.models.pending_reward import PendingReward

from .exceptions import RewardStoreError


class InsertOutcome(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(slots=True)
class InsertResult:
    """Result container for idempotent reward inserts."""

    outcome: InsertOutcome
    reward: PendingReward

    @property
    def created(self) -> bool:
        return self.outcome is InsertOutcome.CREATED


@dataclass(slots=True)
class ClaimBatch:
    """Rewards leased to one dispatch sweep, ordered by ``dispatch_at``."""

    token: str
    claimed_until: datetime
    rewards: list[PendingReward] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rewards)


@asynccontextmanager
async def translate_store_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise database failures as :class:`RewardStoreError`."""

    try:
        yield
    except SQLAlchemyError as exc:
        raise RewardStoreError(f"{operation} failed: {exc}") from exc


def _due_conditions(now: datetime, shop_domain: str | None = None) -> list:
    conditions = [
        PendingReward.sent.is_(False),
        PendingReward.dead_lettered_at.is_(None),
        PendingReward.dispatch_at <= now,
        or_(PendingReward.claimed_until.is_(None), PendingReward.claimed_until <= now),
    ]
    if shop_domain:
        conditions.append(PendingReward.shop_domain == shop_domain)
    return conditions


async def get_reward(session: AsyncSession, order_id: str) -> PendingReward | None:
    async with translate_store_errors("get_reward"):
        result = await session.execute(select(PendingReward).where(PendingReward.order_id == order_id))
        return result.scalar_one_or_none()


async def insert_if_absent(session: AsyncSession, reward: PendingReward) -> InsertResult:
    """Add the reward unless one already exists for the same order.

    Concurrent deliveries of the same event race on the unique ``order_id``
    constraint; the loser re-reads the winner's row. The caller commits.
    """

    existing = await get_reward(session, reward.order_id)
    if existing is not None:
        return InsertResult(outcome=InsertOutcome.ALREADY_EXISTS, reward=existing)

    async with translate_store_errors("insert_if_absent"):
        session.add(reward)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            found = await get_reward(session, reward.order_id)
            if found is None:
                raise
            return InsertResult(outcome=InsertOutcome.ALREADY_EXISTS, reward=found)

    return InsertResult(outcome=InsertOutcome.CREATED, reward=reward)


async def select_due(
    session: AsyncSession,
    *,
    now: datetime,
    limit: int,
    shop_domain: str | None = None,
) -> list[PendingReward]:
    """Return unclaimed scheduled rewards whose dispatch time has passed, oldest first."""

    stmt = (
        select(PendingReward)
        .where(*_due_conditions(now, shop_domain))
        .order_by(PendingReward.dispatch_at.asc())
        .limit(limit)
    )
    async with translate_store_errors("select_due"):
        result = await session.execute(stmt)
        return list(result.scalars().all())


async def due_shop_domains(session: AsyncSession, *, now: datetime) -> list[str]:
    stmt = (
        select(PendingReward.shop_domain)
        .where(*_due_conditions(now))
        .distinct()
        .order_by(PendingReward.shop_domain)
    )
    async with translate_store_errors("due_shop_domains"):
        result = await session.execute(stmt)
        return [domain for domain in result.scalars().all()]


async def claim_due(
    session: AsyncSession,
    *,
    now: datetime,
    limit: int,
    lease: timedelta,
    shop_domain: str | None = None,
    exclude: Collection[str] = (),
) -> ClaimBatch:
    """Lease up to ``limit`` due rewards to the caller and commit the lease.

    Each candidate is claimed with a conditional update, so a row another
    sweep claimed first is skipped rather than processed twice. Rewards in
    ``exclude`` (already attempted by this sweep) are not considered.
    """

    token = uuid4().hex
    claimed_until = now + lease
    candidates = (
        select(PendingReward.order_id)
        .where(*_due_conditions(now, shop_domain))
        .order_by(PendingReward.dispatch_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    if exclude:
        candidates = candidates.where(PendingReward.order_id.not_in(list(exclude)))

    async with translate_store_errors("claim_due"):
        order_ids = list((await session.execute(candidates)).scalars().all())
        claimed: list[str] = []
        for order_id in order_ids:
            stmt = (
                update(PendingReward)
                .where(PendingReward.order_id == order_id, *_due_conditions(now))
                .values(claim_token=token, claimed_until=claimed_until)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 1:
                claimed.append(order_id)
        await session.commit()

        if not claimed:
            return ClaimBatch(token=token, claimed_until=claimed_until)

        rows = await session.execute(
            select(PendingReward)
            .where(PendingReward.claim_token == token)
            .order_by(PendingReward.dispatch_at.asc())
            .execution_options(populate_existing=True)
        )
        return ClaimBatch(token=token, claimed_until=claimed_until, rewards=list(rows.scalars().all()))


async def requeue_reward(session: AsyncSession, order_id: str) -> PendingReward | None:
    """Return a parked reward to the schedule.

    Only parked rewards change. Sent rewards and rewards still on the
    schedule, including ones a sweep currently holds a claim on, are
    returned untouched.
    """

    async with translate_store_errors("requeue_reward"):
        reward = await get_reward(session, order_id)
        if reward is None or reward.sent or reward.dead_lettered_at is None:
            return reward
        await session.execute(
            update(PendingReward)
            .where(
                PendingReward.order_id == order_id,
                PendingReward.sent.is_(False),
                PendingReward.dead_lettered_at.is_not(None),
            )
            .values(dead_lettered_at=None, claim_token=None, claimed_until=None)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        result = await session.execute(
            select(PendingReward)
            .where(PendingReward.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


__all__ = [
    "ClaimBatch",
    "InsertOutcome",
    "InsertResult",
    "claim_due",
    "due_shop_domains",
    "get_reward",
    "insert_if_absent",
    "requeue_reward",
    "select_due",
    "translate_store_errors",
]
