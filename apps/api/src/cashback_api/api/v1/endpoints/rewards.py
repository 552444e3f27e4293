"""Reward dispatch trigger and operator endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.api.dependencies.security import optional_dispatch_api_key_dependency
from cashback_api.db.session import async_session, get_session
from cashback_api.models.pending_reward import PendingReward
from cashback_api.schemas.rewards import DispatchErrorResponse, DispatchSummaryResponse, RewardStatusResponse
from cashback_api.services.rewards.exceptions import RewardStoreError
from cashback_api.services.rewards.store import get_reward, requeue_reward
from cashback_api.workers.reward_dispatch import RewardDispatchWorker

router = APIRouter(
    prefix="/rewards",
    tags=["rewards"],
    dependencies=[optional_dispatch_api_key_dependency()],
)


def get_reward_dispatch_worker(request: Request) -> RewardDispatchWorker:
    worker = getattr(request.app.state, "reward_dispatch_worker", None)
    if worker is None:
        worker = RewardDispatchWorker(async_session)
        request.app.state.reward_dispatch_worker = worker
    return worker


def _to_status(reward: PendingReward) -> RewardStatusResponse:
    if reward.sent:
        state = "sent"
    elif reward.dead_lettered_at is not None:
        state = "parked"
    else:
        state = "scheduled"
    return RewardStatusResponse(
        order_id=reward.order_id,
        order_name=reward.order_name,
        shop_domain=reward.shop_domain,
        reward_amount=reward.reward_amount,
        status=state,
        dispatch_at=reward.dispatch_at,
        sent_at=reward.sent_at,
        issued_code=reward.issued_code,
        retry_count=reward.retry_count,
        last_error=reward.last_error,
    )


async def _dispatch(worker: RewardDispatchWorker, shop: str | None, trigger: str) -> DispatchSummaryResponse:
    try:
        summary = await worker.run_once(shop_domain=shop, triggered_by=trigger)
    except RewardStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reward store unavailable",
        ) from exc
    return DispatchSummaryResponse(
        processed=summary.processed,
        succeeded=summary.succeeded,
        failed=summary.failed,
        errors=[
            DispatchErrorResponse(
                order_id=error.order_id,
                order_name=error.order_name,
                shop_domain=error.shop_domain,
                error=error.error,
            )
            for error in summary.errors
        ],
    )


@router.post("/dispatch", response_model=DispatchSummaryResponse)
async def trigger_dispatch(
    shop: str | None = Query(default=None, description="Limit the sweep to one shop domain"),
    trigger: str = Query(default="manual", max_length=64),
    worker: RewardDispatchWorker = Depends(get_reward_dispatch_worker),
) -> DispatchSummaryResponse:
    """Run a dispatch sweep now; the same path the scheduler uses."""

    return await _dispatch(worker, shop, trigger)


@router.get("/dispatch", response_model=DispatchSummaryResponse)
async def trigger_dispatch_get(
    shop: str | None = Query(default=None),
    trigger: str = Query(default="cron", max_length=64),
    worker: RewardDispatchWorker = Depends(get_reward_dispatch_worker),
) -> DispatchSummaryResponse:
    """GET variant for external cron services that cannot POST."""

    return await _dispatch(worker, shop, trigger)


@router.get("/{order_id}", response_model=RewardStatusResponse)
async def read_reward(order_id: str, db: AsyncSession = Depends(get_session)) -> RewardStatusResponse:
    reward = await get_reward(db, order_id)
    if reward is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reward not found")
    return _to_status(reward)


@router.post("/{order_id}/requeue", response_model=RewardStatusResponse)
async def requeue(order_id: str, db: AsyncSession = Depends(get_session)) -> RewardStatusResponse:
    """Return a parked reward to the schedule so the next sweep retries it."""

    try:
        reward = await get_reward(db, order_id)
        if reward is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reward not found")
        if reward.sent:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Reward already sent")
        if reward.dead_lettered_at is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Reward is not parked")
        reward = await requeue_reward(db, order_id)
    except RewardStoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _to_status(reward)
