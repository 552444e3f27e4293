from __future__ import annotations

from fastapi import APIRouter

from cashback_api.api.dependencies.security import optional_dispatch_api_key_dependency
from cashback_api.observability.rewards import get_reward_dispatch_store

router = APIRouter(
    prefix="/observability",
    tags=["observability"],
    dependencies=[optional_dispatch_api_key_dependency()],
)


@router.get("/rewards", summary="Reward dispatch counters since process start")
async def reward_dispatch_metrics() -> dict[str, object]:
    return get_reward_dispatch_store().snapshot().as_dict()
