from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.db.session import get_session
from cashback_api.observability.rewards import get_reward_dispatch_store

router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent sweep")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/healthz", include_in_schema=False)
async def service_health_alias() -> dict[str, str]:
    """Backward-compatible alias under /health."""

    return await service_health()


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except Exception as exc:
        logger.warning("Readiness database probe failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"

    snapshot = get_reward_dispatch_store().snapshot()
    last_error_at = snapshot.last_error_at.isoformat() if snapshot.last_error_at else None
    last_success_at = snapshot.last_sweep_at.isoformat() if snapshot.last_sweep_at else None

    scheduler = getattr(request.app.state, "reward_dispatch_scheduler", None)
    if settings.reward_dispatch_scheduler_enabled and scheduler is not None:
        running = bool(getattr(scheduler, "is_running", False))
        scheduler_status: Literal["ready", "starting", "disabled", "error"] = "ready" if running else "starting"
        detail = f"cron {scheduler.cron}" if running else "Reward dispatch scheduler not running"
        if not running:
            status = "degraded" if status != "error" else status
        components["reward_dispatch"] = ComponentStatus(
            status=scheduler_status,
            detail=detail,
            last_error_at=last_error_at,
            last_success_at=last_success_at,
        )
    else:
        components["reward_dispatch"] = ComponentStatus(
            status="disabled",
            detail="Scheduler disabled via settings; sweeps run through the dispatch endpoint or CLI",
            last_error_at=last_error_at,
            last_success_at=last_success_at,
        )

    if snapshot.totals.get("sweep_errors", 0) and components["reward_dispatch"].status != "disabled":
        components["reward_dispatch"].status = "degraded"
        components["reward_dispatch"].detail = snapshot.last_error
        status = "degraded" if status == "ready" else status

    return ReadinessPayload(status=status, components=components)


@router.get("/health/readyz", include_in_schema=False)
async def service_readiness_alias(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    """Backward-compatible alias for readiness checks under /health."""

    return await service_readiness(request, session)
