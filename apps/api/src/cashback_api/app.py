from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from cashback_api.core.settings import settings
from cashback_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import RewardDispatchScheduler
from .services.notifications import RewardNotifier
from .workers import RewardDispatchWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    notifier = RewardNotifier()
    dispatch_worker = RewardDispatchWorker(
        session_factory=_session_factory,
        notifier=notifier,
        batch_size=settings.reward_dispatch_batch_size,
        max_attempts=settings.reward_dispatch_max_attempts,
        lease_seconds=settings.reward_claim_lease_seconds,
    )
    dispatch_scheduler = RewardDispatchScheduler(
        dispatch_worker,
        cron=settings.resolved_reward_dispatch_cron,
        timezone=settings.reward_dispatch_timezone,
    )

    app.state.reward_dispatch_worker = dispatch_worker
    app.state.reward_dispatch_scheduler = dispatch_scheduler

    scheduler_enabled = settings.reward_dispatch_scheduler_enabled
    if scheduler_enabled:
        dispatch_scheduler.start()
        logger.info(
            "Reward dispatch scheduler enabled",
            cron=dispatch_scheduler.cron,
            email_provider=notifier.provider,
        )
    else:
        logger.info(
            "Reward dispatch scheduler disabled",
            reason="reward_dispatch_scheduler_enabled is false",
        )

    try:
        yield
    finally:
        if scheduler_enabled and dispatch_scheduler.is_running:
            await dispatch_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the cashback rewards service."""
    configure_logging(
        service_name="cashback-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Cashback Rewards API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="cashback-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
