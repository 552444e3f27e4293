"""Shopify webhook intake."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Header, HTTPException, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.api.dependencies.security import verify_shopify_webhook
from cashback_api.db.session import get_session
from cashback_api.schemas.rewards import WebhookAck
from cashback_api.services.rewards.exceptions import RewardStoreError, RewardValidationError
from cashback_api.services.rewards.intake import RewardIntakeService

router = APIRouter(prefix="/webhooks/shopify", tags=["shopify-webhooks"])


@router.post("/orders-create", response_model=WebhookAck)
async def orders_create_webhook(
    body: bytes = Depends(verify_shopify_webhook),
    shop_domain: str | None = Header(None, alias="X-Shopify-Shop-Domain"),
    webhook_id: str | None = Header(None, alias="X-Shopify-Webhook-Id"),
    db: AsyncSession = Depends(get_session),
) -> WebhookAck:
    """Schedule a delayed reward for protected orders.

    Malformed events are acknowledged as ``rejected`` so the platform stops
    redelivering them; datastore outages answer 503 so it retries.
    """

    try:
        payload = json.loads(body or b"null")
    except ValueError:
        logger.warning("Rejected webhook with invalid JSON", webhook_id=webhook_id, shop_domain=shop_domain)
        return WebhookAck(status="rejected", detail="Invalid JSON body")

    service = RewardIntakeService(db)
    try:
        result = await service.ingest(payload, shop_domain=shop_domain)
    except RewardValidationError as exc:
        logger.warning("Rejected order event", webhook_id=webhook_id, shop_domain=shop_domain, error=str(exc))
        return WebhookAck(status="rejected", detail=str(exc))
    except RewardStoreError as exc:
        logger.exception("Reward store unavailable during intake", webhook_id=webhook_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reward store unavailable",
        ) from exc

    order_id = result.reward.order_id if result.reward is not None else None
    return WebhookAck(status=result.status, order_id=order_id, detail=result.reason)
