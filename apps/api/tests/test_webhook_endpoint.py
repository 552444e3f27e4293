from __future__ import annotations

import json

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from cashback_api.api.dependencies.security import compute_shopify_hmac
from cashback_api.core.settings import settings
from cashback_api.models.pending_reward import PendingReward
from cashback_api.services.rewards.exceptions import RewardStoreError
from cashback_api.services.rewards.intake import RewardIntakeService
from conftest import build_order_payload

WEBHOOK_PATH = "/api/v1/webhooks/shopify/orders-create"
SHOP_HEADERS = {
    "Content-Type": "application/json",
    "X-Shopify-Shop-Domain": "demo-store.myshopify.com",
    "X-Shopify-Webhook-Id": "wh-1",
}


async def _count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(PendingReward))).scalar_one()


@pytest.mark.asyncio
async def test_protected_order_is_scheduled_once(app_with_db):
    app, session_factory = app_with_db
    body = json.dumps(build_order_payload())

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        first = await client.post(WEBHOOK_PATH, content=body, headers=SHOP_HEADERS)
        second = await client.post(WEBHOOK_PATH, content=body, headers=SHOP_HEADERS)

    assert first.status_code == 200
    assert first.json() == {"status": "created", "orderId": "5001", "detail": None}
    assert second.status_code == 200
    assert second.json()["status"] == "duplicate"
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_unprotected_order_is_acknowledged_and_skipped(app_with_db):
    app, session_factory = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            WEBHOOK_PATH,
            content=json.dumps(build_order_payload(protection=False)),
            headers=SHOP_HEADERS,
        )

    assert response.status_code == 200
    assert response.json()["status"] == "skipped"
    assert await _count(session_factory) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        "{not json",
        json.dumps(build_order_payload(order_id="")),
        json.dumps(build_order_payload(email=None)),
        json.dumps(build_order_payload(total_price="10000000000000000000000000000000.00")),
    ],
)
async def test_malformed_events_are_rejected_without_retry(app_with_db, body):
    app, session_factory = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(WEBHOOK_PATH, content=body, headers=SHOP_HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert await _count(session_factory) == 0


@pytest.mark.asyncio
async def test_signature_is_enforced_when_secret_configured(app_with_db, monkeypatch):
    app, session_factory = app_with_db
    monkeypatch.setattr(settings, "shopify_api_secret", "hush")
    body = json.dumps(build_order_payload()).encode("utf-8")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        forged = await client.post(
            WEBHOOK_PATH,
            content=body,
            headers={**SHOP_HEADERS, "X-Shopify-Hmac-Sha256": compute_shopify_hmac(body, "wrong")},
        )
        unsigned = await client.post(WEBHOOK_PATH, content=body, headers=SHOP_HEADERS)
        signed = await client.post(
            WEBHOOK_PATH,
            content=body,
            headers={**SHOP_HEADERS, "X-Shopify-Hmac-Sha256": compute_shopify_hmac(body, "hush")},
        )

    assert forged.status_code == 401
    assert unsigned.status_code == 401
    assert signed.status_code == 200
    assert signed.json()["status"] == "created"
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_store_outage_asks_platform_to_retry(app_with_db, monkeypatch):
    app, _ = app_with_db

    async def _unavailable(self, payload, *, shop_domain=None):
        raise RewardStoreError("insert_if_absent failed: database is locked")

    monkeypatch.setattr(RewardIntakeService, "ingest", _unavailable)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            WEBHOOK_PATH,
            content=json.dumps(build_order_payload()),
            headers=SHOP_HEADERS,
        )

    assert response.status_code == 503
