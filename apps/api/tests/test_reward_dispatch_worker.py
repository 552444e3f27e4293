from __future__ import annotations

import itertools
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from cashback_api.models.pending_reward import PendingReward
from cashback_api.services.notifications.backend import InMemoryEmailBackend
from cashback_api.services.notifications.service import RewardNotifier
from cashback_api.services.rewards import issuer as issuer_module
from cashback_api.services.rewards.intake import RewardIntakeService
from cashback_api.services.shopify.credentials import upsert_credential
from cashback_api.workers.reward_dispatch import DispatchSummary, RewardDispatchWorker
from conftest import INVALID_CUSTOMER_ERROR, ShopifyStub, as_utc, build_order_payload, discount_user_errors

SHOP = "demo-store.myshopify.com"
OTHER_SHOP = "other-store.myshopify.com"
BEFORE_DUE = datetime(2026, 1, 31, 9, 59, tzinfo=timezone.utc)
DUE = datetime(2026, 1, 31, 10, 0, 1, tzinfo=timezone.utc)


@pytest.fixture
def fixed_codes(monkeypatch):
    counter = itertools.count(1)

    def _generate(prefix: str, length: int) -> str:
        return f"{prefix}AB12CD{next(counter):02d}"

    monkeypatch.setattr(issuer_module, "generate_reward_code", _generate)


async def _schedule(session_factory, *, shop_domain: str = SHOP, **overrides) -> None:
    async with session_factory() as session:
        result = await RewardIntakeService(session).ingest(build_order_payload(**overrides), shop_domain=shop_domain)
    assert result.status == "created"


async def _install(session_factory, shop_domain: str = SHOP) -> None:
    async with session_factory() as session:
        await upsert_credential(session, shop_domain=shop_domain, access_token=f"shpat_{shop_domain[:5]}")
        await session.commit()


async def _load(session_factory, order_id: str = "5001") -> PendingReward:
    async with session_factory() as session:
        result = await session.execute(select(PendingReward).where(PendingReward.order_id == order_id))
        return result.scalar_one()


def _worker(
    session_factory,
    stub: ShopifyStub,
    *,
    now: datetime = DUE,
    backend: InMemoryEmailBackend | None = None,
    **kwargs,
) -> RewardDispatchWorker:
    return RewardDispatchWorker(
        session_factory,
        notifier=RewardNotifier(backend or InMemoryEmailBackend(), currency="USD"),
        http_client=stub.client(),
        clock=lambda: now,
        tenant_concurrency=1,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_reward_is_issued_once_after_its_dispatch_time(session_factory, shopify_stub, fixed_codes):
    await _schedule(session_factory)
    await _install(session_factory)
    backend = InMemoryEmailBackend()

    early = await _worker(session_factory, shopify_stub, now=BEFORE_DUE, backend=backend).run_once()
    assert early.processed == 0
    assert shopify_stub.requests == []

    summary = await _worker(session_factory, shopify_stub, backend=backend).run_once(triggered_by="manual")

    assert summary.as_dict() == {"processed": 1, "succeeded": 1, "failed": 0, "errors": []}

    reward = await _load(session_factory)
    assert reward.sent is True
    assert reward.issued_code == "CASHBACKAB12CD01"
    assert reward.discount_id == "gid://shopify/DiscountCodeNode/900"
    assert as_utc(reward.sent_at) == DUE
    assert reward.claim_token is None
    assert reward.last_error is None

    discount = shopify_stub.discount_requests[0]["variables"]["basicCodeDiscount"]
    assert discount["title"] == "Cashback $5.00 - Order #1001"
    assert discount["context"] == {"customers": {"add": ["gid://shopify/Customer/42"]}}
    assert discount["customerGets"]["value"]["discountAmount"]["amount"] == "5.00"
    assert shopify_stub.tag_requests[0]["variables"] == {
        "id": "gid://shopify/Customer/42",
        "tags": ["VIP-CASHBACK"],
    }

    assert len(backend.sent_messages) == 1
    message = backend.sent_messages[0]
    assert message["To"] == "jane@example.com"
    assert message["Subject"] == "You earned $5.00 cashback!"
    text_body = message.get_body(preferencelist=("plain",)).get_content()
    assert "CASHBACKAB12CD01" in text_body
    assert "Hi Jane," in text_body

    again = await _worker(session_factory, shopify_stub, now=DUE.replace(day=28, month=2)).run_once()
    assert again.processed == 0
    assert len(shopify_stub.discount_requests) == 1


@pytest.mark.asyncio
async def test_invalid_customer_falls_back_to_all_customers(
    session_factory,
    shopify_stub,
    fixed_codes,
    reset_reward_dispatch_store,
):
    await _schedule(session_factory)
    await _install(session_factory)
    shopify_stub.discount_responses.append(discount_user_errors(INVALID_CUSTOMER_ERROR))

    summary = await _worker(session_factory, shopify_stub).run_once()

    assert summary.succeeded == 1
    contexts = [body["variables"]["basicCodeDiscount"]["context"] for body in shopify_stub.discount_requests]
    assert contexts == [
        {"customers": {"add": ["gid://shopify/Customer/42"]}},
        {"all": "ALL"},
    ]
    assert shopify_stub.tag_requests == []
    assert (await _load(session_factory)).sent is True
    assert reset_reward_dispatch_store.snapshot().totals["scope_fallbacks"] == 1


@pytest.mark.asyncio
async def test_guest_reward_is_issued_for_all_customers(session_factory, shopify_stub, fixed_codes):
    await _schedule(session_factory, customer_id=None, first_name=None)
    await _install(session_factory)
    backend = InMemoryEmailBackend()

    summary = await _worker(session_factory, shopify_stub, backend=backend).run_once()

    assert summary.succeeded == 1
    assert len(shopify_stub.discount_requests) == 1
    assert shopify_stub.discount_requests[0]["variables"]["basicCodeDiscount"]["context"] == {"all": "ALL"}
    assert shopify_stub.tag_requests == []
    assert "Hi Valued Customer," in backend.sent_messages[0].get_body(preferencelist=("plain",)).get_content()


@pytest.mark.asyncio
async def test_failures_accumulate_until_a_later_sweep_succeeds(session_factory, shopify_stub, fixed_codes):
    await _schedule(session_factory)
    await _install(session_factory)
    shopify_stub.discount_responses.extend(
        [httpx.Response(500, json={"errors": "Internal"}) for _ in range(3)]
    )

    for attempt in range(1, 4):
        summary = await _worker(session_factory, shopify_stub).run_once()
        assert summary.failed == 1
        assert summary.errors[0].order_id == "5001"
        reward = await _load(session_factory)
        assert reward.sent is False
        assert reward.retry_count == attempt
        assert "500" in reward.last_error
        assert reward.claim_token is None

    summary = await _worker(session_factory, shopify_stub).run_once()

    assert summary.succeeded == 1
    reward = await _load(session_factory)
    assert reward.sent is True
    assert reward.retry_count == 3
    assert reward.last_error is None


@pytest.mark.asyncio
async def test_notification_failure_keeps_reward_sent(
    session_factory,
    shopify_stub,
    fixed_codes,
    reset_reward_dispatch_store,
):
    await _schedule(session_factory)
    await _install(session_factory)
    backend = InMemoryEmailBackend(fail_with=RuntimeError("mailbox unavailable"))

    summary = await _worker(session_factory, shopify_stub, backend=backend).run_once()

    assert summary.succeeded == 1
    reward = await _load(session_factory)
    assert reward.sent is True
    assert reward.issued_code == "CASHBACKAB12CD01"
    assert reset_reward_dispatch_store.snapshot().totals["notification_failures"] == 1


@pytest.mark.asyncio
async def test_tagging_failure_does_not_fail_issuance(
    session_factory,
    shopify_stub,
    fixed_codes,
    reset_reward_dispatch_store,
):
    await _schedule(session_factory)
    await _install(session_factory)
    shopify_stub.tag_responses.append(
        {"data": {"tagsAdd": {"node": None, "userErrors": [{"field": ["id"], "message": "Customer not found"}]}}}
    )

    summary = await _worker(session_factory, shopify_stub).run_once()

    assert summary.succeeded == 1
    assert (await _load(session_factory)).sent is True
    assert reset_reward_dispatch_store.snapshot().totals["tag_failures"] == 1


@pytest.mark.asyncio
async def test_missing_credential_records_retryable_failure(session_factory, shopify_stub, fixed_codes):
    await _schedule(session_factory)

    summary = await _worker(session_factory, shopify_stub).run_once()

    assert summary.failed == 1
    assert summary.errors[0].error == f"No active credential for shop {SHOP}"
    reward = await _load(session_factory)
    assert reward.sent is False
    assert reward.retry_count == 1
    assert shopify_stub.requests == []


@pytest.mark.asyncio
async def test_reward_is_parked_after_max_attempts(
    session_factory,
    shopify_stub,
    fixed_codes,
    reset_reward_dispatch_store,
):
    await _schedule(session_factory)
    await _install(session_factory)
    shopify_stub.discount_responses.extend([httpx.ReadTimeout("timed out"), httpx.ReadTimeout("timed out")])

    for _ in range(2):
        await _worker(session_factory, shopify_stub, max_attempts=2).run_once()

    reward = await _load(session_factory)
    assert reward.retry_count == 2
    assert reward.dead_lettered_at is not None

    summary = await _worker(session_factory, shopify_stub, max_attempts=2).run_once()
    assert summary.processed == 0
    assert len(shopify_stub.discount_requests) == 2
    assert reset_reward_dispatch_store.snapshot().totals["parked"] == 1


@pytest.mark.asyncio
async def test_one_tenant_failing_does_not_block_another(
    session_factory,
    shopify_stub,
    fixed_codes,
    reset_reward_dispatch_store,
):
    await _schedule(session_factory, shop_domain=SHOP, order_id=1, name="#1")
    await _schedule(session_factory, shop_domain=OTHER_SHOP, order_id=2, name="#2")
    await _install(session_factory, SHOP)

    summary = await _worker(session_factory, shopify_stub).run_once()

    assert summary.processed == 2
    assert summary.succeeded == 1
    assert summary.failed == 1
    assert summary.errors[0].shop_domain == OTHER_SHOP
    assert (await _load(session_factory, "1")).sent is True
    assert (await _load(session_factory, "2")).sent is False
    assert reset_reward_dispatch_store.snapshot().failures_by_shop == {OTHER_SHOP: 1}


@pytest.mark.asyncio
async def test_sweep_can_be_limited_to_one_shop(session_factory, shopify_stub, fixed_codes):
    await _schedule(session_factory, shop_domain=SHOP, order_id=1, name="#1")
    await _schedule(session_factory, shop_domain=OTHER_SHOP, order_id=2, name="#2")
    await _install(session_factory, SHOP)
    await _install(session_factory, OTHER_SHOP)

    summary = await _worker(session_factory, shopify_stub).run_once(shop_domain=OTHER_SHOP)

    assert summary.processed == 1
    assert (await _load(session_factory, "1")).sent is False
    assert (await _load(session_factory, "2")).sent is True


@pytest.mark.asyncio
async def test_batches_are_drained_within_one_sweep(session_factory, shopify_stub, fixed_codes):
    for order_id in range(1, 6):
        await _schedule(session_factory, order_id=order_id, name=f"#{order_id}")
    await _install(session_factory)

    summary = await _worker(session_factory, shopify_stub, batch_size=2).run_once()

    assert summary.processed == 5
    assert summary.succeeded == 5
    assert len({body["variables"]["basicCodeDiscount"]["code"] for body in shopify_stub.discount_requests}) == 5


@pytest.mark.asyncio
async def test_overlapping_sweep_never_issues_a_reward_twice(session_factory, shopify_stub, fixed_codes):
    for order_id, created_at in (("5001", "08:00"), ("5002", "09:00"), ("5003", "10:00")):
        await _schedule(
            session_factory,
            order_id=order_id,
            name=f"#{order_id}",
            created_at=f"2026-01-01T{created_at}:00Z",
        )
    await _install(session_factory)

    clock = {"now": DUE}
    creates = 0
    overlapping: list[DispatchSummary] = []

    async def slow_platform(request: httpx.Request) -> httpx.Response:
        nonlocal creates
        if "discountCodeBasicCreate" in json.loads(request.content)["query"]:
            creates += 1
            if creates == 1:
                # First issuance is slow; the batch lease runs out behind it.
                clock["now"] = DUE + timedelta(seconds=200)
            elif creates == 2:
                overlapping.append(await second.run_once(triggered_by="manual"))
        return shopify_stub.handler(request)

    def _sweep(clock_fn) -> RewardDispatchWorker:
        return RewardDispatchWorker(
            session_factory,
            notifier=RewardNotifier(InMemoryEmailBackend(), currency="USD"),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow_platform)),
            clock=clock_fn,
            lease_seconds=300,
            tenant_concurrency=1,
        )

    first = _sweep(lambda: clock["now"])
    second = _sweep(lambda: DUE + timedelta(seconds=400))

    summary = await first.run_once()

    # The in-flight reward kept its renewed lease; only the untouched one moved to the second sweep.
    assert summary.as_dict() == {"processed": 2, "succeeded": 2, "failed": 0, "errors": []}
    assert overlapping[0].as_dict() == {"processed": 1, "succeeded": 1, "failed": 0, "errors": []}
    assert len(shopify_stub.discount_requests) == 3

    issued = {order_id: (await _load(session_factory, order_id)).issued_code for order_id in ("5001", "5002", "5003")}
    assert issued == {
        "5001": "CASHBACKAB12CD01",
        "5002": "CASHBACKAB12CD02",
        "5003": "CASHBACKAB12CD03",
    }
