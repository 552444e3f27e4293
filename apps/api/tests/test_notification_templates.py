from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from cashback_api.services.notifications.backend import InMemoryEmailBackend
from cashback_api.services.notifications.service import RewardNotifier
from cashback_api.services.notifications.templates import format_currency, render_cashback_reward
from cashback_api.services.rewards.exceptions import NotificationError

EXPIRES_AT = datetime(2027, 1, 31, 10, 0, tzinfo=timezone.utc)


def test_render_cashback_reward_includes_code_and_expiry():
    rendered = render_cashback_reward(
        customer_name="Jane",
        order_name="#1001",
        amount=Decimal("5.00"),
        currency="USD",
        code="CASHBACKAB12CD34",
        expires_at=EXPIRES_AT,
        store_url="https://demo-store.myshopify.com",
    )

    assert rendered.subject == "You earned $5.00 cashback!"
    assert "Hi Jane," in rendered.text_body
    assert "Code: CASHBACKAB12CD34" in rendered.text_body
    assert "Valid until: January 31, 2027" in rendered.text_body
    assert "https://demo-store.myshopify.com" in rendered.text_body
    assert "CASHBACKAB12CD34" in rendered.html_body
    assert "<strong>#1001</strong>" in rendered.html_body


def test_render_cashback_reward_escapes_customer_name():
    rendered = render_cashback_reward(
        customer_name="<script>alert(1)</script>",
        order_name="#1001",
        amount=Decimal("1.67"),
        currency="USD",
        code="CASHBACKAB12CD34",
        expires_at=EXPIRES_AT,
        store_url="https://demo-store.myshopify.com",
    )

    assert "<script>" not in rendered.html_body
    assert "&lt;script&gt;" in rendered.html_body


@pytest.mark.parametrize(
    ("amount", "currency", "expected"),
    [
        (Decimal("5"), "USD", "$5.00"),
        (Decimal("12.5"), "eur", "€12.50"),
        (Decimal("3.10"), "SEK", "3.10 SEK"),
    ],
)
def test_format_currency(amount, currency, expected):
    assert format_currency(amount, currency) == expected


@pytest.mark.asyncio
async def test_notifier_wraps_backend_failures():
    notifier = RewardNotifier(InMemoryEmailBackend(fail_with=ConnectionError("refused")), currency="USD")
    rendered = render_cashback_reward(
        customer_name="Jane",
        order_name="#1001",
        amount=Decimal("5.00"),
        currency="USD",
        code="CASHBACKAB12CD34",
        expires_at=EXPIRES_AT,
        store_url="https://demo-store.myshopify.com",
    )

    with pytest.raises(NotificationError):
        await notifier.send("jane@example.com", rendered)

    assert notifier.sent_events == []
    assert notifier.provider == "memory"


@pytest.mark.asyncio
async def test_notifier_keeps_only_recent_events():
    notifier = RewardNotifier(InMemoryEmailBackend(), currency="USD", event_history=2)
    rendered = render_cashback_reward(
        customer_name="Jane",
        order_name="#1001",
        amount=Decimal("5.00"),
        currency="USD",
        code="CASHBACKAB12CD34",
        expires_at=EXPIRES_AT,
        store_url="https://demo-store.myshopify.com",
    )

    for recipient in ("a@example.com", "b@example.com", "c@example.com"):
        await notifier.send(recipient, rendered)

    assert [event.recipient for event in notifier.sent_events] == ["b@example.com", "c@example.com"]
