"""Notification templates for reward emails."""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def format_currency(amount: Decimal, currency: str) -> str:
    symbols = {
        "EUR": "€",
        "USD": "$",
        "GBP": "£",
        "CAD": "CA$",
        "AUD": "A$",
    }
    symbol = symbols.get(currency.upper(), "")
    numeric = f"{amount:.2f}"
    return f"{symbol}{numeric}" if symbol else f"{numeric} {currency.upper()}"


def store_url_for(shop_domain: str) -> str:
    return f"https://{shop_domain}"


def render_cashback_reward(
    *,
    customer_name: str,
    order_name: str,
    amount: Decimal,
    currency: str,
    code: str,
    expires_at: datetime,
    store_url: str,
) -> RenderedTemplate:
    formatted_amount = format_currency(amount, currency)
    expiry = expires_at.strftime("%B %d, %Y")
    subject = f"You earned {formatted_amount} cashback!"

    text_lines = [
        f"Hi {customer_name},",
        "",
        f"Thanks for protecting order {order_name}. Your {formatted_amount} cashback is ready.",
        "",
        f"Code: {code}",
        f"Valid until: {expiry}",
        "",
        f"Use it on your next purchase at {store_url}.",
        "The code can be redeemed once.",
    ]

    escaped_name = html.escape(customer_name)
    html_body = (
        "<html><body style=\"font-family:Arial,sans-serif;color:#1f2933\">"
        f"<p>Hi {escaped_name},</p>"
        f"<p>Thanks for protecting order <strong>{html.escape(order_name)}</strong>. "
        f"Your <strong>{html.escape(formatted_amount)}</strong> cashback is ready.</p>"
        "<p style=\"font-size:22px;letter-spacing:2px;padding:12px 16px;border:1px dashed #52606d;"
        f"display:inline-block\">{html.escape(code)}</p>"
        f"<p>Valid until {html.escape(expiry)}. The code can be redeemed once.</p>"
        f"<p><a href=\"{html.escape(store_url, quote=True)}\">Shop now</a></p>"
        "</body></html>"
    )

    return RenderedTemplate(subject=subject, text_body="\n".join(text_lines), html_body=html_body)


__all__ = ["RenderedTemplate", "format_currency", "render_cashback_reward", "store_url_for"]
