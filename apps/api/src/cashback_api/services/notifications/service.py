"""Reward notification delivery."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from loguru import logger

from cashback_api.core.settings import get_settings
from cashback_api.models.pending_reward import PendingReward
from cashback_api.services.rewards.exceptions import NotificationError

from .backend import EmailBackend, build_email_backend
from .templates import RenderedTemplate, render_cashback_reward, store_url_for

DEFAULT_EVENT_HISTORY = 200


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    subject: str
    event_type: str
    metadata: dict[str, Any]


class RewardNotifier:
    """Sends reward emails through a pluggable backend.

    Every backend failure surfaces as :class:`NotificationError`; callers
    decide whether that matters.
    """

    def __init__(
        self,
        backend: Optional[EmailBackend] = None,
        *,
        currency: str | None = None,
        event_history: int = DEFAULT_EVENT_HISTORY,
    ) -> None:
        settings = get_settings()
        self._backend = backend or build_email_backend(settings)
        self._currency = currency or settings.reward_currency
        self._events: deque[NotificationEvent] = deque(maxlen=event_history)

    @property
    def provider(self) -> str:
        return getattr(self._backend, "provider", type(self._backend).__name__)

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Most recent deliveries, oldest first."""

        return list(self._events)

    async def send(
        self,
        destination: str,
        rendered: RenderedTemplate,
        *,
        event_type: str = "reward_issued",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._backend.send_email(
                destination,
                rendered.subject,
                rendered.text_body,
                body_html=rendered.html_body,
            )
        except Exception as exc:
            raise NotificationError(f"{self.provider} delivery to {destination} failed: {exc}") from exc

        self._events.append(
            NotificationEvent(
                recipient=destination,
                subject=rendered.subject,
                event_type=event_type,
                metadata=metadata or {},
            )
        )
        logger.info("Notification sent", recipient=destination, event_type=event_type, provider=self.provider)

    async def notify_reward(self, reward: PendingReward, *, code: str, expires_at: datetime) -> None:
        rendered = render_cashback_reward(
            customer_name=reward.customer_name,
            order_name=reward.order_name,
            amount=reward.reward_amount,
            currency=self._currency,
            code=code,
            expires_at=expires_at,
            store_url=store_url_for(reward.shop_domain),
        )
        await self.send(
            reward.customer_email,
            rendered,
            metadata={"order_id": reward.order_id, "code": code, "shop_domain": reward.shop_domain},
        )


__all__ = ["NotificationEvent", "RewardNotifier"]
