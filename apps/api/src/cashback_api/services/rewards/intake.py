"""Turn qualifying order events into scheduled rewards."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Literal, Sequence

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.models.pending_reward import PendingReward
from cashback_api.schemas.order_event import OrderCreatedEvent

from .exceptions import RewardValidationError
from .store import InsertOutcome, insert_if_absent, translate_store_errors

_CENTS = Decimal("0.01")
# Largest value the Numeric(12, 2) reward_amount column holds.
_MAX_AMOUNT = Decimal("9999999999.99")

IntakeStatus = Literal["created", "duplicate", "skipped"]


@dataclass(slots=True)
class IntakeResult:
    status: IntakeStatus
    reward: PendingReward | None = None
    reason: str | None = None


def quantize_amount(value: Decimal) -> Decimal:
    """Round to cents, raising :class:`RewardValidationError` for amounts the store cannot hold."""

    try:
        amount = value.quantize(_CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise RewardValidationError(f"Reward amount {value} is out of range") from exc
    if amount > _MAX_AMOUNT:
        raise RewardValidationError(f"Reward amount {amount} is out of range")
    return amount


def parse_order_event(payload: Any) -> OrderCreatedEvent:
    """Validate a raw webhook body, raising :class:`RewardValidationError` on bad input."""

    if not isinstance(payload, dict):
        raise RewardValidationError("Order payload must be a JSON object")
    try:
        return OrderCreatedEvent.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
        raise RewardValidationError(f"Invalid order payload: {', '.join(fields)}") from exc


def is_protection_opted_in(
    event: OrderCreatedEvent,
    *,
    attribute: str,
    keywords: Sequence[str],
) -> bool:
    """An order opts in through the checkout attribute or a protection line item."""

    flag = event.attribute(attribute)
    if flag is not None and flag.strip().lower() == "true":
        return True
    for item in event.line_items:
        text = item.searchable_text()
        if any(keyword in text for keyword in keywords):
            return True
    return False


def compute_reward_amount(event: OrderCreatedEvent, *, percent: Decimal, attribute: str) -> Decimal:
    """Prefer the precomputed checkout amount, else a percentage of the order total."""

    explicit = event.attribute(attribute)
    if explicit is not None:
        try:
            amount = Decimal(explicit.strip())
        except (InvalidOperation, ValueError):
            logger.warning("Ignoring malformed cashback attribute", order_id=event.id, value=explicit)
        else:
            if amount.is_finite() and amount > 0:
                return quantize_amount(amount)
            logger.warning("Ignoring non-positive cashback attribute", order_id=event.id, value=explicit)

    total = event.total_price or Decimal("0")
    return quantize_amount(total * percent / Decimal("100"))


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RewardIntakeService:
    """Schedule a delayed reward for each protection-enabled order."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        cashback_percent: Decimal | None = None,
        dispatch_delay: timedelta | None = None,
        protection_keywords: Sequence[str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._percent = settings.reward_cashback_percent if cashback_percent is None else cashback_percent
        self._delay = settings.reward_dispatch_delay if dispatch_delay is None else dispatch_delay
        self._keywords = [
            keyword.lower()
            for keyword in (settings.reward_protection_keywords if protection_keywords is None else protection_keywords)
        ]
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def ingest(self, payload: Any, *, shop_domain: str | None = None) -> IntakeResult:
        event = parse_order_event(payload)

        if not is_protection_opted_in(
            event,
            attribute=settings.reward_protection_attribute,
            keywords=self._keywords,
        ):
            logger.debug("Order skipped: protection not selected", order_id=event.id)
            return IntakeResult(status="skipped", reason="not_opted_in")

        email = event.resolved_email
        if not email:
            raise RewardValidationError(f"Order {event.id} has no customer email")

        shop = (shop_domain or event.shop_domain or "").strip().lower()
        if not shop:
            raise RewardValidationError(f"Order {event.id} has no shop domain")

        amount = compute_reward_amount(event, percent=self._percent, attribute=settings.reward_amount_attribute)
        if amount <= 0:
            logger.info("Order skipped: reward amount is zero", order_id=event.id, total_price=event.total_price)
            return IntakeResult(status="skipped", reason="zero_amount")

        now = self._clock()
        order_created_at = _utc(event.created_at) if event.created_at else now
        customer = event.customer
        reward = PendingReward(
            order_id=event.id,
            order_name=event.resolved_name,
            customer_email=email,
            customer_name=(customer.first_name if customer and customer.first_name else None)
            or settings.reward_default_customer_name,
            customer_id=customer.id if customer else None,
            reward_amount=amount,
            shop_domain=shop,
            order_created_at=order_created_at,
            dispatch_at=order_created_at + self._delay,
            sent=False,
            retry_count=0,
        )

        recorded = await insert_if_absent(self._session, reward)
        if recorded.outcome is InsertOutcome.ALREADY_EXISTS:
            logger.info("Duplicate order event ignored", order_id=event.id, shop_domain=shop)
            return IntakeResult(status="duplicate", reward=recorded.reward)

        async with translate_store_errors("commit reward"):
            await self._session.commit()

        logger.info(
            "Reward scheduled",
            order_id=event.id,
            order_name=reward.order_name,
            shop_domain=shop,
            reward_amount=str(amount),
            dispatch_at=reward.dispatch_at.isoformat(),
        )
        return IntakeResult(status="created", reward=recorded.reward)


__all__ = [
    "IntakeResult",
    "RewardIntakeService",
    "compute_reward_amount",
    "is_protection_opted_in",
    "parse_order_event",
    "quantize_amount",
]
