"""Issue a single reward: create the code, record it, tag and notify."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from loguru import logger

from cashback_api.core.settings import settings
from cashback_api.models.pending_reward import PendingReward
from cashback_api.observability.rewards import RewardDispatchObservabilityStore, get_reward_dispatch_store
from cashback_api.services.notifications.service import RewardNotifier
from cashback_api.services.notifications.templates import format_currency
from cashback_api.services.shopify.client import CreatedDiscountCode, DiscountCodeRequest, ShopifyAdminClient

from .exceptions import InvalidCustomerScopeError, NotificationError, RetryableIssuanceError, RewardStoreError
from .state import RewardStateUpdater

ClientProvider = Callable[[str], Awaitable[ShopifyAdminClient]]

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reward_code(prefix: str, length: int) -> str:
    return prefix + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


@dataclass(slots=True)
class IssuanceResult:
    order_id: str
    order_name: str
    shop_domain: str
    succeeded: bool
    code: str | None = None
    error: str | None = None
    fallback_used: bool = False
    notified: bool = False
    parked: bool = False


class RewardIssuer:
    """Runs one issuance attempt per call and never lets a record's failure escape.

    Database failures while recording the outcome are the exception: they
    propagate so the sweep can report them, and the record's claim lease
    lets a later sweep pick it up again.
    """

    def __init__(
        self,
        *,
        state: RewardStateUpdater,
        notifier: RewardNotifier,
        client_provider: ClientProvider,
        code_prefix: str | None = None,
        code_length: int | None = None,
        expiry_days: int | None = None,
        vip_tag: str | None = None,
        currency: str | None = None,
        code_generator: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
        observability: RewardDispatchObservabilityStore | None = None,
    ) -> None:
        self._state = state
        self._notifier = notifier
        self._client_provider = client_provider
        prefix = settings.reward_code_prefix if code_prefix is None else code_prefix
        length = code_length or settings.reward_code_length
        self._code_generator = code_generator or (lambda: generate_reward_code(prefix, length))
        self._expiry = timedelta(days=expiry_days or settings.reward_code_expiry_days)
        self._vip_tag = settings.reward_vip_tag if vip_tag is None else vip_tag
        self._currency = currency or settings.reward_currency
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._observability = observability or get_reward_dispatch_store()

    async def issue(self, reward: PendingReward) -> IssuanceResult:
        result = IssuanceResult(
            order_id=reward.order_id,
            order_name=reward.order_name,
            shop_domain=reward.shop_domain,
            succeeded=False,
        )
        now = self._clock()
        request = DiscountCodeRequest(
            code=self._code_generator(),
            title=f"Cashback {format_currency(reward.reward_amount, self._currency)} - Order {reward.order_name}",
            amount=reward.reward_amount,
            starts_at=now,
            ends_at=now + self._expiry,
            customer_id=reward.customer_id or None,
        )

        try:
            client = await self._client_provider(reward.shop_domain)
            created = await self._create_code(client, request, result)
        except RewardStoreError:
            raise
        except Exception as exc:
            return await self._record_failure(reward, result, exc)

        try:
            applied = await self._state.mark_sent(
                reward.order_id,
                code=created.code,
                discount_id=created.discount_id,
                sent_at=self._clock(),
                claim_token=reward.claim_token,
            )
        except RewardStoreError:
            logger.error(
                "Discount created but reward could not be marked sent",
                order_id=reward.order_id,
                code=created.code,
                discount_id=created.discount_id,
            )
            raise

        if not applied:
            result.error = "Reward was already sent by another sweep"
            logger.error(
                "Discount created for a reward that is already sent",
                order_id=reward.order_id,
                code=created.code,
                discount_id=created.discount_id,
            )
            return result

        result.succeeded = True
        result.code = created.code
        logger.info(
            "Reward issued",
            order_id=reward.order_id,
            shop_domain=reward.shop_domain,
            fallback_used=result.fallback_used,
        )

        if created.customer_scoped and reward.customer_id and self._vip_tag:
            try:
                await client.add_customer_tags(reward.customer_id, [self._vip_tag])
            except Exception as exc:
                self._observability.record_tag_failure()
                logger.warning("Customer tagging failed", order_id=reward.order_id, error=str(exc))

        try:
            await self._notifier.notify_reward(reward, code=created.code, expires_at=request.ends_at)
            result.notified = True
        except NotificationError as exc:
            self._observability.record_notification_failure()
            logger.error("Reward email failed; reward stays sent", order_id=reward.order_id, error=str(exc))

        return result

    async def _create_code(
        self,
        client: ShopifyAdminClient,
        request: DiscountCodeRequest,
        result: IssuanceResult,
    ) -> CreatedDiscountCode:
        try:
            return await client.create_discount_code(request)
        except InvalidCustomerScopeError as exc:
            if not request.customer_scoped:
                raise
            logger.warning(
                "Customer-scoped code rejected; retrying for all customers",
                order_id=result.order_id,
                error=str(exc),
            )
            self._observability.record_scope_fallback()
            result.fallback_used = True
            return await client.create_discount_code(request.for_all_customers())

    async def _record_failure(self, reward: PendingReward, result: IssuanceResult, exc: Exception) -> IssuanceResult:
        error = str(exc) or type(exc).__name__
        if isinstance(exc, RetryableIssuanceError):
            logger.warning("Reward issuance failed", order_id=reward.order_id, error=error)
        else:
            logger.exception("Unexpected reward issuance failure", order_id=reward.order_id, error=error)

        updated = await self._state.mark_failed(
            reward.order_id,
            error,
            failed_at=self._clock(),
            claim_token=reward.claim_token,
        )
        self._observability.record_failure(reward.shop_domain, error)
        if updated is not None and updated.dead_lettered_at is not None:
            result.parked = True
            self._observability.record_parked()
        result.error = error
        return result


__all__ = ["ClientProvider", "IssuanceResult", "RewardIssuer", "generate_reward_code"]
