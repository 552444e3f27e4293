"""Error taxonomy for the reward pipeline."""

from __future__ import annotations


class RewardError(RuntimeError):
    """Base class for reward pipeline failures."""


class RewardValidationError(RewardError):
    """Inbound order event is missing required fields or is malformed."""


class RewardStoreError(RewardError):
    """Reward datastore is unavailable or rejected the operation."""


class RetryableIssuanceError(RewardError):
    """Issuance failed; the reward stays scheduled and is retried on a later sweep."""


class MissingCredentialError(RetryableIssuanceError):
    """No active Admin API credential is installed for the shop."""

    def __init__(self, shop_domain: str) -> None:
        super().__init__(f"No active credential for shop {shop_domain}")
        self.shop_domain = shop_domain


class PlatformTransportError(RetryableIssuanceError):
    """Network failure, timeout or non-2xx response from the commerce platform."""


class PlatformResponseError(RetryableIssuanceError):
    """Platform answered with top-level errors or an unexpected response shape."""


class DiscountCreationError(RetryableIssuanceError):
    """Platform rejected the discount code with user errors."""

    def __init__(self, message: str, *, user_errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.user_errors = user_errors or []


class InvalidCustomerScopeError(DiscountCreationError):
    """Platform refused the customer-scoped code; an all-customers code may still succeed."""


class NotificationError(RewardError):
    """Reward notification could not be delivered."""


__all__ = [
    "DiscountCreationError",
    "InvalidCustomerScopeError",
    "MissingCredentialError",
    "NotificationError",
    "PlatformResponseError",
    "PlatformTransportError",
    "RetryableIssuanceError",
    "RewardError",
    "RewardStoreError",
    "RewardValidationError",
]
