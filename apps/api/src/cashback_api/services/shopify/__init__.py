"""Shopify Admin API integration."""

from .client import CreatedDiscountCode, DiscountCodeRequest, ShopifyAdminClient, customer_gid
from .credentials import ShopClientPool, resolve_active_credential, upsert_credential

__all__ = [
    "CreatedDiscountCode",
    "DiscountCodeRequest",
    "ShopClientPool",
    "ShopifyAdminClient",
    "customer_gid",
    "resolve_active_credential",
    "upsert_credential",
]
