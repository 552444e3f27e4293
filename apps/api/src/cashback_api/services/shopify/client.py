"""Shopify Admin GraphQL client for reward discount codes."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Sequence

import httpx
from loguru import logger

from cashback_api.core.settings import settings
from cashback_api.services.rewards.exceptions import (
    DiscountCreationError,
    InvalidCustomerScopeError,
    PlatformResponseError,
    PlatformTransportError,
)

CUSTOMER_GID_PREFIX = "gid://shopify/Customer/"

DISCOUNT_CODE_CREATE = """
mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {
  discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {
    codeDiscountNode {
      id
      codeDiscount {
        ... on DiscountCodeBasic {
          title
          status
          codes(first: 1) {
            nodes {
              code
            }
          }
        }
      }
    }
    userErrors {
      field
      message
      code
    }
  }
}
"""

TAGS_ADD = """
mutation tagsAdd($id: ID!, $tags: [String!]!) {
  tagsAdd(id: $id, tags: $tags) {
    node {
      id
    }
    userErrors {
      field
      message
    }
  }
}
"""


def customer_gid(customer_id: str) -> str:
    if customer_id.startswith("gid://"):
        return customer_id
    return f"{CUSTOMER_GID_PREFIX}{customer_id}"


@dataclass(frozen=True, slots=True)
class DiscountCodeRequest:
    """Single-use fixed-amount code, optionally restricted to one customer."""

    code: str
    title: str
    amount: Decimal
    starts_at: datetime
    ends_at: datetime
    customer_id: str | None = None

    @property
    def customer_scoped(self) -> bool:
        return self.customer_id is not None

    def for_all_customers(self) -> "DiscountCodeRequest":
        return replace(self, customer_id=None)

    def to_variables(self) -> dict[str, Any]:
        if self.customer_id is not None:
            context: dict[str, Any] = {"customers": {"add": [customer_gid(self.customer_id)]}}
        else:
            context = {"all": "ALL"}
        return {
            "basicCodeDiscount": {
                "title": self.title,
                "code": self.code,
                "startsAt": self.starts_at.isoformat(),
                "endsAt": self.ends_at.isoformat(),
                "context": context,
                "customerGets": {
                    "value": {
                        "discountAmount": {
                            "amount": str(self.amount),
                            "appliesOnEachItem": False,
                        }
                    },
                    "items": {"all": True},
                },
                "usageLimit": 1,
                "appliesOncePerCustomer": True,
            }
        }


@dataclass(slots=True)
class CreatedDiscountCode:
    code: str
    discount_id: str
    customer_scoped: bool


def _is_invalid_customer_error(error: Mapping[str, Any]) -> bool:
    if error.get("code") != "INVALID":
        return False
    field = error.get("field") or []
    if isinstance(field, str):
        field = [field]
    return any("customers" in str(segment) for segment in field)


def _describe_user_errors(errors: Sequence[Mapping[str, Any]]) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in (error.get('field') or [])) or 'base'}: {error.get('message')}"
        for error in errors
    )


class ShopifyAdminClient:
    """Thin async wrapper over one shop's Admin GraphQL endpoint."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.shop_domain = shop_domain
        self._access_token = access_token
        self._api_version = api_version or settings.shopify_api_version
        self._timeout = timeout_seconds or settings.shopify_timeout_seconds
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self._api_version}/graphql.json"

    async def __aenter__(self) -> "ShopifyAdminClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def execute(self, query: str, variables: Mapping[str, Any]) -> dict[str, Any]:
        """POST a GraphQL document and return ``data``; transport and top-level errors raise."""

        try:
            response = await self._http().post(
                self.endpoint,
                json={"query": query, "variables": dict(variables)},
                headers={
                    "Content-Type": "application/json",
                    "X-Shopify-Access-Token": self._access_token,
                },
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PlatformTransportError(
                f"Shopify responded {exc.response.status_code} for {self.shop_domain}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PlatformTransportError(f"Shopify request failed for {self.shop_domain}: {exc!r}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise PlatformResponseError("Shopify returned a non-JSON body") from exc

        if not isinstance(body, dict):
            raise PlatformResponseError("Shopify returned an unexpected body")
        errors = body.get("errors")
        if errors:
            raise PlatformResponseError(f"GraphQL errors: {errors}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise PlatformResponseError("GraphQL response is missing data")
        return data

    async def create_discount_code(self, request: DiscountCodeRequest) -> CreatedDiscountCode:
        data = await self.execute(DISCOUNT_CODE_CREATE, request.to_variables())
        payload = data.get("discountCodeBasicCreate")
        if not isinstance(payload, dict):
            raise PlatformResponseError("discountCodeBasicCreate missing from response")

        user_errors = payload.get("userErrors") or []
        if user_errors:
            message = _describe_user_errors(user_errors)
            if any(_is_invalid_customer_error(error) for error in user_errors):
                raise InvalidCustomerScopeError(message, user_errors=user_errors)
            raise DiscountCreationError(message, user_errors=user_errors)

        node = payload.get("codeDiscountNode")
        if not isinstance(node, dict) or not node.get("id"):
            raise PlatformResponseError("No discount node returned")

        nodes = (((node.get("codeDiscount") or {}).get("codes") or {}).get("nodes")) or []
        code = nodes[0].get("code") if nodes and isinstance(nodes[0], dict) else None
        if not code:
            # A node id means the discount exists under the code we sent.
            logger.warning(
                "Discount created without an echoed code; using the requested code",
                shop_domain=self.shop_domain,
                discount_id=node["id"],
            )
            code = request.code

        logger.info(
            "Discount code created",
            shop_domain=self.shop_domain,
            discount_id=node["id"],
            customer_scoped=request.customer_scoped,
        )
        return CreatedDiscountCode(code=code, discount_id=node["id"], customer_scoped=request.customer_scoped)

    async def add_customer_tags(self, customer_id: str, tags: Sequence[str]) -> None:
        data = await self.execute(TAGS_ADD, {"id": customer_gid(customer_id), "tags": list(tags)})
        payload = data.get("tagsAdd") or {}
        user_errors = payload.get("userErrors") or []
        if user_errors:
            raise PlatformResponseError(f"tagsAdd rejected: {_describe_user_errors(user_errors)}")


__all__ = [
    "CreatedDiscountCode",
    "DiscountCodeRequest",
    "ShopifyAdminClient",
    "customer_gid",
]
