import base64
import hashlib
import hmac

from fastapi import Depends, Header, HTTPException, Request, status
from loguru import logger

from cashback_api.core.settings import settings


async def require_dispatch_api_key(
    x_api_key: str = Header("", alias="X-API-Key"),
    authorization: str = Header("", alias="Authorization"),
) -> None:
    """Guard internal endpoints with the dispatch key, sent as ``X-API-Key`` or a bearer token."""

    expected = settings.reward_dispatch_api_key
    if not expected:
        return

    scheme, _, token = authorization.partition(" ")
    presented = x_api_key or (token if scheme.lower() == "bearer" else "")
    if not presented or not hmac.compare_digest(presented, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def optional_dispatch_api_key_dependency() -> Depends:
    return Depends(require_dispatch_api_key)


def compute_shopify_hmac(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


async def verify_shopify_webhook(
    request: Request,
    x_shopify_hmac_sha256: str = Header("", alias="X-Shopify-Hmac-Sha256"),
) -> bytes:
    """Return the raw webhook body after checking its signature against the app secret."""

    body = await request.body()
    secret = settings.shopify_api_secret
    if not secret:
        logger.warning("Shopify webhook secret not configured; signature not verified")
        return body

    if not x_shopify_hmac_sha256 or not hmac.compare_digest(
        compute_shopify_hmac(body, secret), x_shopify_hmac_sha256
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )
    return body
