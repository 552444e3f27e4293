"""Lookup and registration of per-shop Admin API credentials."""

from __future__ import annotations

from typing import Awaitable, Callable

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cashback_api.core.settings import settings
from cashback_api.models.shop_credential import ShopCredential
from cashback_api.services.rewards.exceptions import MissingCredentialError
from cashback_api.services.rewards.store import translate_store_errors

from .client import ShopifyAdminClient

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]


async def resolve_active_credential(session: AsyncSession, shop_domain: str) -> ShopCredential | None:
    """Return the shop's offline credential, falling back to any online one."""

    stmt = (
        select(ShopCredential)
        .where(ShopCredential.shop_domain == shop_domain)
        .order_by(ShopCredential.is_online.asc(), ShopCredential.updated_at.desc())
    )
    async with translate_store_errors("resolve_active_credential"):
        result = await session.execute(stmt)
        return result.scalars().first()


async def upsert_credential(
    session: AsyncSession,
    *,
    shop_domain: str,
    access_token: str,
    is_online: bool = False,
    scope: str | None = None,
) -> ShopCredential:
    """Store or rotate the token for ``(shop_domain, is_online)``; the caller commits."""

    stmt = select(ShopCredential).where(
        ShopCredential.shop_domain == shop_domain,
        ShopCredential.is_online.is_(is_online),
    )
    async with translate_store_errors("upsert_credential"):
        credential = (await session.execute(stmt)).scalar_one_or_none()
        if credential is None:
            credential = ShopCredential(shop_domain=shop_domain, is_online=is_online, access_token=access_token)
            session.add(credential)
        credential.access_token = access_token
        credential.scope = scope
        await session.flush()
        return credential


class ShopClientPool:
    """Admin clients for one dispatch sweep, keyed by shop domain.

    Clients share one HTTP connection pool; credentials are looked up once
    per shop, including a missing credential.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = timeout_seconds or settings.shopify_timeout_seconds
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._clients: dict[str, ShopifyAdminClient | None] = {}

    async def get(self, shop_domain: str) -> ShopifyAdminClient:
        if shop_domain not in self._clients:
            session = self._session_factory()
            if not isinstance(session, AsyncSession):
                session = await session
            async with session as managed_session:
                credential = await resolve_active_credential(managed_session, shop_domain)
            self._clients[shop_domain] = (
                ShopifyAdminClient(
                    shop_domain,
                    credential.access_token,
                    timeout_seconds=self._timeout,
                    http_client=self._http(),
                )
                if credential is not None
                else None
            )

        client = self._clients[shop_domain]
        if client is None:
            raise MissingCredentialError(shop_domain)
        return client

    async def __aenter__(self) -> "ShopClientPool":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self._clients.clear()
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _http(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client


__all__ = ["ShopClientPool", "resolve_active_credential", "upsert_credential"]
