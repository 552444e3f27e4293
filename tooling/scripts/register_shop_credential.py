"""Store or rotate a shop's Admin API access token.

The token is read from the SHOPIFY_ACCESS_TOKEN environment variable so it
never appears in shell history.

Example:
    SHOPIFY_ACCESS_TOKEN=shpat_xxx python tooling/scripts/register_shop_credential.py example.myshopify.com
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register an Admin API credential for a shop")
    parser.add_argument("shop_domain", help="Shop domain, e.g. example.myshopify.com")
    parser.add_argument("--online", action="store_true", help="Store as an online (user) token.")
    parser.add_argument("--scope", default=None, help="Granted access scopes, comma separated.")
    return parser.parse_args()


async def _run(shop_domain: str, access_token: str, is_online: bool, scope: str | None) -> None:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from cashback_api.db.session import async_session  # type: ignore import-position
    from cashback_api.services.shopify import upsert_credential  # type: ignore import-position

    async with async_session() as session:
        await upsert_credential(
            session,
            shop_domain=shop_domain,
            access_token=access_token,
            is_online=is_online,
            scope=scope,
        )
        await session.commit()


def main() -> int:
    args = parse_args()
    access_token = os.getenv("SHOPIFY_ACCESS_TOKEN", "").strip()
    if not access_token:
        logger.error("SHOPIFY_ACCESS_TOKEN is not set")
        return 2
    shop_domain = args.shop_domain.strip().lower()
    asyncio.run(_run(shop_domain, access_token, args.online, args.scope))
    logger.success("Shop credential stored", shop_domain=shop_domain, online=args.online)
    return 0


if __name__ == "__main__":
    sys.exit(main())
