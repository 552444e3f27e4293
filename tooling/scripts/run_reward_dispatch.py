"""Run one reward dispatch sweep.

Intended usage: schedule via OS cron when the in-process scheduler is
disabled, or run by hand to flush due rewards.

Example:
    python tooling/scripts/run_reward_dispatch.py --trigger cron
    python tooling/scripts/run_reward_dispatch.py --shop example.myshopify.com
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Issue every reward whose dispatch time has passed")
    parser.add_argument(
        "--trigger",
        default="manual",
        help="Label recorded in logs and metrics to describe the invocation source.",
    )
    parser.add_argument(
        "--shop",
        default=None,
        help="Only sweep rewards belonging to this shop domain.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Override the number of rewards claimed per batch.",
    )
    return parser.parse_args()


async def _run(trigger: str, shop: str | None, batch_size: int | None) -> dict[str, object]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from cashback_api.db.session import async_session  # type: ignore import-position
    from cashback_api.workers import RewardDispatchWorker  # type: ignore import-position

    worker = RewardDispatchWorker(async_session, batch_size=batch_size)  # type: ignore[arg-type]
    summary = await worker.run_once(shop_domain=shop, triggered_by=trigger)
    return summary.as_dict()


def main() -> int:
    args = parse_args()
    summary = asyncio.run(_run(args.trigger, args.shop, args.batch_size))
    logger.success(
        "Reward dispatch run completed",
        processed=summary["processed"],
        succeeded=summary["succeeded"],
        failed=summary["failed"],
        trigger=args.trigger,
    )
    for error in summary["errors"]:  # type: ignore[union-attr]
        logger.warning("Reward not issued", **error)
    return 0 if summary["failed"] == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
