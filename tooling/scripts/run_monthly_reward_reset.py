#!/usr/bin/env python3
"""Run the free product monthly reset outside the API process.

Intended usage: schedule via cron when the in-process scheduler is disabled.

Example:
    python tooling/scripts/run_monthly_reward_reset.py

Use `--prune-claims` to also drop claim history older than the retention
window (`--keep-months`, default from settings).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Dict

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reset monthly free product reward state")
    parser.add_argument(
        "--prune-claims",
        action="store_true",
        help="Also prune claim history outside the retention window.",
    )
    parser.add_argument(
        "--keep-months",
        type=int,
        default=None,
        help="Months of claim history to keep, current month included.",
    )
    return parser.parse_args()


async def _run(prune_claims: bool, keep_months: int | None) -> Dict[str, Any]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from patisserie_api.db.session import async_session  # type: ignore import-position
    from patisserie_api.jobs.rewards import (  # type: ignore import-position
        prune_free_product_claims,
        reset_free_product_rewards,
    )

    results: Dict[str, Any] = {"reset": await reset_free_product_rewards(session_factory=async_session)}
    if prune_claims:
        results["retention"] = await prune_free_product_claims(
            session_factory=async_session,
            keep_months=keep_months,
            force=True,
        )
    return results


def main() -> int:
    args = parse_args()
    if args.keep_months is not None and args.keep_months < 1:
        logger.error("--keep-months must be at least 1", keep_months=args.keep_months)
        return 2

    results = asyncio.run(_run(args.prune_claims, args.keep_months))
    logger.bind(**results).success("Free product monthly reset completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
