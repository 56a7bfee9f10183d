"""
Maintenance worker for the external cron: expiry sweep, daily boost and daily reset.

Usage: python -m workers.maintenance_worker [expire|boost|rotation|all]
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Dict, Optional, Sequence

from promo_api.core.config import settings
from promo_api.core.exceptions import StorageError
from promo_api.core.logging import configure_structlog, get_structlog_logger
from promo_api.db.session import dispose_engine, get_session_factory
from promo_api.services.maintenance import (
    apply_daily_boost,
    expire_promotions,
    reset_daily_rotation_scores,
)

configure_structlog()
logger = get_structlog_logger()

ACTIONS = ("expire", "boost", "rotation", "all")


async def run_action(action: str) -> Dict[str, object]:
    """Run one maintenance action; ``all`` runs expire, boost and rotation in that order."""
    results: Dict[str, object] = {}

    async with get_session_factory()() as session:
        if action in ("expire", "all"):
            sweep = await expire_promotions(session)
            results["expire"] = {"expired_count": sweep.expired_count, "listing_ids": sweep.listing_ids}
        if action in ("boost", "all"):
            boost = await apply_daily_boost(session)
            results["boost"] = {"boosted_count": boost.boosted_count}
        if action in ("rotation", "all"):
            reset = await reset_daily_rotation_scores(session)
            results["rotation"] = {"reset_count": reset.reset_count}

    return results


async def worker_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Promotion lifecycle maintenance")
    parser.add_argument("action", nargs="?", default="all", choices=ACTIONS)
    args = parser.parse_args(argv)

    logger.info("maintenance_worker.starting", action=args.action, environment=settings.environment)

    try:
        results = await run_action(args.action)
    except StorageError as e:
        logger.error("maintenance_worker.storage_error", action=args.action, code=e.code, details=e.details)
        return 1
    finally:
        await dispose_engine()

    logger.info("maintenance_worker.completed", action=args.action, results=results)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(worker_main()))
