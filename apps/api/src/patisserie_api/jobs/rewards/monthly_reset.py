"""Scheduled maintenance for the monthly free product reward."""

# meta: job: free-product-monthly-reset

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from patisserie_api.core.settings import settings
from patisserie_api.services.rewards import Clock, FreeProductRolloverService

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def _open_session(session_factory: SessionFactory) -> AsyncSession:
    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


async def reset_free_product_rewards(
    *,
    session_factory: SessionFactory,
    clock: Clock | None = None,
) -> Dict[str, Any]:
    """Clear last month's reward flags and order days for every reward user."""

    session = await _open_session(session_factory)
    async with session as managed_session:
        service = FreeProductRolloverService(managed_session, clock=clock)
        summary = await service.reset_all_users_for_new_month()

    result = summary.as_dict()
    logger.bind(summary=result).info("Free product monthly reset job finished")
    return result


async def prune_free_product_claims(
    *,
    session_factory: SessionFactory,
    keep_months: int | None = None,
    force: bool = False,
    clock: Clock | None = None,
) -> Dict[str, Any]:
    """Drop claim history outside the retention window when retention is enabled."""

    if not (force or settings.reward_claim_retention_enabled):
        logger.info(
            "Free product claim retention skipped",
            reason="reward_claim_retention_enabled is false",
        )
        return {"skipped": True, "claims_removed": 0}

    session = await _open_session(session_factory)
    async with session as managed_session:
        service = FreeProductRolloverService(managed_session, clock=clock)
        summary = await service.prune_claim_history(keep_months)

    result = {"skipped": False, **summary.as_dict()}
    logger.bind(summary=result).info("Free product claim retention job finished")
    return result


__all__ = ["prune_free_product_claims", "reset_free_product_rewards"]
