"""Best-effort reward bookkeeping invoked after an order is persisted."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from patisserie_api.observability.rewards import get_reward_store

from .calendar import Clock
from .errors import RewardError
from .free_product_service import FreeProductRewardService, OrderDayTrackingResult


@dataclass
class FreeItem:
    """The free product line carried by an order."""

    product_id: UUID | None
    product_name: str | None = None


@dataclass
class OrderRewardOutcome:
    order_reference: str
    tracked: bool = False
    claimed: bool = False
    tracking: OrderDayTrackingResult | None = None
    claim_id: UUID | None = None
    error: str | None = None


async def track_order_rewards(
    session: AsyncSession,
    user_id: UUID,
    *,
    order_reference: str,
    ordered_at: datetime | None = None,
    free_item: FreeItem | None = None,
    clock: Clock | None = None,
) -> OrderRewardOutcome:
    """Record the order day and consume the reward when the order carries the free item.

    Tracking and claiming fail independently: an order that delivered the free
    item always consumes the reward, even when its day could not be recorded.
    Never raises; failures are logged and reported on the outcome so the order
    itself always completes.
    """

    service = FreeProductRewardService(session, clock=clock)
    outcome = OrderRewardOutcome(order_reference=order_reference)
    errors: list[str] = []

    with logger.contextualize(user_id=str(user_id), order_reference=order_reference):
        try:
            outcome.tracking = await service.record_order(user_id, ordered_at)
            outcome.tracked = True
        except RewardError as exc:
            errors.append(str(exc))
            logger.exception("Reward day tracking failed; order continues")
        except Exception as exc:  # pragma: no cover - reward tracking must not fail the order
            get_reward_store().record_tracking_failure()
            errors.append(str(exc))
            logger.exception("Unexpected reward tracking error; order continues")

        if free_item is not None:
            try:
                claim = await service.claim_free_product(
                    user_id,
                    free_item.product_id,
                    free_item.product_name,
                    order_reference,
                )
                outcome.claimed = claim is not None
                outcome.claim_id = claim.id if claim is not None else None
            except RewardError as exc:
                errors.append(str(exc))
                logger.exception("Free product claim failed; order continues")
            except Exception as exc:  # pragma: no cover - reward claims must not fail the order
                get_reward_store().record_claim_failure()
                errors.append(str(exc))
                logger.exception("Unexpected free product claim error; order continues")

    outcome.error = "; ".join(errors) or None
    return outcome


__all__ = ["FreeItem", "OrderRewardOutcome", "track_order_rewards"]
