"""Service layer for the monthly free product reward."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from patisserie_api.core.settings import settings
from patisserie_api.models.product import Product
from patisserie_api.models.rewards import FreeProductClaim
from patisserie_api.models.user import User
from patisserie_api.observability.rewards import get_reward_store

from .calendar import Clock, RewardCalendar, RewardMoment
from .errors import (
    FreeProductNotEligibleError,
    RewardError,
    RewardProductNotFoundError,
    RewardProductUnavailableError,
    RewardStorageError,
    RewardUserNotFoundError,
)
from .state import RewardStateStore


@dataclass
class OrderDayTrackingResult:
    """Outcome of recording an order day."""

    unique_days: int
    eligible: bool
    days_remaining: int


@dataclass
class FreeProductEligibility:
    """Read-only projection of a user's reward state for the current month."""

    eligible: bool
    unique_days_count: int
    days_remaining: int
    selected_product_id: UUID | None = None
    used: bool = False


@dataclass
class FreeProductProgress:
    """Progress towards the monthly free product."""

    current_days: int
    required_days: int
    days_remaining: int
    is_eligible: bool
    percentage: float
    order_dates: list[date] = field(default_factory=list)


class FreeProductRewardService:
    """Tracks unique order days and the once-a-month free product reward."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        clock: Clock | None = None,
        required_days: int | None = None,
    ) -> None:
        self._db = db_session
        self._calendar = RewardCalendar(clock)
        self.required_days = required_days or settings.free_product_required_days
        self._state = RewardStateStore(db_session, required_days=self.required_days)
        self._observability = get_reward_store()

    def _default_eligibility(self) -> FreeProductEligibility:
        return FreeProductEligibility(
            eligible=False,
            unique_days_count=0,
            days_remaining=self.required_days,
        )

    def _days_remaining(self, unique_days: int) -> int:
        return max(0, self.required_days - unique_days)

    async def _require_user(self, user_id: UUID, *, for_update: bool = True) -> User:
        user = await self._state.load_user(user_id, for_update=for_update)
        if user is None:
            raise RewardUserNotFoundError(user_id)
        return user

    async def _commit(self) -> None:
        await self._db.commit()

    async def _rollback(self) -> None:
        try:
            await self._db.rollback()
        except SQLAlchemyError:  # pragma: no cover - connection already gone
            logger.exception("Rollback failed after reward storage error")

    async def record_order(
        self,
        user_id: UUID,
        order_timestamp: datetime | None = None,
    ) -> OrderDayTrackingResult:
        """Record that the user ordered today and recompute monthly eligibility."""

        moment = self._calendar.now()
        ordered_at = self._calendar.localize(order_timestamp) if order_timestamp else moment.instant

        try:
            user = await self._require_user(user_id)
            await self._state.prune_order_days(user.id, moment)
            await self._state.apply_rollover(user, moment, source="inline")

            unique_days = await self._state.count_unique_days(user.id, moment)
            await self._state.apply_self_heal(user, unique_days)

            new_day = await self._state.add_order_day(user.id, moment, ordered_at)
            unique_days = await self._state.count_unique_days(user.id, moment)
            if unique_days >= self.required_days:
                await self._state.grant_eligibility(user, moment)

            eligible = bool(user.free_product_eligible)
            await self._commit()
        except RewardError:
            await self._rollback()
            self._observability.record_tracking_failure()
            raise
        except SQLAlchemyError as exc:
            await self._rollback()
            self._observability.record_tracking_failure()
            raise RewardStorageError(f"Failed to record order day for user {user_id}") from exc

        self._observability.record_order_tracked(new_day=new_day)
        logger.info(
            "Tracked reward order day",
            user_id=str(user_id),
            month=moment.month_key,
            order_date=moment.today.isoformat(),
            new_day=new_day,
            unique_days=unique_days,
            eligible=eligible,
        )
        return OrderDayTrackingResult(
            unique_days=unique_days,
            eligible=eligible,
            days_remaining=self._days_remaining(unique_days),
        )

    async def check_eligibility(self, user_id: UUID) -> FreeProductEligibility:
        """Return the current month's reward projection without mutating state.

        Unknown users and storage failures degrade to the ineligible default so
        storefront read paths never surface reward errors.
        """

        moment = self._calendar.now()
        try:
            user = await self._state.load_user(user_id)
            if user is None:
                logger.debug("Eligibility requested for unknown user", user_id=str(user_id))
                return self._default_eligibility()
            unique_days = await self._state.count_unique_days(user.id, moment)
        except SQLAlchemyError as exc:
            logger.warning("Free product eligibility lookup failed", user_id=str(user_id), error=str(exc))
            return self._default_eligibility()

        return self._project(user, unique_days, moment)

    def _project(self, user: User, unique_days: int, moment: RewardMoment) -> FreeProductEligibility:
        eligible = bool(user.free_product_eligible)
        used = bool(user.free_product_used)
        selected = user.selected_free_product_id

        if user.last_reward_month and user.last_reward_month != moment.month_key:
            eligible, used, selected = False, False, None
        elif eligible and not used and unique_days < self.required_days:
            eligible, selected = False, None

        return FreeProductEligibility(
            eligible=eligible and not used,
            unique_days_count=unique_days,
            days_remaining=self._days_remaining(unique_days),
            selected_product_id=selected,
            used=used,
        )

    async def claim_free_product(
        self,
        user_id: UUID,
        product_id: UUID | None,
        product_name: str | None,
        order_reference: str | None,
    ) -> FreeProductClaim | None:
        """Consume this month's reward and append a claim record.

        Repeated calls within the same month are ignored and return ``None`` so
        a retried order step never fails on the reward.
        """

        moment = self._calendar.now()
        try:
            user = await self._require_user(user_id)
            if not (user.free_product_eligible or user.selected_free_product_id):
                claimed = False
            else:
                claimed = await self._state.mark_claimed(user, moment)

            claim: FreeProductClaim | None = None
            if claimed:
                claim = FreeProductClaim(
                    user_id=user.id,
                    product_id=product_id,
                    product_name=product_name,
                    claimed_at=moment.instant,
                    month=moment.month_key,
                    order_reference=order_reference,
                )
                self._db.add(claim)
                await self._db.flush()
            await self._commit()
        except RewardError:
            await self._rollback()
            raise
        except SQLAlchemyError as exc:
            await self._rollback()
            self._observability.record_claim_failure()
            raise RewardStorageError(f"Failed to record free product claim for user {user_id}") from exc

        self._observability.record_claim(duplicate=claim is None)
        if claim is None:
            logger.info(
                "Ignored free product claim without an active reward",
                user_id=str(user_id),
                order_reference=order_reference,
                month=moment.month_key,
            )
            return None

        logger.info(
            "Free product claimed",
            user_id=str(user_id),
            product_id=str(product_id) if product_id else None,
            product_name=product_name,
            order_reference=order_reference,
            month=moment.month_key,
        )
        return claim

    async def select_free_product(self, user_id: UUID, product_id: UUID) -> Product:
        """Store the product the user wants as this month's free item."""

        moment = self._calendar.now()
        try:
            user = await self._require_user(user_id)
            unique_days = await self._state.count_unique_days(user.id, moment)
            if not self._project(user, unique_days, moment).eligible:
                raise FreeProductNotEligibleError("User is not eligible for a free product")

            product = await self._db.get(Product, product_id)
            if product is None:
                raise RewardProductNotFoundError(product_id)
            if not product.is_active:
                raise RewardProductUnavailableError("Selected product is not available")

            user.selected_free_product_id = product.id
            await self._commit()
        except RewardError:
            await self._rollback()
            raise
        except SQLAlchemyError as exc:
            await self._rollback()
            raise RewardStorageError(f"Failed to select free product for user {user_id}") from exc

        logger.info("Free product selected", user_id=str(user_id), product_id=str(product_id))
        return product

    async def clear_selection(self, user_id: UUID) -> None:
        try:
            user = await self._require_user(user_id)
            user.selected_free_product_id = None
            await self._commit()
        except RewardError:
            await self._rollback()
            raise
        except SQLAlchemyError as exc:
            await self._rollback()
            raise RewardStorageError(f"Failed to clear free product selection for user {user_id}") from exc

    async def get_progress(self, user_id: UUID) -> FreeProductProgress:
        """Progress towards the reward, with this month's order dates newest first."""

        eligibility = await self.check_eligibility(user_id)
        moment = self._calendar.now()
        try:
            order_days = await self._state.list_order_dates(user_id, moment)
        except SQLAlchemyError as exc:
            logger.warning("Free product progress lookup failed", user_id=str(user_id), error=str(exc))
            order_days = []

        percentage = min(eligibility.unique_days_count / self.required_days * 100, 100.0)
        return FreeProductProgress(
            current_days=eligibility.unique_days_count,
            required_days=self.required_days,
            days_remaining=eligibility.days_remaining,
            is_eligible=eligibility.eligible,
            percentage=round(percentage, 2),
            order_dates=[entry.order_date for entry in order_days],
        )


__all__ = [
    "FreeProductEligibility",
    "FreeProductProgress",
    "FreeProductRewardService",
    "OrderDayTrackingResult",
]
