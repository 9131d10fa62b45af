"""Atomic reward-state primitives shared by the tracker, claim recorder and resetter."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from patisserie_api.models.rewards import RewardOrderDay
from patisserie_api.models.user import User
from patisserie_api.observability.rewards import get_reward_store

from .calendar import RewardMoment

_ROLLOVER_VALUES: dict[str, Any] = {
    "free_product_eligible": False,
    "selected_free_product_id": None,
    "free_product_used": False,
    "last_reward_month": None,
}


class RewardStateStore:
    """Reads and conditionally mutates per-user reward state inside the caller's transaction."""

    def __init__(self, db_session: AsyncSession, *, required_days: int) -> None:
        self._db = db_session
        self.required_days = required_days
        self._observability = get_reward_store()

    async def load_user(self, user_id: UUID, *, for_update: bool = False) -> User | None:
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    def _current_month_filter(self, user_id: UUID, moment: RewardMoment):
        return and_(
            RewardOrderDay.user_id == user_id,
            RewardOrderDay.month == moment.month,
            RewardOrderDay.year == moment.year,
        )

    async def count_unique_days(self, user_id: UUID, moment: RewardMoment) -> int:
        stmt = select(func.count(func.distinct(RewardOrderDay.order_date))).where(
            self._current_month_filter(user_id, moment)
        )
        result = await self._db.execute(stmt)
        return int(result.scalar_one() or 0)

    async def list_order_dates(self, user_id: UUID, moment: RewardMoment) -> list[RewardOrderDay]:
        stmt = (
            select(RewardOrderDay)
            .where(self._current_month_filter(user_id, moment))
            .order_by(RewardOrderDay.order_date.desc())
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def prune_order_days(self, user_id: UUID, moment: RewardMoment) -> int:
        """Delete order days outside the current month; returns rows removed."""

        stmt = (
            delete(RewardOrderDay)
            .where(
                RewardOrderDay.user_id == user_id,
                or_(RewardOrderDay.month != moment.month, RewardOrderDay.year != moment.year),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        removed = max(result.rowcount or 0, 0)
        if removed:
            logger.debug("Pruned stale reward order days", user_id=str(user_id), removed=removed)
        return removed

    async def add_order_day(self, user_id: UUID, moment: RewardMoment, ordered_at: datetime) -> bool:
        """Insert today's order day if absent; returns True when a new day was recorded."""

        values = {
            "user_id": user_id,
            "order_date": moment.today,
            "month": moment.month,
            "year": moment.year,
            "first_ordered_at": ordered_at,
        }
        dialect = self._db.get_bind().dialect.name
        if dialect in {"postgresql", "sqlite"}:
            builder = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = (
                builder(RewardOrderDay)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["user_id", "order_date"])
                .returning(RewardOrderDay.id)
            )
            result = await self._db.execute(stmt)
            return result.scalar_one_or_none() is not None

        existing = await self._db.execute(
            select(RewardOrderDay.id).where(
                RewardOrderDay.user_id == user_id,
                RewardOrderDay.order_date == moment.today,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return False
        await self._db.execute(insert(RewardOrderDay).values(**values))
        return True

    async def _conditional_update(self, user: User, criteria: list[Any], values: dict[str, Any]) -> bool:
        stmt = (
            update(User)
            .where(User.id == user.id, *criteria)
            .values(**values)
            .returning(User.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.scalar_one_or_none() is None:
            return False
        for key, value in values.items():
            set_committed_value(user, key, value)
        return True

    async def apply_rollover(self, user: User, moment: RewardMoment, *, source: str) -> bool:
        """Clear last month's flags when the stored reward month is not the current one."""

        if not user.last_reward_month or user.last_reward_month == moment.month_key:
            return False

        previous_month = user.last_reward_month
        applied = await self._conditional_update(
            user,
            [User.last_reward_month.is_not(None), User.last_reward_month != moment.month_key],
            _ROLLOVER_VALUES,
        )
        if applied:
            self._observability.record_rollover(source)
            logger.info(
                "Reset free product reward for new month",
                user_id=str(user.id),
                previous_month=previous_month,
                current_month=moment.month_key,
                source=source,
            )
        return applied

    async def apply_self_heal(self, user: User, unique_days: int) -> bool:
        """Drop an eligibility flag that the current month's days no longer support."""

        if not user.free_product_eligible or user.free_product_used:
            return False
        if unique_days >= self.required_days:
            return False

        applied = await self._conditional_update(
            user,
            [User.free_product_eligible.is_(True), User.free_product_used.is_(False)],
            {"free_product_eligible": False, "selected_free_product_id": None},
        )
        if applied:
            self._observability.record_self_heal()
            logger.warning(
                "Cleared inconsistent free product eligibility",
                user_id=str(user.id),
                unique_days=unique_days,
                required_days=self.required_days,
            )
        return applied

    async def grant_eligibility(self, user: User, moment: RewardMoment) -> bool:
        """Flip ``eligible`` on once the month's unique days reach the threshold."""

        if user.free_product_eligible or user.free_product_used:
            return False

        day_count = (
            select(func.count(func.distinct(RewardOrderDay.order_date)))
            .where(self._current_month_filter(user.id, moment))
            .scalar_subquery()
        )
        applied = await self._conditional_update(
            user,
            [
                User.free_product_eligible.is_(False),
                User.free_product_used.is_(False),
                day_count >= self.required_days,
            ],
            {"free_product_eligible": True, "last_reward_month": moment.month_key},
        )
        if applied:
            self._observability.record_eligibility_granted()
            logger.info(
                "User earned monthly free product",
                user_id=str(user.id),
                month=moment.month_key,
            )
        return applied

    async def mark_claimed(self, user: User, moment: RewardMoment) -> bool:
        """Consume the month's reward; only one caller can win the transition."""

        return await self._conditional_update(
            user,
            [or_(User.free_product_eligible.is_(True), User.selected_free_product_id.is_not(None))],
            {
                "free_product_eligible": False,
                "free_product_used": True,
                "selected_free_product_id": None,
                "last_reward_month": moment.month_key,
            },
        )


__all__ = ["RewardStateStore"]
