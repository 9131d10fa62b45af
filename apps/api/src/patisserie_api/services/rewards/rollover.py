"""Month rollover maintenance for the free product reward."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, exists, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from patisserie_api.core.settings import settings
from patisserie_api.models.rewards import FreeProductClaim, RewardOrderDay
from patisserie_api.models.user import User
from patisserie_api.observability.rewards import get_reward_store

from .calendar import Clock, RewardCalendar, RewardMoment
from .errors import RewardStorageError
from .state import RewardStateStore


@dataclass
class MonthlyResetSummary:
    """Counts produced by a monthly reset sweep."""

    month_key: str
    users_scanned: int = 0
    users_reset: int = 0
    users_cleaned: int = 0
    users_healed: int = 0
    users_failed: int = 0

    def as_dict(self) -> dict[str, object]:
        return {
            "month_key": self.month_key,
            "users_scanned": self.users_scanned,
            "users_reset": self.users_reset,
            "users_cleaned": self.users_cleaned,
            "users_healed": self.users_healed,
            "users_failed": self.users_failed,
        }


@dataclass
class ClaimRetentionSummary:
    """Counts produced by a claim history retention pass."""

    claims_removed: int
    users_affected: int
    oldest_kept_month: str

    def as_dict(self) -> dict[str, object]:
        return {
            "claims_removed": self.claims_removed,
            "users_affected": self.users_affected,
            "oldest_kept_month": self.oldest_kept_month,
        }


class FreeProductRolloverService:
    """Resets prior-month reward flags for every user and prunes claim history."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        clock: Clock | None = None,
        required_days: int | None = None,
    ) -> None:
        self._db = db_session
        self._calendar = RewardCalendar(clock)
        self._state = RewardStateStore(
            db_session,
            required_days=required_days or settings.free_product_required_days,
        )
        self._observability = get_reward_store()

    async def _candidate_user_ids(self) -> list[UUID]:
        has_order_days = exists().where(RewardOrderDay.user_id == User.id)
        stmt = (
            select(User.id)
            .where(
                or_(
                    has_order_days,
                    User.free_product_eligible.is_(True),
                    User.free_product_used.is_(True),
                    User.last_reward_month.is_not(None),
                    User.selected_free_product_id.is_not(None),
                )
            )
            .order_by(User.created_at, User.id)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def reset_all_users_for_new_month(self) -> MonthlyResetSummary:
        """Prune old order days and clear stale monthly flags for all reward users.

        Each user is handled in its own transaction under a row lock, so the
        sweep can be re-run any number of times and interleaves safely with
        inline rollover on order placement.
        """

        moment = self._calendar.now()
        summary = MonthlyResetSummary(month_key=moment.month_key)
        user_ids = await self._candidate_user_ids()
        await self._db.commit()

        for user_id in user_ids:
            summary.users_scanned += 1
            try:
                cleaned, reset, healed = await self._reset_user(user_id, moment)
                await self._db.commit()
            except SQLAlchemyError as exc:
                await self._db.rollback()
                summary.users_failed += 1
                logger.exception("Monthly reward reset failed for user", user_id=str(user_id), error=str(exc))
                continue

            summary.users_cleaned += int(cleaned)
            summary.users_reset += int(reset)
            summary.users_healed += int(healed)

        self._observability.record_batch_reset(
            users_reset=summary.users_reset,
            users_cleaned=summary.users_cleaned,
        )
        logger.bind(summary=summary.as_dict()).info("Monthly reward reset completed")
        return summary

    async def _reset_user(self, user_id: UUID, moment: RewardMoment) -> tuple[bool, bool, bool]:
        user = await self._state.load_user(user_id, for_update=True)
        if user is None:
            return False, False, False

        removed = await self._state.prune_order_days(user.id, moment)
        reset = await self._state.apply_rollover(user, moment, source="batch")
        unique_days = await self._state.count_unique_days(user.id, moment)
        healed = await self._state.apply_self_heal(user, unique_days)
        return removed > 0, reset, healed

    async def prune_claim_history(self, keep_months: int | None = None) -> ClaimRetentionSummary:
        """Delete claim records older than the retention window.

        ``keep_months=1`` keeps only the current month's claims.
        """

        keep = max(keep_months or settings.reward_claim_retention_months, 1)
        moment = self._calendar.now()
        oldest_kept = moment.month_key_offset(-(keep - 1))

        try:
            affected_stmt = select(func.count(func.distinct(FreeProductClaim.user_id))).where(
                FreeProductClaim.month < oldest_kept
            )
            users_affected = int((await self._db.execute(affected_stmt)).scalar_one() or 0)

            delete_stmt = (
                delete(FreeProductClaim)
                .where(FreeProductClaim.month < oldest_kept)
                .execution_options(synchronize_session=False)
            )
            result = await self._db.execute(delete_stmt)
            claims_removed = max(result.rowcount or 0, 0)
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            raise RewardStorageError("Failed to prune free product claim history") from exc

        self._observability.record_claims_pruned(claims_removed)
        summary = ClaimRetentionSummary(
            claims_removed=claims_removed,
            users_affected=users_affected,
            oldest_kept_month=oldest_kept,
        )
        logger.bind(summary=summary.as_dict()).info("Free product claim history pruned")
        return summary


__all__ = ["ClaimRetentionSummary", "FreeProductRolloverService", "MonthlyResetSummary"]
