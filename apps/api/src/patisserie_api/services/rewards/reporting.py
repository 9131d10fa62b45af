"""Read-only reporting over free product reward state for operators."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from patisserie_api.models.rewards import FreeProductClaim, RewardOrderDay
from patisserie_api.models.user import User

from .calendar import Clock, RewardCalendar, RewardMoment
from .errors import RewardUserNotFoundError
from .free_product_service import FreeProductEligibility, FreeProductRewardService


@dataclass
class ClaimRecord:
    user_id: UUID
    user_email: str | None
    user_name: str | None
    product_id: UUID | None
    product_name: str | None
    claimed_at: datetime
    month: str
    order_reference: str | None


@dataclass
class ClaimPage:
    claims: list[ClaimRecord]
    total_count: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.limit) if self.limit else 0


@dataclass
class RewardStatusCounts:
    month_key: str
    eligible: int
    used: int
    in_progress: int


@dataclass
class TopClaimedProduct:
    product_id: UUID | None
    product_name: str | None
    claim_count: int


@dataclass
class ClaimStats:
    month_key: str
    total_users_with_claims: int
    claims_this_month: int
    currently_eligible: int
    users_with_progress: int
    top_claimed_products: list[TopClaimedProduct] = field(default_factory=list)


@dataclass
class UserClaimHistory:
    user_id: UUID
    email: str
    display_name: str | None
    phone_number: str | None
    last_reward_month: str | None
    status: FreeProductEligibility
    claims: list[ClaimRecord]


class FreeProductReportingService:
    """Aggregates reward status and claim history without mutating anything.

    Counts only trust flags stamped with the current month so users whose
    rollover has not run yet are not reported as still eligible.
    """

    def __init__(self, db_session: AsyncSession, *, clock: Clock | None = None) -> None:
        self._db = db_session
        self._clock = clock
        self._calendar = RewardCalendar(clock)

    async def _scalar(self, stmt) -> int:
        result = await self._db.execute(stmt)
        return int(result.scalar_one() or 0)

    def _eligible_count_stmt(self, moment: RewardMoment):
        return select(func.count(User.id)).where(
            User.free_product_eligible.is_(True),
            User.free_product_used.is_(False),
            User.last_reward_month == moment.month_key,
        )

    def _progress_count_stmt(self, moment: RewardMoment):
        return (
            select(func.count(func.distinct(RewardOrderDay.user_id)))
            .join(User, User.id == RewardOrderDay.user_id)
            .where(
                RewardOrderDay.month == moment.month,
                RewardOrderDay.year == moment.year,
                User.free_product_eligible.is_(False),
            )
        )

    async def status_counts(self) -> RewardStatusCounts:
        moment = self._calendar.now()
        eligible = await self._scalar(self._eligible_count_stmt(moment))
        used = await self._scalar(
            select(func.count(User.id)).where(
                User.free_product_used.is_(True),
                User.last_reward_month == moment.month_key,
            )
        )
        in_progress = await self._scalar(
            self._progress_count_stmt(moment).where(User.free_product_used.is_(False))
        )
        return RewardStatusCounts(
            month_key=moment.month_key,
            eligible=eligible,
            used=used,
            in_progress=in_progress,
        )

    @staticmethod
    def _to_record(claim: FreeProductClaim, user: User) -> ClaimRecord:
        return ClaimRecord(
            user_id=user.id,
            user_email=user.email,
            user_name=user.display_name,
            product_id=claim.product_id,
            product_name=claim.product_name,
            claimed_at=claim.claimed_at,
            month=claim.month,
            order_reference=claim.order_reference,
        )

    async def list_claims(self, *, month: str | None = None, limit: int = 50, page: int = 1) -> ClaimPage:
        limit = max(limit, 1)
        page = max(page, 1)

        stmt = select(FreeProductClaim, User).join(User, User.id == FreeProductClaim.user_id)
        count_stmt = select(func.count(FreeProductClaim.id))
        if month:
            stmt = stmt.where(FreeProductClaim.month == month)
            count_stmt = count_stmt.where(FreeProductClaim.month == month)

        stmt = (
            stmt.order_by(FreeProductClaim.claimed_at.desc(), FreeProductClaim.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = (await self._db.execute(stmt)).all()
        total = await self._scalar(count_stmt)
        return ClaimPage(
            claims=[self._to_record(claim, user) for claim, user in rows],
            total_count=total,
            page=page,
            limit=limit,
        )

    async def claim_stats(self) -> ClaimStats:
        moment = self._calendar.now()
        total_users = await self._scalar(select(func.count(func.distinct(FreeProductClaim.user_id))))
        claims_this_month = await self._scalar(
            select(func.count(FreeProductClaim.id)).where(FreeProductClaim.month == moment.month_key)
        )
        currently_eligible = await self._scalar(self._eligible_count_stmt(moment))
        users_with_progress = await self._scalar(self._progress_count_stmt(moment))

        claim_count = func.count(FreeProductClaim.id).label("claim_count")
        top_stmt = (
            select(FreeProductClaim.product_id, FreeProductClaim.product_name, claim_count)
            .where(FreeProductClaim.month == moment.month_key)
            .group_by(FreeProductClaim.product_id, FreeProductClaim.product_name)
            .order_by(claim_count.desc(), FreeProductClaim.product_name)
            .limit(10)
        )
        top_rows = (await self._db.execute(top_stmt)).all()

        return ClaimStats(
            month_key=moment.month_key,
            total_users_with_claims=total_users,
            claims_this_month=claims_this_month,
            currently_eligible=currently_eligible,
            users_with_progress=users_with_progress,
            top_claimed_products=[
                TopClaimedProduct(product_id=row[0], product_name=row[1], claim_count=int(row[2]))
                for row in top_rows
            ],
        )

    async def user_claim_history(self, user_id: UUID) -> UserClaimHistory:
        user = await self._db.get(User, user_id)
        if user is None:
            raise RewardUserNotFoundError(user_id)

        status = await FreeProductRewardService(self._db, clock=self._clock).check_eligibility(user_id)
        claims_stmt = (
            select(FreeProductClaim)
            .where(FreeProductClaim.user_id == user_id)
            .order_by(FreeProductClaim.claimed_at.desc())
        )
        claims = (await self._db.execute(claims_stmt)).scalars().all()
        return UserClaimHistory(
            user_id=user.id,
            email=user.email,
            display_name=user.display_name,
            phone_number=user.phone_number,
            last_reward_month=user.last_reward_month,
            status=status,
            claims=[self._to_record(claim, user) for claim in claims],
        )


__all__ = [
    "ClaimPage",
    "ClaimRecord",
    "ClaimStats",
    "FreeProductReportingService",
    "RewardStatusCounts",
    "TopClaimedProduct",
    "UserClaimHistory",
]
