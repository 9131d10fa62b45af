"""Operator endpoints for free product reward reporting and maintenance."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from patisserie_api.api.dependencies.session import require_admin_session
from patisserie_api.db.session import get_session
from patisserie_api.observability.rewards import get_reward_store
from patisserie_api.observability.scheduler import get_reward_scheduler_store
from patisserie_api.services.rewards import (
    Clock,
    FreeProductReportingService,
    FreeProductRolloverService,
    RewardError,
)
from patisserie_api.services.rewards.reporting import ClaimRecord

from .free_products import FreeProductEligibilityResponse, get_reward_clock, reward_http_error


router = APIRouter(
    prefix="/admin/free-products",
    tags=["free-products-admin"],
    dependencies=[Depends(require_admin_session)],
)


class ClaimRecordResponse(BaseModel):
    userId: UUID
    userEmail: Optional[str]
    userName: Optional[str]
    productId: Optional[UUID]
    productName: Optional[str]
    claimedAt: datetime
    month: str
    orderReference: Optional[str]


class ClaimPageResponse(BaseModel):
    claims: List[ClaimRecordResponse]
    totalCount: int
    page: int
    limit: int
    totalPages: int


class TopClaimedProductResponse(BaseModel):
    productId: Optional[UUID]
    productName: Optional[str]
    claimCount: int


class ClaimStatsResponse(BaseModel):
    month: str
    totalUsersWithClaims: int
    claimsThisMonth: int
    currentlyEligible: int
    usersWithProgress: int
    topClaimedProducts: List[TopClaimedProductResponse]


class RewardStatusResponse(BaseModel):
    month: str
    eligible: int
    used: int
    inProgress: int
    metrics: dict[str, Any]


class UserClaimHistoryResponse(BaseModel):
    userId: UUID
    email: str
    displayName: Optional[str]
    phoneNumber: Optional[str]
    lastRewardMonth: Optional[str]
    status: FreeProductEligibilityResponse
    claims: List[ClaimRecordResponse]


class MonthlyResetResponse(BaseModel):
    month: str
    usersScanned: int
    usersReset: int
    usersCleaned: int
    usersHealed: int
    usersFailed: int


class ClaimPruneRequest(BaseModel):
    keepMonths: Optional[int] = Field(None, ge=1, description="Months of claim history to keep, current month included")


class ClaimPruneResponse(BaseModel):
    claimsRemoved: int
    usersAffected: int
    oldestKeptMonth: str


def _claim_response(record: ClaimRecord) -> ClaimRecordResponse:
    return ClaimRecordResponse(
        userId=record.user_id,
        userEmail=record.user_email,
        userName=record.user_name,
        productId=record.product_id,
        productName=record.product_name,
        claimedAt=record.claimed_at,
        month=record.month,
        orderReference=record.order_reference,
    )


@router.get("/claims", response_model=ClaimPageResponse)
async def list_free_product_claims(
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$", description="Month key YYYY-MM"),
    limit: int = Query(50, ge=1, le=200),
    page: int = Query(1, ge=1),
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> ClaimPageResponse:
    """List claim records newest first."""

    service = FreeProductReportingService(db, clock=clock)
    claim_page = await service.list_claims(month=month, limit=limit, page=page)
    return ClaimPageResponse(
        claims=[_claim_response(record) for record in claim_page.claims],
        totalCount=claim_page.total_count,
        page=claim_page.page,
        limit=claim_page.limit,
        totalPages=claim_page.total_pages,
    )


@router.get("/claims/stats", response_model=ClaimStatsResponse)
async def get_free_product_claim_stats(
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> ClaimStatsResponse:
    stats = await FreeProductReportingService(db, clock=clock).claim_stats()
    return ClaimStatsResponse(
        month=stats.month_key,
        totalUsersWithClaims=stats.total_users_with_claims,
        claimsThisMonth=stats.claims_this_month,
        currentlyEligible=stats.currently_eligible,
        usersWithProgress=stats.users_with_progress,
        topClaimedProducts=[
            TopClaimedProductResponse(
                productId=item.product_id,
                productName=item.product_name,
                claimCount=item.claim_count,
            )
            for item in stats.top_claimed_products
        ],
    )


@router.get("/status", response_model=RewardStatusResponse)
async def get_free_product_status(
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> RewardStatusResponse:
    """Current month status counts plus in-process reward counters."""

    counts = await FreeProductReportingService(db, clock=clock).status_counts()
    return RewardStatusResponse(
        month=counts.month_key,
        eligible=counts.eligible,
        used=counts.used,
        inProgress=counts.in_progress,
        metrics=get_reward_store().snapshot().as_dict(),
    )


@router.get("/users/{user_id}", response_model=UserClaimHistoryResponse)
async def get_user_free_product_history(
    user_id: UUID,
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> UserClaimHistoryResponse:
    try:
        history = await FreeProductReportingService(db, clock=clock).user_claim_history(user_id)
    except RewardError as exc:
        raise reward_http_error(exc) from exc

    return UserClaimHistoryResponse(
        userId=history.user_id,
        email=history.email,
        displayName=history.display_name,
        phoneNumber=history.phone_number,
        lastRewardMonth=history.last_reward_month,
        status=FreeProductEligibilityResponse(
            eligible=history.status.eligible,
            uniqueDaysCount=history.status.unique_days_count,
            daysRemaining=history.status.days_remaining,
            used=history.status.used,
            selectedProductId=history.status.selected_product_id,
        ),
        claims=[_claim_response(record) for record in history.claims],
    )


@router.post("/reset", response_model=MonthlyResetResponse)
async def run_free_product_reset(
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> MonthlyResetResponse:
    """Run the monthly reset sweep immediately."""

    summary = await FreeProductRolloverService(db, clock=clock).reset_all_users_for_new_month()
    return MonthlyResetResponse(
        month=summary.month_key,
        usersScanned=summary.users_scanned,
        usersReset=summary.users_reset,
        usersCleaned=summary.users_cleaned,
        usersHealed=summary.users_healed,
        usersFailed=summary.users_failed,
    )


@router.post("/claims/prune", response_model=ClaimPruneResponse)
async def prune_free_product_claims(
    payload: ClaimPruneRequest,
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> ClaimPruneResponse:
    try:
        summary = await FreeProductRolloverService(db, clock=clock).prune_claim_history(payload.keepMonths)
    except RewardError as exc:
        raise reward_http_error(exc) from exc

    return ClaimPruneResponse(
        claimsRemoved=summary.claims_removed,
        usersAffected=summary.users_affected,
        oldestKeptMonth=summary.oldest_kept_month,
    )


@router.get("/scheduler")
async def get_reward_scheduler_health(request: Request) -> dict[str, object]:
    """Scheduler health, falling back to raw job metrics when it is not running."""

    scheduler = getattr(request.app.state, "reward_job_scheduler", None)
    if scheduler is not None:
        return scheduler.health()

    snapshot = get_reward_scheduler_store().snapshot()
    return {
        "running": False,
        "configured_jobs": 0,
        "totals": snapshot.totals,
        "jobs": [job.as_dict() for job in snapshot.jobs.values()],
    }
