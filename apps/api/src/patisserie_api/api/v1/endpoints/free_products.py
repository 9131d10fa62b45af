"""API endpoints for the monthly free product reward."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from patisserie_api.api.dependencies.security import require_checkout_api_key
from patisserie_api.api.dependencies.session import require_member_session
from patisserie_api.db.session import get_session
from patisserie_api.models.user import User
from patisserie_api.services.rewards import (
    Clock,
    FreeItem,
    FreeProductNotEligibleError,
    FreeProductRewardService,
    RewardError,
    RewardProductNotFoundError,
    RewardProductUnavailableError,
    RewardStorageError,
    RewardUserNotFoundError,
    track_order_rewards,
)


router = APIRouter(prefix="/free-products", tags=["free-products"])


def get_reward_clock() -> Clock | None:
    """Clock used by reward services; overridden in tests to pin the month."""

    return None


def reward_http_error(error: RewardError) -> HTTPException:
    if isinstance(error, RewardUserNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, RewardProductNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, FreeProductNotEligibleError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))
    if isinstance(error, RewardProductUnavailableError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, RewardStorageError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Reward storage unavailable")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


class FreeProductEligibilityResponse(BaseModel):
    eligible: bool
    uniqueDaysCount: int
    daysRemaining: int
    used: bool
    selectedProductId: Optional[UUID]


class FreeProductProgressResponse(BaseModel):
    currentDays: int
    requiredDays: int
    daysRemaining: int
    isEligible: bool
    percentage: float
    orderDates: List[date]


class FreeProductSelectionRequest(BaseModel):
    productId: UUID = Field(..., description="Product chosen as this month's free item")


class FreeProductSelectionResponse(BaseModel):
    productId: UUID
    name: str
    price: float
    imageUrl: Optional[str]


class FreeItemPayload(BaseModel):
    productId: Optional[UUID] = None
    productName: Optional[str] = None


class OrderRewardRequest(BaseModel):
    userId: UUID
    orderReference: str = Field(..., min_length=1, max_length=128)
    orderedAt: Optional[datetime] = Field(None, description="Order timestamp; defaults to now")
    freeItem: Optional[FreeItemPayload] = Field(None, description="Present when the order carries the free product")


class OrderRewardResponse(BaseModel):
    orderReference: str
    tracked: bool
    claimed: bool
    uniqueDaysCount: Optional[int]
    eligible: Optional[bool]
    daysRemaining: Optional[int]
    claimId: Optional[UUID]
    error: Optional[str]


@router.get("/eligibility", response_model=FreeProductEligibilityResponse)
async def get_free_product_eligibility(
    current_user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> FreeProductEligibilityResponse:
    """Return the member's reward status for the current month."""

    service = FreeProductRewardService(db, clock=clock)
    eligibility = await service.check_eligibility(current_user.id)
    return FreeProductEligibilityResponse(
        eligible=eligibility.eligible,
        uniqueDaysCount=eligibility.unique_days_count,
        daysRemaining=eligibility.days_remaining,
        used=eligibility.used,
        selectedProductId=eligibility.selected_product_id,
    )


@router.get("/progress", response_model=FreeProductProgressResponse)
async def get_free_product_progress(
    current_user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> FreeProductProgressResponse:
    service = FreeProductRewardService(db, clock=clock)
    progress = await service.get_progress(current_user.id)
    return FreeProductProgressResponse(
        currentDays=progress.current_days,
        requiredDays=progress.required_days,
        daysRemaining=progress.days_remaining,
        isEligible=progress.is_eligible,
        percentage=progress.percentage,
        orderDates=progress.order_dates,
    )


@router.post("/selection", response_model=FreeProductSelectionResponse)
async def select_free_product(
    payload: FreeProductSelectionRequest,
    current_user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> FreeProductSelectionResponse:
    """Choose the product to receive free with the next order."""

    service = FreeProductRewardService(db, clock=clock)
    try:
        product = await service.select_free_product(current_user.id, payload.productId)
    except RewardError as exc:
        raise reward_http_error(exc) from exc

    return FreeProductSelectionResponse(
        productId=product.id,
        name=product.name,
        price=float(product.price or 0),
        imageUrl=product.image_url,
    )


@router.delete("/selection", status_code=status.HTTP_204_NO_CONTENT)
async def clear_free_product_selection(
    current_user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> Response:
    service = FreeProductRewardService(db, clock=clock)
    try:
        await service.clear_selection(current_user.id)
    except RewardError as exc:
        raise reward_http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/orders",
    response_model=OrderRewardResponse,
    dependencies=[Depends(require_checkout_api_key)],
)
async def track_order_for_rewards(
    payload: OrderRewardRequest,
    db: AsyncSession = Depends(get_session),
    clock: Clock | None = Depends(get_reward_clock),
) -> OrderRewardResponse:
    """Record a persisted order against the reward; never fails the order."""

    free_item = None
    if payload.freeItem is not None:
        free_item = FreeItem(product_id=payload.freeItem.productId, product_name=payload.freeItem.productName)

    outcome = await track_order_rewards(
        db,
        payload.userId,
        order_reference=payload.orderReference,
        ordered_at=payload.orderedAt,
        free_item=free_item,
        clock=clock,
    )
    tracking = outcome.tracking
    return OrderRewardResponse(
        orderReference=outcome.order_reference,
        tracked=outcome.tracked,
        claimed=outcome.claimed,
        uniqueDaysCount=tracking.unique_days if tracking else None,
        eligible=tracking.eligible if tracking else None,
        daysRemaining=tracking.days_remaining if tracking else None,
        claimId=outcome.claim_id,
        error=outcome.error,
    )
