from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from patisserie_api.core.settings import settings
from patisserie_api.jobs.rewards import prune_free_product_claims, reset_free_product_rewards
from patisserie_api.models.rewards import FreeProductClaim, RewardOrderDay
from patisserie_api.models.user import User
from patisserie_api.observability.rewards import get_reward_store
from patisserie_api.services.rewards import FreeProductRewardService, FreeProductRolloverService


async def _order_days(session_factory, user_id, clock, days, *, month=11) -> None:
    async with session_factory() as session:
        service = FreeProductRewardService(session, clock=clock)
        for day in days:
            clock.set(2025, month, day)
            await service.record_order(user_id)


async def _seed_claims(session_factory, user_id, months) -> None:
    async with session_factory() as session:
        for index, month in enumerate(months):
            session.add(
                FreeProductClaim(
                    user_id=user_id,
                    product_id=uuid4(),
                    product_name="Butter Croissant",
                    claimed_at=datetime(2025, 1 + index, 15, tzinfo=timezone.utc),
                    month=month,
                    order_reference=f"order-{month}",
                )
            )
        await session.commit()


@pytest.mark.asyncio
async def test_monthly_reset_clears_previous_month_state(session_factory, create_user, reward_clock) -> None:
    eligible_user = await create_user()
    used_user = await create_user()
    progress_user = await create_user()
    await create_user()

    await _order_days(session_factory, eligible_user.id, reward_clock, range(1, 11))
    await _order_days(session_factory, used_user.id, reward_clock, range(1, 11))
    await _order_days(session_factory, progress_user.id, reward_clock, range(1, 4))
    async with session_factory() as session:
        await FreeProductRewardService(session, clock=reward_clock).claim_free_product(
            used_user.id, uuid4(), "Red Velvet Cupcake", "order-1"
        )

    reward_clock.set(2025, 12, 1, hour=0)
    async with session_factory() as session:
        summary = await FreeProductRolloverService(session, clock=reward_clock).reset_all_users_for_new_month()

    assert summary.month_key == "2025-12"
    assert summary.users_scanned == 3
    assert summary.users_reset == 2
    assert summary.users_cleaned == 3
    assert summary.users_failed == 0

    async with session_factory() as session:
        remaining_days = (await session.execute(select(RewardOrderDay))).scalars().all()
        users = (await session.execute(select(User))).scalars().all()

    assert remaining_days == []
    for user in users:
        assert user.free_product_eligible is False
        assert user.free_product_used is False
        assert user.selected_free_product_id is None
        assert user.last_reward_month is None

    maintenance = get_reward_store().snapshot().maintenance
    assert maintenance["batch_runs"] == 1
    assert maintenance["rollovers:batch"] == 2


@pytest.mark.asyncio
async def test_monthly_reset_is_idempotent(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    await _order_days(session_factory, user.id, reward_clock, range(1, 11))

    reward_clock.set(2025, 12, 1, hour=0)
    async with session_factory() as session:
        service = FreeProductRolloverService(session, clock=reward_clock)
        first = await service.reset_all_users_for_new_month()
        second = await service.reset_all_users_for_new_month()

    assert first.users_reset == 1
    assert second.users_scanned == 0
    assert second.users_reset == 0
    assert second.users_cleaned == 0


@pytest.mark.asyncio
async def test_monthly_reset_keeps_current_month_state(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    await _order_days(session_factory, user.id, reward_clock, range(1, 11))

    async with session_factory() as session:
        summary = await FreeProductRolloverService(session, clock=reward_clock).reset_all_users_for_new_month()

    assert summary.users_scanned == 1
    assert summary.users_reset == 0
    assert summary.users_cleaned == 0

    async with session_factory() as session:
        eligibility = await FreeProductRewardService(session, clock=reward_clock).check_eligibility(user.id)
    assert eligibility.eligible is True
    assert eligibility.unique_days_count == 10


@pytest.mark.asyncio
async def test_prune_claim_history_keeps_retention_window(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    await _seed_claims(session_factory, user.id, ["2025-09", "2025-10", "2025-11"])

    async with session_factory() as session:
        service = FreeProductRolloverService(session, clock=reward_clock)
        two_months = await service.prune_claim_history(keep_months=2)
        one_month = await service.prune_claim_history(keep_months=1)

        months = (await session.execute(select(FreeProductClaim.month))).scalars().all()

    assert two_months.claims_removed == 1
    assert two_months.oldest_kept_month == "2025-10"
    assert one_month.claims_removed == 1
    assert one_month.users_affected == 1
    assert one_month.oldest_kept_month == "2025-11"
    assert months == ["2025-11"]
    assert get_reward_store().snapshot().maintenance["claims_pruned"] == 2


@pytest.mark.asyncio
async def test_reset_job_returns_summary(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    await _order_days(session_factory, user.id, reward_clock, range(1, 3))

    reward_clock.set(2025, 12, 1, hour=0)
    result = await reset_free_product_rewards(session_factory=session_factory, clock=reward_clock)

    assert result["month_key"] == "2025-12"
    assert result["users_cleaned"] == 1


@pytest.mark.asyncio
async def test_retention_job_skipped_unless_enabled(session_factory, create_user, reward_clock, monkeypatch) -> None:
    user = await create_user()
    await _seed_claims(session_factory, user.id, ["2025-10", "2025-11"])
    monkeypatch.setattr(settings, "reward_claim_retention_enabled", False)

    skipped = await prune_free_product_claims(session_factory=session_factory, clock=reward_clock)
    assert skipped == {"skipped": True, "claims_removed": 0}

    forced = await prune_free_product_claims(
        session_factory=session_factory,
        keep_months=1,
        force=True,
        clock=reward_clock,
    )
    assert forced["skipped"] is False
    assert forced["claims_removed"] == 1
    assert forced["oldest_kept_month"] == "2025-11"


@pytest.mark.asyncio
async def test_monthly_reset_keeps_claim_history(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    await _order_days(session_factory, user.id, reward_clock, range(1, 11))
    async with session_factory() as session:
        await FreeProductRewardService(session, clock=reward_clock).claim_free_product(
            user.id, uuid4(), "Croissant", "ORD-001"
        )

    reward_clock.set(2025, 12, 1, hour=0)
    async with session_factory() as session:
        await FreeProductRolloverService(session, clock=reward_clock).reset_all_users_for_new_month()

    async with session_factory() as session:
        eligibility = await FreeProductRewardService(session, clock=reward_clock).check_eligibility(user.id)
        claims = (await session.execute(select(FreeProductClaim))).scalars().all()
        days = (await session.execute(select(RewardOrderDay))).scalars().all()

    assert eligibility.eligible is False
    assert eligibility.used is False
    assert days == []
    assert [(claim.month, claim.order_reference) for claim in claims] == [("2025-11", "ORD-001")]
