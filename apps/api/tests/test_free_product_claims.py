from uuid import uuid4

import pytest
from sqlalchemy import func, select

from patisserie_api.models.rewards import FreeProductClaim
from patisserie_api.models.user import User
from patisserie_api.observability.rewards import get_reward_store
from patisserie_api.services.rewards import FreeProductRewardService, RewardCalendar, RewardUserNotFoundError
from patisserie_api.services.rewards.state import RewardStateStore


async def _order_days(service, user_id, clock, days, *, year=2025, month=11):
    result = None
    for day in days:
        clock.set(year, month, day)
        result = await service.record_order(user_id)
    return result


@pytest.mark.asyncio
async def test_claim_consumes_reward_and_records_history(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    product_id = uuid4()

    async with session_factory() as session:
        service = FreeProductRewardService(session, clock=reward_clock)
        await _order_days(service, user.id, reward_clock, range(1, 11))
        claim = await service.claim_free_product(user.id, product_id, "Red Velvet Cupcake", "order-1001")

    assert claim is not None
    assert claim.month == "2025-11"
    assert claim.product_id == product_id
    assert claim.product_name == "Red Velvet Cupcake"
    assert claim.order_reference == "order-1001"

    async with session_factory() as session:
        stored = await session.get(User, user.id)
        assert stored.free_product_eligible is False
        assert stored.free_product_used is True
        assert stored.selected_free_product_id is None
        assert stored.last_reward_month == "2025-11"

    assert get_reward_store().snapshot().claims["claimed"] == 1


@pytest.mark.asyncio
async def test_second_claim_in_month_is_ignored(session_factory, create_user, reward_clock) -> None:
    user = await create_user()

    async with session_factory() as session:
        service = FreeProductRewardService(session, clock=reward_clock)
        await _order_days(service, user.id, reward_clock, range(1, 11))
        first = await service.claim_free_product(user.id, uuid4(), "Butter Croissant", "order-1")
        second = await service.claim_free_product(user.id, uuid4(), "Butter Croissant", "order-2")

        count = (
            await session.execute(
                select(func.count(FreeProductClaim.id)).where(FreeProductClaim.user_id == user.id)
            )
        ).scalar_one()

    assert first is not None
    assert second is None
    assert count == 1
    claims = get_reward_store().snapshot().claims
    assert claims["claimed"] == 1
    assert claims["duplicates_ignored"] == 1


@pytest.mark.asyncio
async def test_claim_without_reward_is_ignored(session_factory, create_user, reward_clock) -> None:
    user = await create_user()

    async with session_factory() as session:
        service = FreeProductRewardService(session, clock=reward_clock)
        await _order_days(service, user.id, reward_clock, range(1, 4))
        claim = await service.claim_free_product(user.id, uuid4(), "Butter Croissant", "order-1")

    assert claim is None


@pytest.mark.asyncio
async def test_claim_for_unknown_user_raises(session_factory, reward_clock) -> None:
    async with session_factory() as session:
        service = FreeProductRewardService(session, clock=reward_clock)
        with pytest.raises(RewardUserNotFoundError):
            await service.claim_free_product(uuid4(), None, None, "order-1")


@pytest.mark.asyncio
async def test_used_reward_is_not_regranted_in_same_month(session_factory, create_user, reward_clock) -> None:
    user = await create_user()

    async with session_factory() as session:
        service = FreeProductRewardService(session, clock=reward_clock)
        await _order_days(service, user.id, reward_clock, range(1, 11))
        await service.claim_free_product(user.id, uuid4(), "Butter Croissant", "order-1")
        result = await _order_days(service, user.id, reward_clock, range(11, 16))

    assert result.unique_days == 15
    assert result.eligible is False


@pytest.mark.asyncio
async def test_reward_can_be_earned_again_next_month(session_factory, create_user, reward_clock) -> None:
    user = await create_user()

    async with session_factory() as session:
        service = FreeProductRewardService(session, clock=reward_clock)
        await _order_days(service, user.id, reward_clock, range(1, 11))
        await service.claim_free_product(user.id, uuid4(), "Butter Croissant", "order-nov")

        december = await _order_days(service, user.id, reward_clock, range(1, 11), month=12)
        assert december.eligible is True
        claim = await service.claim_free_product(user.id, uuid4(), "Chocolate Truffle Pastry", "order-dec")

        months = (
            await session.execute(
                select(FreeProductClaim.month)
                .where(FreeProductClaim.user_id == user.id)
                .order_by(FreeProductClaim.month)
            )
        ).scalars().all()

    assert claim is not None
    assert claim.month == "2025-12"
    assert months == ["2025-11", "2025-12"]


async def _claim_count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(FreeProductClaim))).scalar_one()


@pytest.mark.asyncio
async def test_stale_user_row_cannot_claim_twice(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    async with session_factory() as session:
        await _order_days(FreeProductRewardService(session, clock=reward_clock), user.id, reward_clock, range(1, 11))

    async with session_factory() as session_a:
        store_a = RewardStateStore(session_a, required_days=10)
        stale = await store_a.load_user(user.id)
        assert stale.free_product_eligible is True

        async with session_factory() as session_b:
            claim = await FreeProductRewardService(session_b, clock=reward_clock).claim_free_product(
                user.id, uuid4(), "Croissant", "order-b"
            )
        assert claim is not None

        won = await store_a.mark_claimed(stale, RewardCalendar(reward_clock).now())
        await session_a.commit()

    assert won is False
    assert stale.free_product_used is False
    assert await _claim_count(session_factory) == 1


@pytest.mark.asyncio
async def test_concurrent_claim_from_second_session_is_ignored(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    async with session_factory() as session:
        await _order_days(FreeProductRewardService(session, clock=reward_clock), user.id, reward_clock, range(1, 11))

    async with session_factory() as session_a:
        service_a = FreeProductRewardService(session_a, clock=reward_clock)
        loaded = await session_a.get(User, user.id)
        assert loaded.free_product_eligible is True

        async with session_factory() as session_b:
            await FreeProductRewardService(session_b, clock=reward_clock).claim_free_product(
                user.id, uuid4(), "Croissant", "order-b"
            )

        late_claim = await service_a.claim_free_product(user.id, uuid4(), "Croissant", "order-a")

    assert late_claim is None
    assert await _claim_count(session_factory) == 1
    assert get_reward_store().snapshot().claims["duplicates_ignored"] == 1


@pytest.mark.asyncio
async def test_late_grant_after_claim_does_not_restore_eligibility(session_factory, create_user, reward_clock) -> None:
    user = await create_user()
    async with session_factory() as session:
        await _order_days(FreeProductRewardService(session, clock=reward_clock), user.id, reward_clock, range(1, 10))

    async with session_factory() as session_a:
        store_a = RewardStateStore(session_a, required_days=10)
        stale = await store_a.load_user(user.id)
        assert stale.free_product_eligible is False
        assert stale.free_product_used is False

        async with session_factory() as session_b:
            service_b = FreeProductRewardService(session_b, clock=reward_clock)
            await _order_days(service_b, user.id, reward_clock, [10])
            await service_b.claim_free_product(user.id, uuid4(), "Croissant", "order-b")

        granted = await store_a.grant_eligibility(stale, RewardCalendar(reward_clock).now())
        await session_a.commit()

    assert granted is False
    async with session_factory() as session:
        stored = await session.get(User, user.id)
        assert stored.free_product_eligible is False
        assert stored.free_product_used is True
    assert get_reward_store().snapshot().tracking["eligibility_granted"] == 1
