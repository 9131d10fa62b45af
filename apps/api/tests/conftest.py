import sys
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from patisserie_api.app import create_app  # noqa: E402
from patisserie_api.db.base import Base  # noqa: E402
from patisserie_api.db.session import get_session  # noqa: E402
import patisserie_api.models  # noqa: E402,F401
from patisserie_api.models.user import User  # noqa: E402
from patisserie_api.observability.rewards import get_reward_store  # noqa: E402
from patisserie_api.observability.scheduler import get_reward_scheduler_store  # noqa: E402

IST = ZoneInfo("Asia/Kolkata")


class MutableClock:
    """Test clock whose current time can be moved between calls."""

    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value

    def set(self, year: int, month: int, day: int, hour: int = 10) -> None:
        self.value = datetime(year, month, day, hour, tzinfo=IST)


@pytest.fixture(autouse=True)
def reset_reward_metrics():
    get_reward_store().reset()
    get_reward_scheduler_store().reset()
    yield


@pytest.fixture
def reward_clock() -> MutableClock:
    return MutableClock(datetime(2025, 11, 1, 10, tzinfo=IST))


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def create_user(session_factory):
    counter = 0

    async def _create(**fields) -> User:
        nonlocal counter
        counter += 1
        fields.setdefault("email", f"member{counter}@lapatisserie.test")
        async with session_factory() as session:
            user = User(**fields)
            session.add(user)
            await session.commit()
            return user

    return _create


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
