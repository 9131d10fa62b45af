"""Seed development users and free-product candidates into the API database."""

from __future__ import annotations

import asyncio
import os
from decimal import Decimal
from typing import TypedDict

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from patisserie_api.core.settings import settings
from patisserie_api.models import Product, User


class SeedUser(TypedDict):
    email: str
    display_name: str
    role: str


class SeedProduct(TypedDict):
    name: str
    price: Decimal


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_SHORTCUT_CUSTOMER_EMAIL", "customer@lapatisserie.dev").lower(),
        "display_name": "Customer QA",
        "role": "customer",
    },
    {
        "email": os.getenv("DEV_SHORTCUT_ADMIN_EMAIL", "admin@lapatisserie.dev").lower(),
        "display_name": "Admin QA",
        "role": "admin",
    },
]

DEV_PRODUCTS: list[SeedProduct] = [
    {"name": "Chocolate Truffle Pastry", "price": Decimal("120.00")},
    {"name": "Red Velvet Cupcake", "price": Decimal("90.00")},
    {"name": "Butter Croissant", "price": Decimal("75.00")},
]


async def seed(session: AsyncSession) -> None:
    for user in DEV_USERS:
        existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()
        if record:
            record.display_name = user["display_name"]
            record.role = user["role"]
        else:
            session.add(User(email=user["email"], display_name=user["display_name"], role=user["role"]))

    for product in DEV_PRODUCTS:
        existing = await session.execute(select(Product).where(Product.name == product["name"]))
        if existing.scalar_one_or_none() is None:
            session.add(Product(name=product["name"], price=product["price"]))
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed(session)
        logger.success("Development users and products ready", users=len(DEV_USERS), products=len(DEV_PRODUCTS))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
