"""Catalog product reference used by the free product reward."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Numeric, String, func, true
from sqlalchemy.dialects.postgresql import UUID

from patisserie_api.db.base import Base


class Product(Base):
    """Minimal product record; catalog management lives in the storefront backend."""

    __tablename__ = "products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    image_url = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
