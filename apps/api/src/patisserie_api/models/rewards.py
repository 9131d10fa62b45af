"""Monthly free product reward models."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from patisserie_api.db.base import Base


class RewardOrderDay(Base):
    """A calendar day on which the user placed at least one order."""

    __tablename__ = "reward_order_days"
    __table_args__ = (
        UniqueConstraint("user_id", "order_date", name="uq_reward_order_days_user_date"),
        Index("ix_reward_order_days_user_period", "user_id", "year", "month"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    order_date = Column(Date, nullable=False)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    first_ordered_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="order_days")


class FreeProductClaim(Base):
    """Append-only record of a redeemed monthly free product."""

    __tablename__ = "free_product_claims"
    __table_args__ = (
        Index("ix_free_product_claims_month", "month"),
        Index("ix_free_product_claims_user_claimed_at", "user_id", "claimed_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(UUID(as_uuid=True), nullable=True)
    product_name = Column(String, nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=False)
    month = Column(String(7), nullable=False)
    order_reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="free_product_claims")
