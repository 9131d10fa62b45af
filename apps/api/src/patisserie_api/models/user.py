from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, false, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from patisserie_api.db.base import Base


class UserRoleEnum(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class UserStatusEnum(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    firebase_uid = Column(String(128), nullable=True, unique=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    phone_number = Column(String(32), nullable=True)
    role = Column(String(length=16), nullable=False, default=UserRoleEnum.CUSTOMER.value, server_default=UserRoleEnum.CUSTOMER.value)
    status = Column(String(length=16), nullable=False, default=UserStatusEnum.ACTIVE.value, server_default=UserStatusEnum.ACTIVE.value)

    # Monthly free product reward state
    free_product_eligible = Column(Boolean, nullable=False, default=False, server_default=false())
    free_product_used = Column(Boolean, nullable=False, default=False, server_default=false())
    last_reward_month = Column(String(7), nullable=True)
    selected_free_product_id = Column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    order_days = relationship(
        "RewardOrderDay",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="RewardOrderDay.order_date",
    )
    free_product_claims = relationship(
        "FreeProductClaim",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="FreeProductClaim.claimed_at",
    )
    selected_free_product = relationship("Product", foreign_keys=[selected_free_product_id])
