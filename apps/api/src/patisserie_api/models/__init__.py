"""SQLAlchemy models package."""

# Import all models
from .product import Product  # noqa: F401
from .rewards import FreeProductClaim, RewardOrderDay  # noqa: F401
from .user import User, UserRoleEnum, UserStatusEnum  # noqa: F401
