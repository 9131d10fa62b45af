"""Exceptions raised by the monthly free product reward engine."""

from __future__ import annotations

from uuid import UUID


class RewardError(RuntimeError):
    """Base exception for reward engine failures."""


class RewardUserNotFoundError(RewardError):
    """Raised when a write path references a missing user."""

    def __init__(self, user_id: UUID) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class RewardStorageError(RewardError):
    """Raised when persisting reward state fails; the transaction is rolled back."""


class FreeProductNotEligibleError(RewardError):
    """Raised when a user selects a free product without an active reward."""


class RewardProductNotFoundError(RewardError):
    """Raised when the selected free product does not exist."""

    def __init__(self, product_id: UUID) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class RewardProductUnavailableError(RewardError):
    """Raised when the selected free product is not active."""


__all__ = [
    "FreeProductNotEligibleError",
    "RewardError",
    "RewardProductNotFoundError",
    "RewardProductUnavailableError",
    "RewardStorageError",
    "RewardUserNotFoundError",
]
