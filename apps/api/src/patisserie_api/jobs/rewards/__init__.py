"""Reward job exports."""

from .monthly_reset import prune_free_product_claims, reset_free_product_rewards  # noqa: F401

__all__ = [
    "prune_free_product_claims",
    "reset_free_product_rewards",
]
