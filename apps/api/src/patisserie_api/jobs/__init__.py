"""Recurring job entrypoints for reward automation."""

__all__ = [
    "rewards",
]
