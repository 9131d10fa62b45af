"""Clock and calendar-month helpers for the monthly reward."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from patisserie_api.core.settings import settings

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


def format_month_key(year: int, month: int) -> str:
    """Return the ``YYYY-MM`` key for a calendar month."""

    return f"{year:04d}-{month:02d}"


def parse_month_key(value: str) -> tuple[int, int]:
    """Split a ``YYYY-MM`` key into ``(year, month)``."""

    year_part, _, month_part = value.partition("-")
    year, month = int(year_part), int(month_part)
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {value}")
    return year, month


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


@dataclass(frozen=True, slots=True)
class RewardMoment:
    """A point in time resolved to the reward calendar."""

    instant: datetime
    today: date

    @property
    def month(self) -> int:
        return self.today.month

    @property
    def year(self) -> int:
        return self.today.year

    @property
    def month_key(self) -> str:
        return format_month_key(self.year, self.month)

    def month_key_offset(self, delta: int) -> str:
        return format_month_key(*shift_month(self.year, self.month, delta))


class RewardCalendar:
    """Resolves "now" from a clock into calendar dates in the storefront timezone."""

    def __init__(self, clock: Clock | None = None, *, tz_name: str | None = None) -> None:
        self._clock = clock or system_clock
        self._tz = ZoneInfo(tz_name or settings.reward_timezone)

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def localize(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(self._tz)

    def now(self) -> RewardMoment:
        instant = self.localize(self._clock())
        return RewardMoment(instant=instant, today=instant.date())


__all__ = [
    "Clock",
    "RewardCalendar",
    "RewardMoment",
    "format_month_key",
    "parse_month_key",
    "shift_month",
    "system_clock",
]
