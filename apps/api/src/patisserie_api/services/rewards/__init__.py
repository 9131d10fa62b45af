"""Monthly free product reward service exports."""

from .calendar import Clock, RewardCalendar, format_month_key  # noqa: F401
from .errors import (  # noqa: F401
    FreeProductNotEligibleError,
    RewardError,
    RewardProductNotFoundError,
    RewardProductUnavailableError,
    RewardStorageError,
    RewardUserNotFoundError,
)
from .free_product_service import (  # noqa: F401
    FreeProductEligibility,
    FreeProductProgress,
    FreeProductRewardService,
    OrderDayTrackingResult,
)
from .order_hooks import FreeItem, OrderRewardOutcome, track_order_rewards  # noqa: F401
from .reporting import FreeProductReportingService  # noqa: F401
from .rollover import (  # noqa: F401
    ClaimRetentionSummary,
    FreeProductRolloverService,
    MonthlyResetSummary,
)
