from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RewardSnapshot:
    tracking: Dict[str, int]
    claims: Dict[str, int]
    maintenance: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "tracking": dict(self.tracking),
            "claims": dict(self.claims),
            "maintenance": dict(self.maintenance),
        }


class RewardObservabilityStore:
    """Collect free product reward telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._tracking: Dict[str, int] = defaultdict(int)
        self._claims: Dict[str, int] = defaultdict(int)
        self._maintenance: Dict[str, int] = defaultdict(int)

    def record_order_tracked(self, *, new_day: bool) -> None:
        with self._lock:
            self._tracking["orders_tracked"] += 1
            if new_day:
                self._tracking["days_recorded"] += 1
            else:
                self._tracking["duplicate_days"] += 1

    def record_eligibility_granted(self) -> None:
        with self._lock:
            self._tracking["eligibility_granted"] += 1

    def record_tracking_failure(self) -> None:
        with self._lock:
            self._tracking["failures"] += 1

    def record_claim(self, *, duplicate: bool) -> None:
        with self._lock:
            key = "duplicates_ignored" if duplicate else "claimed"
            self._claims[key] += 1

    def record_claim_failure(self) -> None:
        with self._lock:
            self._claims["failures"] += 1

    def record_rollover(self, source: str) -> None:
        with self._lock:
            self._maintenance["rollovers"] += 1
            self._maintenance[f"rollovers:{source}"] += 1

    def record_self_heal(self) -> None:
        with self._lock:
            self._maintenance["self_heals"] += 1

    def record_batch_reset(self, *, users_reset: int, users_cleaned: int) -> None:
        with self._lock:
            self._maintenance["batch_runs"] += 1
            self._maintenance["batch_users_reset"] += users_reset
            self._maintenance["batch_users_cleaned"] += users_cleaned

    def record_claims_pruned(self, count: int) -> None:
        with self._lock:
            self._maintenance["claims_pruned"] += count

    def snapshot(self) -> RewardSnapshot:
        with self._lock:
            return RewardSnapshot(
                tracking=dict(self._tracking),
                claims=dict(self._claims),
                maintenance=dict(self._maintenance),
            )

    def reset(self) -> None:
        with self._lock:
            self._tracking.clear()
            self._claims.clear()
            self._maintenance.clear()


_STORE = RewardObservabilityStore()


def get_reward_store() -> RewardObservabilityStore:
    return _STORE


__all__ = ["get_reward_store", "RewardObservabilityStore", "RewardSnapshot"]
