"""Memory risk estimation for client-side filtering.

Client-side evaluation needs the candidate tasks in memory. Before filtering
them we estimate how large the full candidate set is from a small sample, and
refuse to go on when the estimate is in the High tier. The estimate is
deliberately rough: its job is to reject pathological requests (for example
"match everything" over a very large instance), not exact accounting.
"""

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MB = 1024 * 1024

DEFAULT_SAMPLE_SIZE = 20
DEFAULT_MARGIN = 2.5
DEFAULT_LOW_WATER_BYTES = 25 * MB
DEFAULT_HIGH_WATER_BYTES = 100 * MB


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class MemoryEstimate:
    """Estimated in-memory footprint of a candidate item set.

    Attributes:
        estimated_bytes: Projected size including the safety margin
        risk_tier: Low, Medium or High relative to the water marks
        item_count_sampled: How many items were actually serialized
        margin_multiplier: Safety margin applied to the raw projection
        projected_total: Number of items the projection covers
    """

    estimated_bytes: int
    risk_tier: RiskTier
    item_count_sampled: int
    margin_multiplier: float
    projected_total: int

    @property
    def estimated_mb(self) -> float:
        return self.estimated_bytes / MB

    def to_dict(self) -> dict[str, Any]:
        return {
            "estimated_bytes": self.estimated_bytes,
            "estimated_mb": round(self.estimated_mb, 2),
            "risk_tier": self.risk_tier.value,
            "item_count_sampled": self.item_count_sampled,
            "margin_multiplier": self.margin_multiplier,
            "projected_total": self.projected_total,
        }


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str = ""


def _serialized_size(item: Any) -> int:
    if hasattr(item, "model_dump_json"):
        return len(item.model_dump_json().encode("utf-8"))
    return len(json.dumps(item, default=str).encode("utf-8"))


class MemoryRiskEstimator:
    """Estimates the memory footprint of an item set and gates on it.

    The estimator is stateless; estimates are computed fresh on every call
    because task shapes (descriptions, labels, assignees) vary widely.
    """

    def __init__(
        self,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        margin: float = DEFAULT_MARGIN,
        low_water_bytes: int = DEFAULT_LOW_WATER_BYTES,
        high_water_bytes: int = DEFAULT_HIGH_WATER_BYTES,
    ):
        if sample_size < 1:
            raise ValueError("sample_size must be at least 1")
        if margin < 1:
            raise ValueError("margin must be at least 1.0")
        if high_water_bytes <= low_water_bytes:
            raise ValueError("high_water_bytes must be greater than low_water_bytes")
        self.sample_size = sample_size
        self.margin = margin
        self.low_water_bytes = low_water_bytes
        self.high_water_bytes = high_water_bytes

    def sample(self, items: Sequence[Any]) -> list[Any]:
        """Pick at most ``sample_size`` evenly spaced items."""
        count = len(items)
        if count <= self.sample_size:
            return list(items)
        step = count / self.sample_size
        return [items[int(i * step)] for i in range(self.sample_size)]

    def tier_for(self, estimated_bytes: int) -> RiskTier:
        if estimated_bytes >= self.high_water_bytes:
            return RiskTier.HIGH
        if estimated_bytes >= self.low_water_bytes:
            return RiskTier.MEDIUM
        return RiskTier.LOW

    def estimate(self, sample_items: Sequence[Any], projected_total: int) -> MemoryEstimate:
        """Project the footprint of ``projected_total`` items from a sample.

        Args:
            sample_items: Representative items; only ``sample_size`` of them
                are serialized
            projected_total: Number of items the caller expects to hold

        Returns:
            A fresh MemoryEstimate
        """
        sample = self.sample(sample_items)
        if not sample or projected_total <= 0:
            return MemoryEstimate(0, RiskTier.LOW, len(sample), self.margin, max(projected_total, 0))

        sample_bytes = sum(_serialized_size(item) for item in sample)
        projected = sample_bytes * (projected_total / len(sample))
        estimated = int(projected * self.margin)

        estimate = MemoryEstimate(
            estimated_bytes=estimated,
            risk_tier=self.tier_for(estimated),
            item_count_sampled=len(sample),
            margin_multiplier=self.margin,
            projected_total=projected_total,
        )
        logger.debug(
            f"Memory estimate: {estimate.estimated_mb:.1f}MB for {projected_total} items "
            f"({estimate.risk_tier.value})"
        )
        return estimate

    def gate(self, estimate: MemoryEstimate, allow_high: bool = False) -> GateDecision:
        """Decide whether client-side evaluation may proceed."""
        if estimate.risk_tier is RiskTier.HIGH and not allow_high:
            return GateDecision(
                allowed=False,
                reason=(
                    f"Estimated memory {estimate.estimated_mb:.1f}MB for "
                    f"{estimate.projected_total} tasks is in the high risk tier "
                    f"(limit {self.high_water_bytes / MB:.0f}MB)"
                ),
            )
        return GateDecision(allowed=True)
