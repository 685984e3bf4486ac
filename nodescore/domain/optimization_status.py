"""
Optimization status of a taxonomy node and the score → status mapping
"""
from dataclasses import dataclass
from enum import Enum

from nodescore.domain.errors import ScoringPolicyError


class OptimizationStatus(str, Enum):
    """
    Node status, declared worst → best

    UNSCORED is the state before the first successful scoring and is never
    produced by a strategy.
    """
    UNSCORED = "unscored"
    DECLINING = "declining"
    NEEDS_ATTENTION = "needs_attention"
    OPTIMIZED = "optimized"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @classmethod
    def from_column(cls, value: str | None) -> "OptimizationStatus":
        """NULL column (node never scored) reads as UNSCORED"""
        if value is None:
            return cls.UNSCORED
        return cls(value)


_RANK = {status: index for index, status in enumerate(OptimizationStatus)}


@dataclass(frozen=True)
class StatusThresholds:
    """
    Score cut-offs: below needs_attention → DECLINING,
    below optimized → NEEDS_ATTENTION, otherwise OPTIMIZED.

    Ascending cut-offs keep the mapping monotonic: a higher score never maps
    to a lower-ranked status.
    """
    needs_attention: float = 40.0
    optimized: float = 70.0

    def __post_init__(self):
        if self.needs_attention > self.optimized:
            raise ScoringPolicyError(
                f"Thresholds must be ascending: needs_attention={self.needs_attention} "
                f"> optimized={self.optimized}"
            )

    def status_for(self, score: float) -> OptimizationStatus:
        if score >= self.optimized:
            return OptimizationStatus.OPTIMIZED
        if score >= self.needs_attention:
            return OptimizationStatus.NEEDS_ATTENTION
        return OptimizationStatus.DECLINING
