"""
Scoring strategies - turn a metric window into an opportunity score.

The engine only depends on ScoringStrategy.compute_opportunity; the formula
itself is swappable. Factor functions are pure so they can be unit-tested
and reused.
"""
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from nodescore.domain.errors import ScoringPolicyError
from nodescore.domain.optimization_status import OptimizationStatus, StatusThresholds


@dataclass(frozen=True)
class ScoringResult:
    score: float
    revenue_potential: float
    status: OptimizationStatus
    factors: dict[str, float] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)
    priority: int | None = None


class ScoringStrategy(ABC):
    """
    Scoring policy plugged into the OpportunityEngine

    Implementations must be stateless with respect to nodes: the engine may
    call the same instance concurrently for different nodes.
    """

    @abstractmethod
    def compute_opportunity(self, measures: Sequence[Mapping[str, float]]) -> ScoringResult:
        """
        Args:
            measures: the metric window, one mapping per NodeMetric,
                ascending by metric timestamp (never empty)

        Raises:
            ScoringPolicyError: the window cannot be scored by this policy
        """
        pass


def _clamp(val: float, lo: float = 0, hi: float = 100) -> float:
    return max(lo, min(hi, val))


def _latest(measures: Sequence[Mapping[str, float]], *names: str) -> Mapping[str, float] | None:
    """Newest snapshot that carries all of the given measures."""
    for snapshot in reversed(measures):
        if all(name in snapshot for name in names):
            return snapshot
    return None


# ── Average of one measure ──


class AverageMeasureStrategy(ScoringStrategy):
    """
    score = mean of one measure over the window;
    revenue potential = sum of the revenue measure (0 when absent).
    """

    def __init__(
        self,
        measure: str,
        revenue_measure: str | None = None,
        thresholds: StatusThresholds | None = None,
    ):
        self.measure = measure
        self.revenue_measure = revenue_measure
        self.thresholds = thresholds or StatusThresholds()

    def compute_opportunity(self, measures: Sequence[Mapping[str, float]]) -> ScoringResult:
        values = [snapshot[self.measure] for snapshot in measures if self.measure in snapshot]
        if not values:
            raise ScoringPolicyError(
                f"Metric window has no {self.measure!r} measure to average"
            )
        score = round(sum(values) / len(values), 2)

        revenue = 0.0
        if self.revenue_measure:
            revenue = sum(s.get(self.revenue_measure, 0.0) for s in measures)

        return ScoringResult(
            score=score,
            revenue_potential=round(revenue, 2),
            status=self.thresholds.status_for(score),
            factors={f"avg_{self.measure}": score, "samples": float(len(values))},
        )


# ── Search opportunity model ──

# Expected CTR by SERP position (Advanced Web Ranking 2024)
DEFAULT_CTR_BENCHMARKS: dict[int, float] = {
    1: 0.2849, 2: 0.1523, 3: 0.1065, 4: 0.073, 5: 0.0553,
    6: 0.0453, 7: 0.039, 8: 0.0342, 9: 0.0306, 10: 0.0276,
    11: 0.0251, 12: 0.0229, 13: 0.0211, 14: 0.0195, 15: 0.0181,
    16: 0.0169, 17: 0.0158, 18: 0.0148, 19: 0.014, 20: 0.0132,
}

DEFAULT_WEIGHTS: dict[str, float] = {
    "ctr_gap": 0.30,
    "search_volume": 0.25,
    "position_potential": 0.20,
    "competition": 0.10,
    "revenue": 0.15,
}


def expected_ctr(position: float, benchmarks: Mapping[int, float] = DEFAULT_CTR_BENCHMARKS) -> float:
    rounded = round(position)
    if rounded in benchmarks:
        return benchmarks[rounded]
    if position < 1:
        return benchmarks[min(benchmarks)]
    return 0.01


def ctr_gap_from(position: float, ctr: float, benchmarks: Mapping[int, float] = DEFAULT_CTR_BENCHMARKS) -> float:
    # A 25 point CTR shortfall is the top of the scale
    gap = max(0.0, expected_ctr(position, benchmarks) - ctr)
    return min(100.0, gap / 0.25 * 100)


def search_volume_score_from(impressions: float) -> float:
    # log scale, 1M impressions = 100
    if impressions <= 0:
        return 0.0
    return _clamp(math.log10(impressions + 1) / math.log10(1_000_000) * 100)


def position_potential_from(position: float) -> float:
    if position <= 0:
        return 0.0
    if position <= 3:
        return 20.0
    if position <= 10:
        return 90.0
    if position <= 20:
        return 70.0
    if position <= 50:
        return 40.0
    return 10.0


def competition_score_from(position: float, ctr: float, benchmarks: Mapping[int, float] = DEFAULT_CTR_BENCHMARKS) -> float:
    base = max(10.0, 100 - position * 2)
    ratio = ctr / expected_ctr(position, benchmarks)
    if ratio > 1.2:
        base = min(90.0, base + 20)
    if ratio < 0.8:
        base = max(10.0, base - 20)
    return base


def revenue_score_from(revenue: float) -> float:
    # log scale, 100K = 100; no revenue data scores the floor
    if revenue <= 0:
        return 10.0
    return _clamp(math.log10(revenue + 1) / math.log10(100_000) * 100, lo=10)


def revenue_multiplier_from(ctr_gap: float, impressions: float) -> float:
    if ctr_gap > 70:
        multiplier = 3.0
    elif ctr_gap > 50:
        multiplier = 2.5
    elif ctr_gap > 30:
        multiplier = 2.0
    elif ctr_gap > 10:
        multiplier = 1.5
    else:
        multiplier = 1.0
    if impressions > 10_000:
        multiplier *= 1.5
    elif impressions > 1_000:
        multiplier *= 1.2
    return multiplier


def priority_from(score: float, revenue_potential: float) -> int:
    """1 = critical ... 5 = very low"""
    combined = score * 0.7 + revenue_score_from(revenue_potential) * 0.3
    if combined >= 80:
        return 1
    if combined >= 65:
        return 2
    if combined >= 50:
        return 3
    if combined >= 30:
        return 4
    return 5


def recommendations_from(factors: Mapping[str, float]) -> list[str]:
    recs: list[str] = []
    if factors["ctr_gap"] > 60:
        recs.append("Improve title tags and meta descriptions to increase click-through rate")
    if factors["ctr_gap"] > 40:
        recs.append("Test different SERP snippets with rich snippets or schema markup")
    if factors["position_potential"] > 70:
        recs.append("Optimize content and technical SEO to improve search rankings")
    if factors["position_potential"] > 50:
        recs.append("Build high-quality backlinks to increase domain authority")
    if factors["search_volume"] > 80:
        recs.append("High search volume - prioritize for immediate optimization")
    if factors["search_volume"] > 60:
        recs.append("Expand content to target related long-tail keywords")
    if factors["revenue"] > 70:
        recs.append("High revenue potential - focus on conversion optimization")
    if factors["revenue"] > 50:
        recs.append("Implement conversion tracking to measure ROI impact")
    if factors["competition"] > 80:
        recs.append("Low competition detected - opportunity for quick wins")
    if factors["competition"] < 30:
        recs.append("High competition - focus on long-tail variations")
    return recs[:5]


class SearchOpportunityStrategy(ScoringStrategy):
    """
    Weighted search-performance model over GSC/GA4 style measures
    (impressions, ctr, position, revenue).

    Uses the newest snapshot carrying each group of measures; missing groups
    score their neutral default.
    """

    def __init__(
        self,
        weights: Mapping[str, float] | None = None,
        ctr_benchmarks: Mapping[int, float] | None = None,
        thresholds: StatusThresholds | None = None,
    ):
        self.weights = {**DEFAULT_WEIGHTS, **(weights or {})}
        unknown = set(self.weights) - set(DEFAULT_WEIGHTS)
        if unknown:
            raise ScoringPolicyError(f"Unknown scoring weights: {sorted(unknown)}")
        self.ctr_benchmarks = dict(ctr_benchmarks or DEFAULT_CTR_BENCHMARKS)
        self.thresholds = thresholds or StatusThresholds()

    def compute_opportunity(self, measures: Sequence[Mapping[str, float]]) -> ScoringResult:
        search = _latest(measures, "impressions", "ctr", "position")
        sales = _latest(measures, "revenue")
        if search is None and sales is None:
            raise ScoringPolicyError(
                "Metric window has neither search (impressions/ctr/position) nor revenue measures"
            )

        impressions = search["impressions"] if search else 0.0
        revenue = sales["revenue"] if sales else 0.0

        if search and search["impressions"] > 0 and search["position"] > 0:
            ctr_gap = ctr_gap_from(search["position"], search["ctr"], self.ctr_benchmarks)
            competition = competition_score_from(search["position"], search["ctr"], self.ctr_benchmarks)
            position_potential = position_potential_from(search["position"])
        else:
            ctr_gap, competition, position_potential = 0.0, 50.0, 0.0

        factors = {
            "ctr_gap": round(ctr_gap, 2),
            "search_volume": round(search_volume_score_from(impressions), 2),
            "position_potential": position_potential,
            "competition": competition,
            "revenue": round(revenue_score_from(revenue), 2),
        }
        score = round(_clamp(sum(factors[k] * self.weights[k] for k in DEFAULT_WEIGHTS)), 2)
        revenue_potential = round(revenue * revenue_multiplier_from(ctr_gap, impressions), 2)

        return ScoringResult(
            score=score,
            revenue_potential=revenue_potential,
            status=self.thresholds.status_for(score),
            factors=factors,
            recommendations=recommendations_from(factors),
            priority=priority_from(score, revenue_potential),
        )


def build_strategy(settings) -> ScoringStrategy:
    """Strategy selected by SCORING_STRATEGY"""
    thresholds = StatusThresholds(
        needs_attention=settings.NEEDS_ATTENTION_THRESHOLD,
        optimized=settings.OPTIMIZED_THRESHOLD,
    )
    if settings.SCORING_STRATEGY == "average":
        return AverageMeasureStrategy(
            measure=settings.SCORING_MEASURE,
            revenue_measure=settings.SCORING_REVENUE_MEASURE,
            thresholds=thresholds,
        )
    if settings.SCORING_STRATEGY == "search":
        return SearchOpportunityStrategy(thresholds=thresholds)
    raise ScoringPolicyError(f"Unknown scoring strategy: {settings.SCORING_STRATEGY!r}")
