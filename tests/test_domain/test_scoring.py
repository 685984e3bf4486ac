"""
Tests for scoring strategies
"""
import pytest

from nodescore.config import Settings
from nodescore.domain.errors import ScoringPolicyError
from nodescore.domain.optimization_status import OptimizationStatus, StatusThresholds
from nodescore.domain.scoring import (
    AverageMeasureStrategy,
    ScoringResult,
    SearchOpportunityStrategy,
    build_strategy,
    ctr_gap_from,
    expected_ctr,
    position_potential_from,
    priority_from,
    revenue_multiplier_from,
    revenue_score_from,
    search_volume_score_from,
)


# === AverageMeasureStrategy ===

def test_average_of_two_values():
    result = AverageMeasureStrategy("x").compute_opportunity([{"x": 10.0}, {"x": 20.0}])
    assert isinstance(result, ScoringResult)
    assert result.score == 15.0
    assert result.status is OptimizationStatus.DECLINING


def test_average_after_new_value():
    result = AverageMeasureStrategy("x").compute_opportunity([{"x": 10.0}, {"x": 20.0}, {"x": 50.0}])
    assert result.score == 26.67


def test_average_skips_rows_without_measure():
    result = AverageMeasureStrategy("x").compute_opportunity([{"x": 10.0}, {"y": 99.0}, {"x": 30.0}])
    assert result.score == 20.0
    assert result.factors["samples"] == 2.0


def test_average_without_measure_fails():
    with pytest.raises(ScoringPolicyError):
        AverageMeasureStrategy("x").compute_opportunity([{"y": 1.0}])


def test_average_revenue_is_summed():
    strategy = AverageMeasureStrategy("x", revenue_measure="revenue")
    result = strategy.compute_opportunity([{"x": 1.0, "revenue": 100.0}, {"x": 2.0}, {"x": 3.0, "revenue": 50.5}])
    assert result.revenue_potential == 150.5


def test_average_uses_thresholds():
    strategy = AverageMeasureStrategy("x", thresholds=StatusThresholds(needs_attention=10, optimized=14))
    assert strategy.compute_opportunity([{"x": 15.0}]).status is OptimizationStatus.OPTIMIZED
    assert strategy.compute_opportunity([{"x": 12.0}]).status is OptimizationStatus.NEEDS_ATTENTION


# === Search factor functions ===

def test_expected_ctr_lookup():
    assert expected_ctr(1) == 0.2849
    assert expected_ctr(3.4) == 0.1065
    assert expected_ctr(0.4) == 0.2849
    assert expected_ctr(45) == 0.01


def test_ctr_gap():
    assert ctr_gap_from(1, 0.2849) == 0.0
    assert ctr_gap_from(1, 0.50) == 0.0
    assert ctr_gap_from(1, 0.0349) == pytest.approx(100.0)
    assert ctr_gap_from(1, 0.1599) == pytest.approx(50.0)


def test_search_volume_log_scale():
    assert search_volume_score_from(0) == 0.0
    assert search_volume_score_from(999_999) == pytest.approx(100.0)
    assert search_volume_score_from(10_000_000) == 100.0
    assert 0 < search_volume_score_from(1000) < search_volume_score_from(10_000)


def test_position_potential_bands():
    assert position_potential_from(0) == 0.0
    assert position_potential_from(2) == 20.0
    assert position_potential_from(8) == 90.0
    assert position_potential_from(15) == 70.0
    assert position_potential_from(30) == 40.0
    assert position_potential_from(80) == 10.0


def test_revenue_score_floor():
    assert revenue_score_from(0) == 10.0
    assert revenue_score_from(1) == 10.0
    assert revenue_score_from(99_999) == pytest.approx(100.0)


def test_revenue_multiplier():
    assert revenue_multiplier_from(5, 100) == 1.0
    assert revenue_multiplier_from(80, 100) == 3.0
    assert revenue_multiplier_from(80, 20_000) == pytest.approx(4.5)
    assert revenue_multiplier_from(20, 5_000) == pytest.approx(1.8)


def test_priority_bands():
    assert priority_from(100, 100_000) == 1
    assert priority_from(0, 0) == 5


# === SearchOpportunityStrategy ===

def test_search_strategy_weighted_score():
    window = [
        {"impressions": 100.0, "ctr": 0.01, "position": 30.0},
        {"impressions": 50_000.0, "ctr": 0.02, "position": 8.0, "revenue": 2000.0},
    ]
    result = SearchOpportunityStrategy().compute_opportunity(window)

    # newest snapshot wins
    assert result.factors["position_potential"] == 90.0
    assert 0 <= result.score <= 100
    assert result.priority in range(1, 6)
    assert 0 < len(result.recommendations) <= 5
    # small CTR gap (<10) with >10K impressions: 1.0 * 1.5
    assert result.factors["ctr_gap"] < 10
    assert result.revenue_potential == 3000.0


def test_search_strategy_revenue_only():
    result = SearchOpportunityStrategy().compute_opportunity([{"revenue": 500.0}])
    assert result.factors["ctr_gap"] == 0.0
    assert result.factors["competition"] == 50.0
    assert result.revenue_potential == 500.0


def test_search_strategy_needs_search_or_revenue():
    with pytest.raises(ScoringPolicyError):
        SearchOpportunityStrategy().compute_opportunity([{"traffic": 10.0}])


def test_search_strategy_rejects_unknown_weight():
    with pytest.raises(ScoringPolicyError):
        SearchOpportunityStrategy(weights={"bounce_rate": 0.5})


def test_search_strategy_custom_weights():
    window = [{"impressions": 1000.0, "ctr": 0.01, "position": 5.0, "revenue": 100.0}]
    only_volume = {"ctr_gap": 0, "search_volume": 1.0, "position_potential": 0, "competition": 0, "revenue": 0}
    result = SearchOpportunityStrategy(weights=only_volume).compute_opportunity(window)
    assert result.score == result.factors["search_volume"]


# === build_strategy ===

def test_build_strategy_from_settings():
    average = build_strategy(Settings(_env_file=None, SCORING_STRATEGY="average", SCORING_MEASURE="x"))
    assert isinstance(average, AverageMeasureStrategy)
    assert average.measure == "x"

    search = build_strategy(Settings(_env_file=None, SCORING_STRATEGY="search", OPTIMIZED_THRESHOLD=90))
    assert isinstance(search, SearchOpportunityStrategy)
    assert search.thresholds.optimized == 90


def test_average_strategy_defaults_to_bounded_measure():
    strategy = build_strategy(Settings(_env_file=None, SCORING_STRATEGY="average"))
    assert strategy.measure == "score"


def test_build_strategy_unknown():
    with pytest.raises(ScoringPolicyError):
        build_strategy(Settings(_env_file=None, SCORING_STRATEGY="magic"))


def test_build_strategy_bad_thresholds():
    with pytest.raises(ScoringPolicyError):
        build_strategy(Settings(_env_file=None, NEEDS_ATTENTION_THRESHOLD=90, OPTIMIZED_THRESHOLD=10))
