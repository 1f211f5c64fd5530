from __future__ import annotations

import pytest

from taskwatch_mcp.config import TaskWatchSettings
from taskwatch_mcp.verification import CostEstimator


def test_half_hour_video_hits_sample_cap() -> None:
    estimate = CostEstimator().estimate(1800, 15)

    assert estimate.sample_count == 60
    assert estimate.sample_interval == 30
    assert estimate.estimated_tokens == 60 * 1000 + 500
    assert estimate.estimated_cost_usd == pytest.approx(60_500 / 1_000_000 * 3.0)


def test_short_video_uses_requested_interval() -> None:
    estimate = CostEstimator().estimate(120, 15)

    assert estimate.sample_count == 8
    assert estimate.sample_interval == 15


def test_zero_duration_costs_only_prompt() -> None:
    estimate = CostEstimator().estimate(0, 15)

    assert estimate.sample_count == 0
    assert estimate.estimated_tokens == 500


def test_estimate_is_monotonic_in_duration() -> None:
    estimator = CostEstimator()
    durations = [0, 1, 14, 15, 16, 300, 899, 900, 901, 1800, 3600, 7200]

    estimates = [estimator.estimate(duration, 15) for duration in durations]

    for earlier, later in zip(estimates, estimates[1:]):
        assert later.sample_count >= earlier.sample_count
        assert later.estimated_cost_usd >= earlier.estimated_cost_usd


def test_negative_duration_rejected() -> None:
    with pytest.raises(ValueError):
        CostEstimator().estimate(-1, 15)


def test_from_settings_uses_configured_pricing() -> None:
    settings = TaskWatchSettings(
        TASKWATCH_TOKENS_PER_FRAME=2000,
        TASKWATCH_PROMPT_TOKENS=0,
        TASKWATCH_USD_PER_MILLION_TOKENS=10.0,
        TASKWATCH_MAX_SAMPLES=10,
    )

    estimate = CostEstimator.from_settings(settings).estimate(600, 15)

    assert estimate.sample_count == 10
    assert estimate.estimated_tokens == 20_000
    assert estimate.to_dict()["estimated_cost_usd"] == pytest.approx(0.2)
