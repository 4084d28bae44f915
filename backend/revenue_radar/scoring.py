"""Revenue Potential Score (RPS).

RPS = 0.40 x revenue + 0.25 x frequency + 0.20 x urgency + 0.15 x effort,
where every sub-score is clamped to [0, 100] and the result is rounded to one
decimal place. Everything here is pure so scores can be recomputed without
re-running clustering.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .errors import DegenerateVectorError
from .schemas import UrgencyLevel


@dataclass(frozen=True)
class RPSWeights:
    revenue_impact: float = 0.40
    frequency: float = 0.25
    urgency: float = 0.20
    effort: float = 0.15


RPS_WEIGHTS = RPSWeights()

# Revenue saturates at $100k ARR.
REVENUE_SATURATION_ARR = 100_000.0
# One engineer-month.
EFFORT_CEILING_HOURS = 160.0

URGENCY_SCORES: dict[str, float] = {
    UrgencyLevel.LOW.value: 25.0,
    UrgencyLevel.MEDIUM.value: 50.0,
    UrgencyLevel.HIGH.value: 75.0,
    UrgencyLevel.CRITICAL.value: 100.0,
}
DEFAULT_URGENCY_SCORE = 25.0


@dataclass(frozen=True)
class RPSBreakdown:
    revenue_score: float
    frequency_score: float
    urgency_score: float
    effort_score: float
    rps: float


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _finite(value: float, name: str) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise DegenerateVectorError(f"{name} must be finite, got {value}")
    return value


def calculate_revenue_score(revenue_impact_arr: float) -> float:
    """Linear in ARR, saturating at REVENUE_SATURATION_ARR."""
    arr = _finite(revenue_impact_arr, "revenue_impact_arr")
    return _clamp(arr / REVENUE_SATURATION_ARR * 100)


def calculate_frequency_score(count: float) -> float:
    """Logarithmic damping: log10(count + 1) x 50."""
    count = max(0.0, _finite(count, "frequency"))
    return _clamp(math.log10(count + 1) * 50)


def calculate_urgency_score(level: UrgencyLevel | str | None) -> float:
    if isinstance(level, UrgencyLevel):
        level = level.value
    if not isinstance(level, str):
        return DEFAULT_URGENCY_SCORE
    return URGENCY_SCORES.get(level.strip().lower(), DEFAULT_URGENCY_SCORE)


def calculate_effort_score(hours: float) -> float:
    """Inverse-linear; zero at or beyond EFFORT_CEILING_HOURS."""
    hours = _finite(hours, "effort_hours")
    return _clamp(100 - (hours / EFFORT_CEILING_HOURS) * 100)


def combine_scores(
    revenue_score: float,
    frequency_score: float,
    urgency_score: float,
    effort_score: float,
    weights: RPSWeights = RPS_WEIGHTS,
) -> float:
    rps = (
        _clamp(_finite(revenue_score, "revenue_score")) * weights.revenue_impact
        + _clamp(_finite(frequency_score, "frequency_score")) * weights.frequency
        + _clamp(_finite(urgency_score, "urgency_score")) * weights.urgency
        + _clamp(_finite(effort_score, "effort_score")) * weights.effort
    )
    return round(_clamp(rps), 1)


def score_breakdown(
    revenue_impact_arr: float,
    frequency: float,
    urgency: UrgencyLevel | str | None,
    effort_hours: float,
    weights: RPSWeights = RPS_WEIGHTS,
) -> RPSBreakdown:
    revenue = calculate_revenue_score(revenue_impact_arr)
    frequency_score = calculate_frequency_score(frequency)
    urgency_score = calculate_urgency_score(urgency)
    effort = calculate_effort_score(effort_hours)
    return RPSBreakdown(
        revenue_score=revenue,
        frequency_score=frequency_score,
        urgency_score=urgency_score,
        effort_score=effort,
        rps=combine_scores(revenue, frequency_score, urgency_score, effort, weights),
    )


def calculate_rps(
    revenue_impact_arr: float,
    frequency: float,
    urgency: UrgencyLevel | str | None,
    effort_hours: float,
    weights: RPSWeights = RPS_WEIGHTS,
) -> float:
    return score_breakdown(revenue_impact_arr, frequency, urgency, effort_hours, weights).rps
