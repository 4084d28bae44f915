"""Turn clusters and their revenue signals into scored, persisted opportunities."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from .errors import PersistenceError
from .recommendations import STRATEGIC_ACTION_THRESHOLD, StrategicAdvisor, recommend_actions
from .schemas import (
    URGENCY_ORDER,
    Cluster,
    Opportunity,
    OpportunityCategory,
    OpportunityStatus,
    RevenueSignal,
    SignalType,
    UrgencyLevel,
)
from .scoring import RPS_WEIGHTS, RPSWeights, calculate_revenue_score, combine_scores, score_breakdown
from .store import Store

logger = logging.getLogger(__name__)

# First matching signal type wins.
CATEGORY_PRIORITY: tuple[tuple[SignalType, OpportunityCategory], ...] = (
    (SignalType.DEAL_BLOCKER, OpportunityCategory.MISSING_FEATURE),
    (SignalType.CHURN_RISK, OpportunityCategory.BUG_FIX),
    (SignalType.AUTOMATION_OPPORTUNITY, OpportunityCategory.AUTOMATION_GAP),
    (SignalType.FEATURE_GAP, OpportunityCategory.ROADMAP_MISALIGNMENT),
)
DEFAULT_CATEGORY = OpportunityCategory.MISSING_FEATURE


def derive_category(signals: Sequence[RevenueSignal]) -> OpportunityCategory:
    present = {signal.signal_type for signal in signals}
    for signal_type, category in CATEGORY_PRIORITY:
        if signal_type in present:
            return category
    return DEFAULT_CATEGORY


def max_urgency(signals: Sequence[RevenueSignal]) -> UrgencyLevel:
    highest = UrgencyLevel.LOW
    for signal in signals:
        if URGENCY_ORDER.index(signal.urgency) > URGENCY_ORDER.index(highest):
            highest = signal.urgency
    return highest


def total_revenue_impact(signals: Sequence[RevenueSignal]) -> float:
    return sum(signal.deal_size_arr or 0.0 for signal in signals)


def affected_customers(signals: Sequence[RevenueSignal]) -> list[str]:
    names = (signal.customer_name.strip() for signal in signals if signal.customer_name)
    return list(dict.fromkeys(name for name in names if name))


def synthesize_opportunity(
    cluster: Cluster,
    signals: Sequence[RevenueSignal],
    advisor: StrategicAdvisor | None = None,
    action_threshold: float = STRATEGIC_ACTION_THRESHOLD,
    weights: RPSWeights = RPS_WEIGHTS,
) -> Opportunity | None:
    """Build (but do not persist) the opportunity for one cluster; None when it has no signals."""
    if not signals:
        return None

    revenue_impact = total_revenue_impact(signals)
    effort_hours = cluster.total_time_spent_hours or 0.0
    scores = score_breakdown(
        revenue_impact_arr=revenue_impact,
        frequency=cluster.issue_count,
        urgency=max_urgency(signals),
        effort_hours=effort_hours,
        weights=weights,
    )

    draft = Opportunity(
        organization_id=cluster.organization_id,
        cluster_id=cluster.id,
        title=cluster.name,
        description=cluster.description,
        category=derive_category(signals),
        rps_score=scores.rps,
        revenue_impact_arr=revenue_impact,
        frequency_score=scores.frequency_score,
        urgency_score=scores.urgency_score,
        effort_hours=effort_hours,
        effort_score=scores.effort_score,
        status=OpportunityStatus.IDENTIFIED,
        affected_customers=affected_customers(signals),
    )
    actions = recommend_actions(draft, advisor, action_threshold)
    return draft.model_copy(update={"recommended_actions": actions})


def generate_opportunities(
    organization_id: str,
    store: Store,
    advisor: StrategicAdvisor | None = None,
    cluster_ids: Iterable[str] | None = None,
    action_threshold: float = STRATEGIC_ACTION_THRESHOLD,
    weights: RPSWeights = RPS_WEIGHTS,
) -> list[Opportunity]:
    """Synthesize one opportunity per cluster that carries revenue signals.

    Clusters are independent: a store failure for one cluster is logged and the
    loop moves on to the next.
    """
    clusters = store.list_clusters(organization_id, cluster_ids)
    opportunities: list[Opportunity] = []

    for cluster in clusters:
        try:
            members = store.list_cluster_members(cluster.id)
            if not members:
                continue
            signals = store.list_signals([member.issue_id for member in members])
        except PersistenceError as exc:
            logger.error("Could not load members/signals for cluster %s: %s", cluster.id, exc)
            continue

        draft = synthesize_opportunity(cluster, signals, advisor, action_threshold, weights)
        if draft is None:
            logger.debug("Cluster %s has no revenue signals, skipping", cluster.id)
            continue

        try:
            opportunities.append(store.insert_opportunity(draft))
        except PersistenceError as exc:
            logger.error("Failed to persist opportunity for cluster %s: %s", cluster.id, exc)

    logger.info(
        "Generated %d opportunities from %d clusters for organization %s",
        len(opportunities),
        len(clusters),
        organization_id,
    )
    return opportunities


def recalculate_rps(opportunity_id: str, store: Store, weights: RPSWeights = RPS_WEIGHTS) -> float:
    """Cheap recompute: fresh revenue sub-score, stored frequency/urgency/effort sub-scores."""
    opportunity = store.get_opportunity(opportunity_id)
    rps = combine_scores(
        calculate_revenue_score(opportunity.revenue_impact_arr or 0.0),
        opportunity.frequency_score,
        opportunity.urgency_score,
        opportunity.effort_score,
        weights,
    )
    store.update_opportunity(opportunity_id, rps_score=rps)
    return rps
