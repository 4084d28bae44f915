from __future__ import annotations

import pandas as pd

from .schemas import DashboardMetrics, OpportunityStatus
from .store import Store

HIGH_PRIORITY_THRESHOLD = 70.0


def dashboard_metrics(
    organization_id: str,
    store: Store,
    high_priority_threshold: float = HIGH_PRIORITY_THRESHOLD,
) -> DashboardMetrics:
    """Headline numbers over the organization's still-open (identified) opportunities."""
    opportunities = store.list_opportunities(organization_id, status=OpportunityStatus.IDENTIFIED)
    frame = pd.DataFrame(
        [{"revenue_impact_arr": o.revenue_impact_arr, "rps_score": o.rps_score} for o in opportunities],
        columns=["revenue_impact_arr", "rps_score"],
    )
    clusters = store.list_clusters(organization_id)

    return DashboardMetrics(
        total_revenue_at_risk=float(frame["revenue_impact_arr"].fillna(0).sum()),
        total_opportunities=len(frame),
        high_priority_opportunities=int((frame["rps_score"] >= high_priority_threshold).sum()),
        avg_rps_score=round(float(frame["rps_score"].mean()), 1) if not frame.empty else 0.0,
        total_issues_analyzed=store.count_issues(organization_id),
        total_clusters=len(clusters),
        last_analysis_date=max((c.created_at for c in clusters), default=None),
    )
