from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalType(str, Enum):
    DEAL_BLOCKER = "deal_blocker"
    CHURN_RISK = "churn_risk"
    FEATURE_GAP = "feature_gap"
    AUTOMATION_OPPORTUNITY = "automation_opportunity"


class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Ascending severity, used for max-urgency selection.
URGENCY_ORDER: tuple[UrgencyLevel, ...] = (
    UrgencyLevel.LOW,
    UrgencyLevel.MEDIUM,
    UrgencyLevel.HIGH,
    UrgencyLevel.CRITICAL,
)


class OpportunityCategory(str, Enum):
    MISSING_FEATURE = "missing_feature"
    AUTOMATION_GAP = "automation_gap"
    BUG_FIX = "bug_fix"
    ROADMAP_MISALIGNMENT = "roadmap_misalignment"


class OpportunityStatus(str, Enum):
    IDENTIFIED = "identified"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DISMISSED = "dismissed"


class Issue(BaseModel):
    id: str
    organization_id: str
    integration_id: str = ""
    external_id: str = ""
    source: str = "manual"
    type: str | None = None
    title: str
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    labels: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ClusterSummary(BaseModel):
    name: str = "Unnamed Cluster"
    description: str = ""
    theme: str = ""


class Cluster(BaseModel):
    id: str | None = None
    organization_id: str
    name: str
    description: str = ""
    theme: str = ""
    issue_count: int = Field(..., ge=1)
    total_time_spent_hours: float = Field(default=0.0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)


class ClusterMember(BaseModel):
    cluster_id: str
    issue_id: str
    similarity_score: float = Field(..., ge=0, le=1)


class ClusterResult(BaseModel):
    cluster_id: str
    name: str
    description: str
    theme: str
    issue_ids: list[str]
    issue_count: int


class RevenueSignal(BaseModel):
    id: str | None = None
    organization_id: str | None = None
    issue_id: str
    signal_type: SignalType
    confidence: float = Field(default=0.0, ge=0, le=1)
    deal_size_arr: float | None = Field(default=None, ge=0)
    customer_name: str | None = None
    urgency: UrgencyLevel = UrgencyLevel.LOW
    extracted_entities: dict[str, Any] = Field(default_factory=dict)
    pain_points: list[str] = Field(default_factory=list)
    competitive_context: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Opportunity(BaseModel):
    id: str | None = None
    organization_id: str
    cluster_id: str | None = None
    title: str
    description: str = ""
    category: OpportunityCategory
    rps_score: float = Field(..., ge=0, le=100)
    revenue_impact_arr: float = Field(default=0.0, ge=0)
    frequency_score: float = Field(..., ge=0, le=100)
    urgency_score: float = Field(..., ge=0, le=100)
    effort_hours: float = Field(default=0.0, ge=0)
    effort_score: float = Field(..., ge=0, le=100)
    status: OpportunityStatus = OpportunityStatus.IDENTIFIED
    affected_customers: list[str] = Field(default_factory=list)
    recommended_actions: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("affected_customers")
    @classmethod
    def _unique_customers(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))


class DashboardMetrics(BaseModel):
    total_revenue_at_risk: float = Field(..., ge=0)
    total_opportunities: int = Field(..., ge=0)
    high_priority_opportunities: int = Field(..., ge=0)
    avg_rps_score: float = Field(..., ge=0, le=100)
    total_issues_analyzed: int = Field(..., ge=0)
    total_clusters: int = Field(..., ge=0)
    last_analysis_date: datetime | None = None
