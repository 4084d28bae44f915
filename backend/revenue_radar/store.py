"""Persistence contract for the pipeline plus an in-memory implementation."""

from __future__ import annotations

import threading
import uuid
from typing import Any, Iterable, Protocol

from .errors import OpportunityNotFound, PersistenceError
from .schemas import (
    Cluster,
    ClusterMember,
    Issue,
    Opportunity,
    OpportunityStatus,
    RevenueSignal,
    utcnow,
)

ALLOWED_TRANSITIONS: dict[OpportunityStatus, set[OpportunityStatus]] = {
    OpportunityStatus.IDENTIFIED: {OpportunityStatus.IN_PROGRESS, OpportunityStatus.DISMISSED},
    OpportunityStatus.IN_PROGRESS: {OpportunityStatus.COMPLETED, OpportunityStatus.DISMISSED},
    OpportunityStatus.COMPLETED: set(),
    OpportunityStatus.DISMISSED: set(),
}


class Store(Protocol):
    def upsert_issue(self, issue: Issue) -> Issue: ...

    def list_issues(self, organization_id: str, issue_ids: Iterable[str] | None = None) -> list[Issue]: ...

    def count_issues(self, organization_id: str) -> int: ...

    def get_embedding(self, issue_id: str) -> list[float] | None: ...

    def save_embedding(self, issue_id: str, vector: list[float]) -> None: ...

    def insert_cluster(self, cluster: Cluster, member_scores: dict[str, float]) -> Cluster: ...

    def list_clusters(self, organization_id: str, cluster_ids: Iterable[str] | None = None) -> list[Cluster]: ...

    def list_cluster_members(self, cluster_id: str) -> list[ClusterMember]: ...

    def insert_signals(self, signals: list[RevenueSignal]) -> list[RevenueSignal]: ...

    def replace_signals(self, issue_ids: Iterable[str], signals: list[RevenueSignal]) -> list[RevenueSignal]: ...

    def list_signals(self, issue_ids: Iterable[str]) -> list[RevenueSignal]: ...

    def insert_opportunity(self, opportunity: Opportunity) -> Opportunity: ...

    def get_opportunity(self, opportunity_id: str) -> Opportunity: ...

    def update_opportunity(self, opportunity_id: str, **fields: Any) -> Opportunity: ...

    def list_opportunities(
        self,
        organization_id: str,
        status: OpportunityStatus | None = None,
        limit: int | None = None,
    ) -> list[Opportunity]: ...


class InMemoryStore:
    """Dictionary-backed store. Issues upsert on (integration_id, external_id)."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._issues: dict[str, Issue] = {}
        self._issue_keys: dict[tuple[str, str], str] = {}
        self._embeddings: dict[str, list[float]] = {}
        self._clusters: dict[str, Cluster] = {}
        self._members: dict[str, list[ClusterMember]] = {}
        self._signals: list[RevenueSignal] = []
        self._opportunities: dict[str, Opportunity] = {}

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def upsert_issue(self, issue: Issue) -> Issue:
        with self._lock:
            key = (issue.integration_id, issue.external_id)
            existing_id = self._issue_keys.get(key) if issue.external_id else None
            if existing_id is not None:
                previous = self._issues[existing_id]
                issue = issue.model_copy(
                    update={"id": existing_id, "created_at": previous.created_at, "updated_at": utcnow()}
                )
            self._issues[issue.id] = issue
            if issue.external_id:
                self._issue_keys[key] = issue.id
            return issue

    def list_issues(self, organization_id: str, issue_ids: Iterable[str] | None = None) -> list[Issue]:
        with self._lock:
            issues = [issue for issue in self._issues.values() if issue.organization_id == organization_id]
        if issue_ids is not None:
            wanted = set(issue_ids)
            issues = [issue for issue in issues if issue.id in wanted]
        return issues

    def count_issues(self, organization_id: str) -> int:
        return len(self.list_issues(organization_id))

    def get_embedding(self, issue_id: str) -> list[float] | None:
        return self._embeddings.get(issue_id)

    def save_embedding(self, issue_id: str, vector: list[float]) -> None:
        with self._lock:
            self._embeddings[issue_id] = list(vector)

    def insert_cluster(self, cluster: Cluster, member_scores: dict[str, float]) -> Cluster:
        """Store a cluster together with its members; nothing is written if any member is invalid."""
        with self._lock:
            if not member_scores:
                raise PersistenceError("Refusing to store a cluster without members")
            missing = [issue_id for issue_id in member_scores if issue_id not in self._issues]
            if missing:
                raise PersistenceError(f"Unknown issues {missing}")

            stored = cluster.model_copy(update={"id": self._new_id()})
            self._clusters[stored.id] = stored
            self._members[stored.id] = [
                ClusterMember(cluster_id=stored.id, issue_id=issue_id, similarity_score=score)
                for issue_id, score in member_scores.items()
            ]
            return stored

    def list_clusters(self, organization_id: str, cluster_ids: Iterable[str] | None = None) -> list[Cluster]:
        with self._lock:
            clusters = [c for c in self._clusters.values() if c.organization_id == organization_id]
        if cluster_ids is not None:
            wanted = set(cluster_ids)
            clusters = [c for c in clusters if c.id in wanted]
        return sorted(clusters, key=lambda c: c.created_at, reverse=True)

    def list_cluster_members(self, cluster_id: str) -> list[ClusterMember]:
        return list(self._members.get(cluster_id, []))

    def insert_signals(self, signals: list[RevenueSignal]) -> list[RevenueSignal]:
        with self._lock:
            stored = [signal.model_copy(update={"id": self._new_id()}) for signal in signals]
            self._signals.extend(stored)
            return stored

    def replace_signals(self, issue_ids: Iterable[str], signals: list[RevenueSignal]) -> list[RevenueSignal]:
        """Drop every stored signal of `issue_ids`, then store `signals` in their place."""
        replaced = set(issue_ids)
        with self._lock:
            self._signals = [signal for signal in self._signals if signal.issue_id not in replaced]
            return self.insert_signals(signals)

    def list_signals(self, issue_ids: Iterable[str]) -> list[RevenueSignal]:
        wanted = set(issue_ids)
        with self._lock:
            return [signal for signal in self._signals if signal.issue_id in wanted]

    def insert_opportunity(self, opportunity: Opportunity) -> Opportunity:
        with self._lock:
            stored = opportunity.model_copy(update={"id": self._new_id()})
            self._opportunities[stored.id] = stored
            return stored

    def get_opportunity(self, opportunity_id: str) -> Opportunity:
        try:
            return self._opportunities[opportunity_id]
        except KeyError:
            raise OpportunityNotFound(f"Opportunity {opportunity_id} not found") from None

    def update_opportunity(self, opportunity_id: str, **fields: Any) -> Opportunity:
        with self._lock:
            current = self.get_opportunity(opportunity_id)
            merged = {**current.model_dump(), **fields, "updated_at": utcnow()}
            updated = Opportunity.model_validate(merged)
            self._opportunities[opportunity_id] = updated
            return updated

    def list_opportunities(
        self,
        organization_id: str,
        status: OpportunityStatus | None = None,
        limit: int | None = None,
    ) -> list[Opportunity]:
        with self._lock:
            opportunities = [o for o in self._opportunities.values() if o.organization_id == organization_id]
        if status is not None:
            opportunities = [o for o in opportunities if o.status == status]
        opportunities.sort(key=lambda o: o.rps_score, reverse=True)
        return opportunities[:limit] if limit is not None else opportunities


def update_opportunity_status(store: Store, opportunity_id: str, status: OpportunityStatus) -> Opportunity:
    current = store.get_opportunity(opportunity_id)
    if status == current.status:
        return current
    if status not in ALLOWED_TRANSITIONS[current.status]:
        raise ValueError(f"Cannot move opportunity from {current.status.value} to {status.value}")
    return store.update_opportunity(opportunity_id, status=status)
