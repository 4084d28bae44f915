from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from io import BytesIO
from typing import Iterable, Sequence

import pandas as pd

from .clustering import dbscan, noise_points
from .config import Settings
from .embeddings import EmbeddingProvider, HashingEmbeddingProvider, load_embeddings
from .errors import ConfigurationError, PersistenceError
from .heuristics import KeywordClusterSummarizer, KeywordSignalExtractor
from .metrics import dashboard_metrics
from .openai_client import (
    OpenAIClusterSummarizer,
    OpenAIEmbeddingProvider,
    OpenAISignalExtractor,
    OpenAIStrategicAdvisor,
    get_async_openai_client,
    get_openai_client,
)
from .opportunities import generate_opportunities, recalculate_rps
from .recommendations import StrategicAdvisor
from .schemas import Cluster, ClusterResult, DashboardMetrics, Issue, Opportunity, RevenueSignal
from .signals import SignalExtractor, extract_signals_by_issue
from .similarity import similarity_to_centroid
from .store import InMemoryStore, Store
from .summarization import ClusterSummarizer, summarize_cluster

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {"id", "title"}
EFFORT_METADATA_KEYS = ("time_estimate_hours", "timeEstimateHours")


def load_issues_csv(file_bytes: bytes, organization_id: str) -> list[Issue]:
    """Parse an issue export; `labels` is a semicolon-separated column."""
    df = pd.read_csv(BytesIO(file_bytes), dtype=str).fillna("")
    missing = REQUIRED_COLUMNS - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(sorted(missing))}")
    df["title"] = df["title"].str.strip()
    df = df[df["title"] != ""]

    issues = []
    for row in df.to_dict(orient="records"):
        metadata: dict[str, object] = {}
        if row.get("customer"):
            metadata["customer"] = row["customer"]
        raw_hours = row.get("time_estimate_hours") or row.get("timeEstimateHours")
        hours = parse_hours(raw_hours)
        if hours is not None:
            metadata["time_estimate_hours"] = hours
        elif raw_hours:
            logger.warning("Ignoring unusable time estimate %r on issue %s", raw_hours, row["id"])
        issues.append(
            Issue(
                id=row["id"],
                organization_id=organization_id,
                integration_id=row.get("integration_id") or "csv",
                external_id=row.get("external_id") or row["id"],
                source=row.get("source") or "csv",
                type=row.get("type") or None,
                title=row["title"],
                description=row.get("description") or None,
                priority=row.get("priority") or None,
                status=row.get("status") or None,
                labels=[label.strip() for label in row.get("labels", "").split(";") if label.strip()],
                metadata=metadata,
            )
        )
    return issues


def order_issues(issues: Sequence[Issue], issue_ids: Sequence[str] | None) -> list[Issue]:
    """Caller-supplied id order when given, ascending id otherwise."""
    if issue_ids:
        position = {issue_id: idx for idx, issue_id in enumerate(issue_ids)}
        return sorted(issues, key=lambda issue: position.get(issue.id, len(position)))
    return sorted(issues, key=lambda issue: issue.id)


def parse_hours(value: object) -> float | None:
    """A non-negative, finite hour count, or None for anything unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        hours = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(hours) or hours < 0:
        return None
    return hours


def issue_effort_hours(issue: Issue, default: float) -> float:
    for key in EFFORT_METADATA_KEYS:
        hours = parse_hours(issue.metadata.get(key))
        if hours is not None:
            return hours
    return default


@dataclass
class AnalysisRun:
    clusters: list[ClusterResult] = field(default_factory=list)
    signals: list[RevenueSignal] = field(default_factory=list)
    opportunities: list[Opportunity] = field(default_factory=list)


class AnalysisService:
    """One organization-scoped analysis pipeline with explicitly injected collaborators."""

    def __init__(
        self,
        store: Store,
        embedder: EmbeddingProvider,
        summarizer: ClusterSummarizer,
        extractor: SignalExtractor,
        advisor: StrategicAdvisor | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.summarizer = summarizer
        self.extractor = extractor
        self.advisor = advisor
        self.settings = settings or Settings()

    def cluster_issues(self, organization_id: str, issue_ids: Sequence[str] | None = None) -> list[ClusterResult]:
        issues = order_issues(self.store.list_issues(organization_id, issue_ids), issue_ids)
        if not issues:
            return []

        points = load_embeddings(issues, self.embedder, self.store)
        clusters = dbscan(points, eps=self.settings.dbscan_eps, min_points=self.settings.dbscan_min_points)
        logger.info(
            "Organization %s: %d issues embedded, %d clusters, %d noise",
            organization_id,
            len(points),
            len(clusters),
            len(noise_points(points, clusters)),
        )

        issues_by_id = {issue.id: issue for issue in issues}
        vectors = dict(points)
        results: list[ClusterResult] = []
        for member_ids in clusters.values():
            members = [issues_by_id[issue_id] for issue_id in member_ids]
            summary = summarize_cluster(self.summarizer, members)
            scores = similarity_to_centroid([vectors[issue_id] for issue_id in member_ids])
            effort = sum(issue_effort_hours(issue, self.settings.default_issue_effort_hours) for issue in members)

            try:
                cluster = self.store.insert_cluster(
                    Cluster(
                        organization_id=organization_id,
                        name=summary.name,
                        description=summary.description,
                        theme=summary.theme,
                        issue_count=len(member_ids),
                        total_time_spent_hours=effort,
                    ),
                    dict(zip(member_ids, scores)),
                )
            except PersistenceError as exc:
                logger.error("Failed to create cluster %r: %s", summary.name, exc)
                continue

            results.append(
                ClusterResult(
                    cluster_id=cluster.id,
                    name=cluster.name,
                    description=cluster.description,
                    theme=cluster.theme,
                    issue_ids=list(member_ids),
                    issue_count=len(member_ids),
                )
            )
        return results

    async def detect_signals(
        self, organization_id: str, issue_ids: Sequence[str] | None = None
    ) -> list[RevenueSignal]:
        """Extract and store signals; a re-extracted issue's earlier signals are replaced, not appended to."""
        issues = order_issues(self.store.list_issues(organization_id, issue_ids), issue_ids)
        by_issue = await extract_signals_by_issue(
            issues,
            self.extractor,
            batch_size=self.settings.signal_batch_size,
            cooldown_seconds=self.settings.signal_batch_cooldown_seconds,
            timeout=self.settings.provider_call_timeout_seconds,
        )
        if not by_issue:
            return []
        signals = [signal for extracted in by_issue.values() for signal in extracted]
        return self.store.replace_signals(by_issue.keys(), signals)

    def generate_opportunities(
        self, organization_id: str, cluster_ids: Iterable[str] | None = None
    ) -> list[Opportunity]:
        return generate_opportunities(
            organization_id,
            self.store,
            advisor=self.advisor,
            cluster_ids=cluster_ids,
            action_threshold=self.settings.strategic_action_threshold,
        )

    def recalculate_rps(self, opportunity_id: str) -> float:
        return recalculate_rps(opportunity_id, self.store)

    def metrics(self, organization_id: str) -> DashboardMetrics:
        return dashboard_metrics(organization_id, self.store, self.settings.high_priority_threshold)

    async def run(self, organization_id: str, issue_ids: Sequence[str] | None = None) -> AnalysisRun:
        """Cluster, extract signals for clustered issues only, then synthesize opportunities."""
        run = AnalysisRun(clusters=self.cluster_issues(organization_id, issue_ids))
        if not run.clusters:
            return run

        clustered_ids = [issue_id for cluster in run.clusters for issue_id in cluster.issue_ids]
        run.signals = await self.detect_signals(organization_id, clustered_ids)
        run.opportunities = self.generate_opportunities(
            organization_id, cluster_ids=[cluster.cluster_id for cluster in run.clusters]
        )
        return run


def build_service(settings: Settings, store: Store | None = None) -> AnalysisService:
    store = store if store is not None else InMemoryStore()
    if settings.provider_backend == "offline":
        return AnalysisService(
            store=store,
            embedder=HashingEmbeddingProvider(),
            summarizer=KeywordClusterSummarizer(),
            extractor=KeywordSignalExtractor(),
            settings=settings,
        )

    if settings.provider_backend != "openai":
        raise ConfigurationError(f"Unknown provider backend {settings.provider_backend!r}")

    client = get_openai_client(settings)
    return AnalysisService(
        store=store,
        embedder=OpenAIEmbeddingProvider(client, settings.embedding_model),
        summarizer=OpenAIClusterSummarizer(client, settings.chat_model),
        extractor=OpenAISignalExtractor(get_async_openai_client(settings), settings.chat_model),
        advisor=OpenAIStrategicAdvisor(client, settings.chat_model),
        settings=settings,
    )
