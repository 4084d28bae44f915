import unittest
from pathlib import Path

from e2e_demo import run_analysis
from revenue_radar.config import Settings
from revenue_radar.embeddings import HashingEmbeddingProvider, issue_to_text
from revenue_radar.errors import ConfigurationError, EmbeddingUnavailable
from revenue_radar.heuristics import KeywordClusterSummarizer, KeywordSignalExtractor
from revenue_radar.pipeline import (
    AnalysisService,
    build_service,
    issue_effort_hours,
    load_issues_csv,
    order_issues,
)
from revenue_radar.schemas import ClusterSummary, Issue, RevenueSignal, SignalType, UrgencyLevel
from revenue_radar.store import InMemoryStore

SAMPLE_CSV = Path(__file__).parent / "example_data" / "issues.csv"

VECTORS = {
    "SSO": [1.0, 0.0, 0.0],
    "Export": [0.0, 1.0, 0.0],
    "Dark": [0.0, 0.0, 1.0],
}


class KeywordVectorEmbedder:
    def __init__(self) -> None:
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        for keyword, vector in VECTORS.items():
            if keyword in text:
                return vector
        raise EmbeddingUnavailable("no vector for text")


class TitleSummarizer:
    def summarize(self, issues):
        return ClusterSummary(name=issues[0].title.split()[0], description="summary", theme="theme")


class BrokenSummarizer:
    def summarize(self, issues):
        raise RuntimeError("provider down")


class DealExtractor:
    def __init__(self) -> None:
        self.seen: list[str] = []

    async def extract(self, issue: Issue) -> list[RevenueSignal]:
        self.seen.append(issue.id)
        return [
            RevenueSignal(
                organization_id=issue.organization_id,
                issue_id=issue.id,
                signal_type=SignalType.DEAL_BLOCKER,
                confidence=0.9,
                deal_size_arr=10_000,
                customer_name=issue.metadata.get("customer"),
                urgency=UrgencyLevel.HIGH,
            )
        ]


def _issue(issue_id: str, title: str, **metadata) -> Issue:
    return Issue(id=issue_id, organization_id="org-1", title=title, metadata=metadata)


def _seed_store() -> InMemoryStore:
    store = InMemoryStore()
    for issue in [
        _issue("s1", "SSO login for Acme", customer="Acme", time_estimate_hours=10),
        _issue("s2", "SSO login for Globex", customer="Globex"),
        _issue("s3", "SSO via SAML", customer="Acme"),
        _issue("e1", "Export to CSV"),
        _issue("e2", "Export to PDF"),
        _issue("e3", "Export scheduling"),
        _issue("n1", "Dark mode"),
    ]:
        store.upsert_issue(issue)
    return store


class AnalysisServiceTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = _seed_store()
        self.embedder = KeywordVectorEmbedder()
        self.extractor = DealExtractor()
        self.settings = Settings(
            provider_backend="offline",
            signal_batch_cooldown_seconds=0,
            dbscan_eps=0.3,
            dbscan_min_points=3,
            default_issue_effort_hours=2.0,
        )
        self.service = AnalysisService(
            store=self.store,
            embedder=self.embedder,
            summarizer=TitleSummarizer(),
            extractor=self.extractor,
            settings=self.settings,
        )

    def test_clusters_persisted_with_members_and_effort(self):
        results = self.service.cluster_issues("org-1")

        self.assertEqual([r.issue_ids for r in results], [["e1", "e2", "e3"], ["s1", "s2", "s3"]])
        self.assertEqual([r.name for r in results], ["Export", "SSO"])

        stored = {cluster.id: cluster for cluster in self.store.list_clusters("org-1")}
        sso = stored[results[1].cluster_id]
        self.assertEqual(sso.issue_count, 3)
        self.assertEqual(sso.total_time_spent_hours, 14.0)

        members = self.store.list_cluster_members(sso.id)
        self.assertEqual([m.issue_id for m in members], ["s1", "s2", "s3"])
        for member in members:
            self.assertAlmostEqual(member.similarity_score, 1.0)

    def test_embeddings_are_cached_between_runs(self):
        self.service.cluster_issues("org-1")
        self.assertEqual(self.embedder.calls, 7)

        self.service.cluster_issues("org-1")
        self.assertEqual(self.embedder.calls, 7)

    def test_issue_without_embedding_is_skipped(self):
        self.store.upsert_issue(_issue("m1", "Mystery request"))

        with self.assertLogs("revenue_radar.embeddings", level="WARNING"):
            results = self.service.cluster_issues("org-1")

        self.assertEqual(len(results), 2)
        self.assertIsNone(self.store.get_embedding("m1"))

    def test_summarizer_failure_uses_default_summary(self):
        self.service.summarizer = BrokenSummarizer()

        with self.assertLogs("revenue_radar.summarization", level="WARNING"):
            results = self.service.cluster_issues("org-1")

        self.assertEqual({r.name for r in results}, {"Unnamed Cluster"})

    def test_caller_supplied_issue_ids_restrict_clustering(self):
        results = self.service.cluster_issues("org-1", ["s3", "s1", "s2", "n1"])

        self.assertEqual([r.issue_ids for r in results], [["s3", "s1", "s2"]])

    async def test_detect_signals_persists_results(self):
        signals = await self.service.detect_signals("org-1", ["s1", "s2"])

        self.assertEqual([s.issue_id for s in signals], ["s1", "s2"])
        self.assertTrue(all(s.id for s in signals))
        self.assertEqual(len(self.store.list_signals(["s1", "s2"])), 2)

    async def test_run_end_to_end(self):
        run = await self.service.run("org-1")

        self.assertEqual(len(run.clusters), 2)
        self.assertNotIn("n1", self.extractor.seen)
        self.assertCountEqual(self.extractor.seen, ["e1", "e2", "e3", "s1", "s2", "s3"])
        self.assertEqual(len(run.opportunities), 2)

        sso = next(o for o in run.opportunities if o.title == "SSO")
        self.assertEqual(sso.revenue_impact_arr, 30_000)
        self.assertEqual(sso.affected_customers, ["Acme", "Globex"])

        metrics = self.service.metrics("org-1")
        self.assertEqual(metrics.total_opportunities, 2)
        self.assertEqual(metrics.total_clusters, 2)
        self.assertEqual(metrics.total_issues_analyzed, 7)
        self.assertEqual(metrics.total_revenue_at_risk, 60_000)

    async def test_rerun_does_not_double_count_revenue(self):
        first = await self.service.run("org-1")
        second = await self.service.run("org-1")

        def sso_revenue(run):
            return next(o for o in run.opportunities if o.title == "SSO").revenue_impact_arr

        self.assertEqual(sso_revenue(first), 30_000)
        self.assertEqual(sso_revenue(second), 30_000)
        self.assertEqual(len(self.store.list_signals(["s1", "s2", "s3"])), 3)

    async def test_failed_re_extraction_keeps_earlier_signals(self):
        await self.service.detect_signals("org-1", ["s1"])

        class FailingExtractor:
            async def extract(self, issue):
                raise RuntimeError("provider down")

        self.service.extractor = FailingExtractor()
        with self.assertLogs("revenue_radar.signals", level="ERROR"):
            self.assertEqual(await self.service.detect_signals("org-1", ["s1"]), [])

        self.assertEqual(len(self.store.list_signals(["s1"])), 1)

    async def test_run_without_clusters_does_no_extraction(self):
        run = await self.service.run("org-1", ["n1"])

        self.assertEqual(run.clusters, [])
        self.assertEqual(self.extractor.seen, [])


class ServiceFactoryTests(unittest.TestCase):
    def test_offline_backend_uses_local_providers(self):
        service = build_service(Settings(provider_backend="offline"))

        self.assertIsInstance(service.embedder, HashingEmbeddingProvider)
        self.assertIsInstance(service.summarizer, KeywordClusterSummarizer)
        self.assertIsInstance(service.extractor, KeywordSignalExtractor)
        self.assertIsNone(service.advisor)

    def test_openai_backend_requires_api_key(self):
        with self.assertRaises(ConfigurationError):
            build_service(Settings(provider_backend="openai", openai_api_key=""))

    def test_shared_store_is_used(self):
        store = InMemoryStore()
        self.assertIs(build_service(Settings(provider_backend="offline"), store=store).store, store)


class IssueLoadingTests(unittest.TestCase):
    def test_load_issues_csv(self):
        content = (
            "id,title,description,labels,customer,time_estimate_hours\n"
            "ISS-1,SSO login,Needs SAML,sso; enterprise,Acme,12\n"
            "ISS-2,  ,blank title is dropped,,,\n"
            "ISS-3,Export,,,,\n"
        ).encode("utf-8")

        issues = load_issues_csv(content, "org-1")

        self.assertEqual([issue.id for issue in issues], ["ISS-1", "ISS-3"])
        first = issues[0]
        self.assertEqual(first.organization_id, "org-1")
        self.assertEqual(first.labels, ["sso", "enterprise"])
        self.assertEqual(first.metadata, {"customer": "Acme", "time_estimate_hours": 12.0})
        self.assertEqual((first.integration_id, first.external_id), ("csv", "ISS-1"))
        self.assertIsNone(issues[1].description)

    def test_unusable_time_estimate_does_not_reject_import(self):
        content = b"id,title,time_estimate_hours\nISS-1,SSO,about a week\nISS-2,Export,-3\nISS-3,Search, 4.5 \n"

        with self.assertLogs("revenue_radar.pipeline", level="WARNING"):
            issues = load_issues_csv(content, "org-1")

        self.assertEqual([issue.metadata for issue in issues], [{}, {}, {"time_estimate_hours": 4.5}])

    def test_effort_hours_accepts_both_keys_and_falls_back(self):
        def effort(**metadata):
            return issue_effort_hours(_issue("x", "X", **metadata), default=2.0)

        self.assertEqual(effort(time_estimate_hours=6), 6.0)
        self.assertEqual(effort(timeEstimateHours="3.5"), 3.5)
        self.assertEqual(effort(time_estimate_hours="soon", timeEstimateHours=8), 8.0)
        self.assertEqual(effort(time_estimate_hours="n/a"), 2.0)
        self.assertEqual(effort(time_estimate_hours=True), 2.0)
        self.assertEqual(effort(time_estimate_hours=float("nan")), 2.0)
        self.assertEqual(effort(), 2.0)

    def test_missing_columns_rejected(self):
        with self.assertRaises(ValueError):
            load_issues_csv(b"id,description\n1,hello\n", "org-1")

    def test_order_issues(self):
        issues = [_issue("b", "B"), _issue("c", "C"), _issue("a", "A")]
        self.assertEqual([i.id for i in order_issues(issues, None)], ["a", "b", "c"])
        self.assertEqual([i.id for i in order_issues(issues, ["c", "a", "b"])], ["c", "a", "b"])

    def test_issue_text_includes_labels_and_type(self):
        issue = Issue(id="1", organization_id="o", title="SSO", description="SAML", labels=["auth"], type="bug")
        self.assertEqual(issue_to_text(issue), "SSO SAML auth bug")


class OfflineDemoTests(unittest.TestCase):
    def test_sample_dataset_yields_three_opportunities(self):
        service, run = run_analysis(SAMPLE_CSV)

        clustered = sorted(issue_id for cluster in run.clusters for issue_id in cluster.issue_ids)
        self.assertEqual(len(run.clusters), 3)
        self.assertNotIn("ISS-010", clustered)
        self.assertNotIn("ISS-011", clustered)
        self.assertEqual(len(run.opportunities), 3)

        ranked = service.store.list_opportunities("demo-org")
        self.assertEqual([o.rps_score for o in ranked], sorted((o.rps_score for o in ranked), reverse=True))
        sso = next(o for o in ranked if "Acme Corp" in o.affected_customers)
        self.assertEqual(sso.revenue_impact_arr, 125_000)


if __name__ == "__main__":
    unittest.main()
