import unittest

from revenue_radar.errors import OpportunityNotFound, PersistenceError
from revenue_radar.metrics import dashboard_metrics
from revenue_radar.schemas import (
    Cluster,
    Issue,
    Opportunity,
    OpportunityCategory,
    OpportunityStatus,
    RevenueSignal,
    SignalType,
)
from revenue_radar.store import InMemoryStore, update_opportunity_status


def _opportunity(rps: float, revenue: float, status: OpportunityStatus = OpportunityStatus.IDENTIFIED) -> Opportunity:
    return Opportunity(
        organization_id="org-1",
        title=f"opportunity {rps}",
        category=OpportunityCategory.MISSING_FEATURE,
        rps_score=rps,
        revenue_impact_arr=revenue,
        frequency_score=30,
        urgency_score=50,
        effort_score=80,
        status=status,
    )


class IssueStoreTests(unittest.TestCase):
    def test_upsert_keys_on_integration_and_external_id(self):
        store = InMemoryStore()
        first = store.upsert_issue(
            Issue(id="a", organization_id="org-1", integration_id="jira", external_id="PROJ-1", title="Old")
        )
        second = store.upsert_issue(
            Issue(id="b", organization_id="org-1", integration_id="jira", external_id="PROJ-1", title="New")
        )

        self.assertEqual(second.id, "a")
        self.assertEqual(second.created_at, first.created_at)
        self.assertEqual([issue.title for issue in store.list_issues("org-1")], ["New"])

    def test_issues_are_scoped_to_organization(self):
        store = InMemoryStore()
        store.upsert_issue(Issue(id="a", organization_id="org-1", title="A"))
        store.upsert_issue(Issue(id="b", organization_id="org-2", title="B"))

        self.assertEqual(store.count_issues("org-1"), 1)
        self.assertEqual([i.id for i in store.list_issues("org-2", ["a", "b"])], ["b"])


class ClusterStoreTests(unittest.TestCase):
    def test_cluster_without_members_is_rejected(self):
        store = InMemoryStore()
        with self.assertRaises(PersistenceError):
            store.insert_cluster(Cluster(organization_id="org-1", name="empty", issue_count=1), {})
        self.assertEqual(store.list_clusters("org-1"), [])

    def test_cluster_with_unknown_member_writes_nothing(self):
        store = InMemoryStore()
        store.upsert_issue(Issue(id="a", organization_id="org-1", title="A"))

        with self.assertRaises(PersistenceError):
            store.insert_cluster(
                Cluster(organization_id="org-1", name="partial", issue_count=2), {"a": 0.9, "ghost": 0.8}
            )
        self.assertEqual(store.list_clusters("org-1"), [])


class SignalStoreTests(unittest.TestCase):
    def test_replace_signals_swaps_only_the_given_issues(self):
        store = InMemoryStore()
        store.insert_signals([
            RevenueSignal(issue_id="a", signal_type=SignalType.DEAL_BLOCKER, deal_size_arr=10_000),
            RevenueSignal(issue_id="b", signal_type=SignalType.CHURN_RISK),
        ])

        stored = store.replace_signals(
            ["a", "c"], [RevenueSignal(issue_id="a", signal_type=SignalType.DEAL_BLOCKER, deal_size_arr=20_000)]
        )

        self.assertEqual(len(stored), 1)
        self.assertEqual([s.deal_size_arr for s in store.list_signals(["a"])], [20_000])
        self.assertEqual(len(store.list_signals(["b"])), 1)


class OpportunityStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryStore()

    def test_listing_sorted_by_rps_with_status_and_limit(self):
        self.store.insert_opportunity(_opportunity(40, 10_000))
        self.store.insert_opportunity(_opportunity(90, 10_000))
        self.store.insert_opportunity(_opportunity(65, 10_000, OpportunityStatus.DISMISSED))

        self.assertEqual([o.rps_score for o in self.store.list_opportunities("org-1")], [90, 65, 40])
        self.assertEqual(
            [o.rps_score for o in self.store.list_opportunities("org-1", status=OpportunityStatus.IDENTIFIED)],
            [90, 40],
        )
        self.assertEqual(len(self.store.list_opportunities("org-1", limit=1)), 1)

    def test_status_transitions(self):
        opportunity = self.store.insert_opportunity(_opportunity(50, 0))

        moved = update_opportunity_status(self.store, opportunity.id, OpportunityStatus.IN_PROGRESS)
        self.assertEqual(moved.status, OpportunityStatus.IN_PROGRESS)

        done = update_opportunity_status(self.store, opportunity.id, OpportunityStatus.COMPLETED)
        self.assertEqual(done.status, OpportunityStatus.COMPLETED)

        with self.assertRaises(ValueError):
            update_opportunity_status(self.store, opportunity.id, OpportunityStatus.IN_PROGRESS)

    def test_update_revalidates_fields(self):
        opportunity = self.store.insert_opportunity(_opportunity(50, 0))
        with self.assertRaises(ValueError):
            self.store.update_opportunity(opportunity.id, rps_score=150)

    def test_unknown_opportunity(self):
        with self.assertRaises(OpportunityNotFound):
            self.store.get_opportunity("nope")


class DashboardMetricsTests(unittest.TestCase):
    def test_metrics_cover_identified_opportunities_only(self):
        store = InMemoryStore()
        store.upsert_issue(Issue(id="a", organization_id="org-1", title="A"))
        cluster = store.insert_cluster(Cluster(organization_id="org-1", name="A", issue_count=1), {"a": 1.0})
        store.insert_opportunity(_opportunity(75, 50_000))
        store.insert_opportunity(_opportunity(55, 30_000))
        store.insert_opportunity(_opportunity(95, 500_000, OpportunityStatus.DISMISSED))

        metrics = dashboard_metrics("org-1", store)

        self.assertEqual(metrics.total_revenue_at_risk, 80_000)
        self.assertEqual(metrics.total_opportunities, 2)
        self.assertEqual(metrics.high_priority_opportunities, 1)
        self.assertEqual(metrics.avg_rps_score, 65.0)
        self.assertEqual(metrics.total_issues_analyzed, 1)
        self.assertEqual(metrics.total_clusters, 1)
        self.assertEqual(metrics.last_analysis_date, cluster.created_at)

    def test_empty_organization(self):
        metrics = dashboard_metrics("org-1", InMemoryStore())

        self.assertEqual(metrics.total_opportunities, 0)
        self.assertEqual(metrics.avg_rps_score, 0.0)
        self.assertIsNone(metrics.last_analysis_date)


if __name__ == "__main__":
    unittest.main()
