"""Offline end-to-end demo: issues CSV -> clusters -> revenue signals -> ranked opportunities."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import sys

try:
    sys.stdout.reconfigure(encoding="utf-8")
except Exception:
    pass

from revenue_radar.config import Settings, configure_logging
from revenue_radar.pipeline import AnalysisRun, AnalysisService, build_service, load_issues_csv

DEMO_ORGANIZATION = "demo-org"


def _divider(title: str) -> str:
    return f"\n{'=' * 20} {title} {'=' * 20}"


def _priority_band(rps: float) -> str:
    if rps >= 80:
        return "Critical"
    if rps >= 60:
        return "High"
    if rps >= 40:
        return "Medium"
    return "Low"


def run_analysis(csv_path: str | Path, settings: Settings | None = None) -> tuple[AnalysisService, AnalysisRun]:
    settings = settings or Settings(provider_backend="offline", signal_batch_cooldown_seconds=0)
    service = build_service(settings)
    for issue in load_issues_csv(Path(csv_path).read_bytes(), DEMO_ORGANIZATION):
        service.store.upsert_issue(issue)
    return service, asyncio.run(service.run(DEMO_ORGANIZATION))


def run_demo(csv_path: str | Path = "example_data/issues.csv") -> None:
    csv_path = Path(csv_path)

    print("\n" + "=" * 78)
    print("REVENUE RADAR - OFFLINE DEMO OUTPUT")
    print("=" * 78)

    print(_divider("1) DATA INGESTION"))
    print(f"Source file        : {csv_path}")
    service, run = run_analysis(csv_path)
    total_issues = service.store.count_issues(DEMO_ORGANIZATION)
    print(f"Issues loaded      : {total_issues}")

    print(_divider("2) CLUSTER SNAPSHOT"))
    clustered = sum(cluster.issue_count for cluster in run.clusters)
    print(f"Clusters generated : {len(run.clusters)}")
    print(f"Noise issues       : {total_issues - clustered}")
    for cluster in run.clusters:
        print(f"\n- {cluster.name}")
        print(f"  - Size            : {cluster.issue_count} issues")
        print(f"  - Theme           : {cluster.theme}")
        print(f"  - Issue IDs       : {', '.join(cluster.issue_ids)}")

    print(_divider("3) REVENUE SIGNALS"))
    print(f"Signals detected   : {len(run.signals)}")
    for signal in run.signals:
        deal = f"${signal.deal_size_arr:,.0f}" if signal.deal_size_arr else "n/a"
        print(f"  - [{signal.issue_id}] {signal.signal_type.value:<24} urgency={signal.urgency.value:<8} deal={deal}")

    print(_divider("4) RANKED OPPORTUNITIES"))
    if not run.opportunities:
        print("No opportunities identified from this sample.")
        return

    for index, opportunity in enumerate(sorted(run.opportunities, key=lambda o: o.rps_score, reverse=True), start=1):
        print(
            f"  {index}. {opportunity.title}\n"
            f"     - RPS               : {opportunity.rps_score} ({_priority_band(opportunity.rps_score)})\n"
            f"     - Category          : {opportunity.category.value}\n"
            f"     - Revenue impact    : ${opportunity.revenue_impact_arr:,.0f} ARR\n"
            f"     - Customers         : {', '.join(opportunity.affected_customers) or 'n/a'}"
        )
        for action in opportunity.recommended_actions:
            print(f"       * {action}")

    metrics = service.metrics(DEMO_ORGANIZATION)
    print(_divider("5) DASHBOARD METRICS"))
    print(f"Revenue at risk     : ${metrics.total_revenue_at_risk:,.0f}")
    print(f"High priority       : {metrics.high_priority_opportunities} / {metrics.total_opportunities}")
    print(f"Average RPS         : {metrics.avg_rps_score}")

    print("\n" + "-" * 78)
    print("Demo complete.")
    print("-" * 78)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the opportunity pipeline offline over an issues CSV.")
    parser.add_argument(
        "--csv",
        default="example_data/issues.csv",
        help="Path to issues CSV (default: example_data/issues.csv)",
    )
    args = parser.parse_args()
    configure_logging(Settings(provider_backend="offline", log_level="WARNING"))
    run_demo(args.csv)


if __name__ == "__main__":
    main()
