from __future__ import annotations

import json
import logging
from typing import Any, Protocol, Sequence

from .schemas import ClusterSummary, Issue

logger = logging.getLogger(__name__)

MAX_SUMMARY_ISSUES = 10


class ClusterSummarizer(Protocol):
    def summarize(self, issues: Sequence[Issue]) -> ClusterSummary: ...


def summary_prompt(issues: Sequence[Issue]) -> str:
    issue_texts = "\n\n".join(
        f"{idx}. {issue.title}\n{issue.description or ''}"
        for idx, issue in enumerate(issues[:MAX_SUMMARY_ISSUES], start=1)
    )
    return (
        "Analyze these related issues and provide:\n"
        "1. A concise cluster name (max 5 words)\n"
        "2. A brief description (1-2 sentences)\n"
        "3. The recurring theme/pattern\n\n"
        f"Issues:\n{issue_texts}\n\n"
        'Respond in JSON format:\n{\n  "name": "...",\n  "description": "...",\n  "theme": "..."\n}'
    )


def parse_summary_payload(raw: str | dict[str, Any] | None) -> ClusterSummary:
    """Best-effort parse of a summarizer response; never raises."""
    payload: Any = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw or "{}")
        except json.JSONDecodeError:
            logger.warning("Cluster summary was not valid JSON, using defaults")
            return ClusterSummary()
    if not isinstance(payload, dict):
        return ClusterSummary()

    defaults = ClusterSummary()
    fields = {}
    for key in ("name", "description", "theme"):
        value = payload.get(key)
        text = str(value).strip() if isinstance(value, (str, int, float)) else ""
        fields[key] = text or getattr(defaults, key)
    return ClusterSummary(**fields)


def summarize_cluster(summarizer: ClusterSummarizer, issues: Sequence[Issue]) -> ClusterSummary:
    try:
        return summarizer.summarize(issues)
    except Exception as exc:
        logger.warning("Cluster summarization failed for %d issues, using defaults: %r", len(issues), exc)
        return ClusterSummary()
