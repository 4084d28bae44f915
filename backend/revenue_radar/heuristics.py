"""Keyword-based stand-ins for the language-model providers, usable without network access."""

from __future__ import annotations

import re
from collections import Counter
from typing import Sequence

from .schemas import ClusterSummary, Issue, RevenueSignal, SignalType
from .signals import classify_urgency, extract_deal_size

STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "can", "for", "from", "has", "have",
    "i", "in", "is", "it", "its", "my", "not", "of", "on", "or", "our", "so", "that", "the",
    "their", "this", "to", "too", "we", "with", "you", "your",
}

TOKEN_ALIASES = {
    "integrations": "integration",
    "integrated": "integration",
    "syncing": "sync",
    "synced": "sync",
    "filters": "filter",
    "permissions": "permission",
    "reports": "report",
}

SIGNAL_TERMS: dict[SignalType, set[str]] = {
    SignalType.DEAL_BLOCKER: {"deal", "prospect", "contract", "blocker", "blocking", "procurement", "security"},
    SignalType.CHURN_RISK: {"churn", "cancel", "leaving", "renewal", "competitor", "switch", "frustrated"},
    SignalType.AUTOMATION_OPPORTUNITY: {"manual", "manually", "automate", "automation", "repetitive", "spreadsheet"},
    SignalType.FEATURE_GAP: {"missing", "request", "requested", "need", "support", "wish"},
}

THEME_LABELS: tuple[tuple[set[str], str], ...] = (
    ({"sso", "saml", "login", "auth", "permission", "role", "access"}, "Access and authentication gaps"),
    ({"search", "filter", "find", "index", "query"}, "Search and filtering gaps"),
    ({"export", "report", "download", "csv"}, "Reporting export workflow friction"),
    ({"integration", "sync", "api", "crm", "webhook"}, "Integration sync reliability gaps"),
    ({"slow", "loading", "latency", "lag", "performance", "timeout"}, "Performance issues"),
)


def _normalize_token(token: str) -> str:
    token = TOKEN_ALIASES.get(token, token)
    if token.endswith("s") and len(token) > 4:
        token = token[:-1]
    return token


def tokenize(text: str) -> list[str]:
    words = re.findall(r"[a-zA-Z']+", text.lower())
    cleaned = []
    for raw in words:
        token = _normalize_token(raw.strip("'"))
        if token in STOPWORDS or len(token) <= 2:
            continue
        cleaned.append(token)
    return cleaned


class KeywordSignalExtractor:
    """Emits at most one signal per issue, typed by the best-matching keyword set."""

    async def extract(self, issue: Issue) -> list[RevenueSignal]:
        text = f"{issue.title} {issue.description or ''} {' '.join(issue.labels)}"
        tokens = set(re.findall(r"[a-z']+", text.lower()))

        best_type = None
        best_hits = 0
        for signal_type, terms in SIGNAL_TERMS.items():
            hits = len(tokens & terms)
            if hits > best_hits:
                best_type, best_hits = signal_type, hits
        if best_type is None:
            return []

        customer = issue.metadata.get("customer") or issue.metadata.get("customer_name")
        return [
            RevenueSignal(
                organization_id=issue.organization_id,
                issue_id=issue.id,
                signal_type=best_type,
                confidence=min(1.0, 0.4 + 0.2 * best_hits),
                deal_size_arr=extract_deal_size(text),
                customer_name=str(customer) if customer else None,
                urgency=classify_urgency(issue),
                extracted_entities={"keywords": sorted(tokens & SIGNAL_TERMS[best_type])},
            )
        ]


class KeywordClusterSummarizer:
    def summarize(self, issues: Sequence[Issue]) -> ClusterSummary:
        texts = [f"{issue.title} {issue.description or ''}" for issue in issues]
        counts = Counter(token for text in texts for token in tokenize(text))
        token_set = set(counts)

        name = None
        for terms, label in THEME_LABELS:
            if terms & token_set:
                name = label
                break

        common = [term for term, _ in counts.most_common(3)]
        if name is None:
            name = " ".join([*(word.capitalize() for word in common[:2]), "issues"]) if common else "Unnamed Cluster"
        keyword_phrase = ", ".join(common) if common else "core workflow reliability"
        return ClusterSummary(
            name=name,
            description=f"{len(issues)} related issues point to friction around {keyword_phrase}.",
            theme=keyword_phrase,
        )
