"""Revenue signal extraction: batching around an external extractor, plus payload parsing."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Protocol, Sequence

from pydantic import ValidationError

from .schemas import Issue, RevenueSignal, SignalType, UrgencyLevel

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_COOLDOWN_SECONDS = 1.0

CRITICAL_KEYWORDS = ("urgent", "critical", "blocker", "asap", "immediately", "emergency")
HIGH_KEYWORDS = ("important", "high priority", "soon", "deal at risk", "losing customer")
MEDIUM_KEYWORDS = ("needed", "requested", "would like", "planning")

AMOUNT = r"(\d+(?:,\d{3})*(?:\.\d+)?)"
DEAL_SIZE_PATTERNS: tuple[tuple[re.Pattern[str], float], ...] = (
    (re.compile(rf"\$\s*{AMOUNT}\s*(?:m\b|million)", re.IGNORECASE), 1_000_000.0),
    (re.compile(rf"\$\s*{AMOUNT}\s*(?:k\b|thousand)", re.IGNORECASE), 1_000.0),
    (re.compile(rf"{AMOUNT}\s*m\s*ARR", re.IGNORECASE), 1_000_000.0),
    (re.compile(rf"{AMOUNT}\s*k\s*ARR", re.IGNORECASE), 1_000.0),
    (re.compile(rf"\$\s*{AMOUNT}\s*ARR", re.IGNORECASE), 1.0),
)


class SignalExtractor(Protocol):
    async def extract(self, issue: Issue) -> list[RevenueSignal]: ...


def issue_prompt_text(issue: Issue) -> str:
    return "\n".join(
        [
            f"Title: {issue.title}",
            f"Description: {issue.description or 'N/A'}",
            f"Labels: {', '.join(issue.labels)}",
            f"Priority: {issue.priority or 'N/A'}",
            f"Status: {issue.status or 'N/A'}",
        ]
    )


def classify_urgency(issue: Issue) -> UrgencyLevel:
    text = f"{issue.title} {issue.description or ''}".lower()
    if any(keyword in text for keyword in CRITICAL_KEYWORDS):
        return UrgencyLevel.CRITICAL
    if any(keyword in text for keyword in HIGH_KEYWORDS):
        return UrgencyLevel.HIGH
    if any(keyword in text for keyword in MEDIUM_KEYWORDS):
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def extract_deal_size(text: str) -> float | None:
    """Pull the earliest deal amount such as "$50k", "$1.2M" or "75k ARR" out of free text.

    When two patterns match at the same position the one listed first in
    DEAL_SIZE_PATTERNS wins.
    """
    earliest: tuple[int, float] | None = None
    for pattern, multiplier in DEAL_SIZE_PATTERNS:
        match = pattern.search(text)
        if match and (earliest is None or match.start() < earliest[0]):
            earliest = (match.start(), float(match.group(1).replace(",", "")) * multiplier)
    return earliest[1] if earliest else None


def _coerce_urgency(value: Any, issue: Issue) -> UrgencyLevel:
    if isinstance(value, str):
        try:
            return UrgencyLevel(value.strip().lower())
        except ValueError:
            pass
    return classify_urgency(issue)


def _coerce_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").replace("$", ""))
        except ValueError:
            return None
    return None


def parse_signal_payload(issue: Issue, payload: dict[str, Any]) -> list[RevenueSignal]:
    """Turn an extractor's {"signals": [...]} payload into validated signals.

    Entries with an unknown type or an unusable shape are dropped one at a time.
    """
    raw_signals = payload.get("signals") if isinstance(payload, dict) else None
    if not isinstance(raw_signals, list):
        return []

    issue_text = f"{issue.title} {issue.description or ''}"
    signals: list[RevenueSignal] = []
    for raw in raw_signals:
        if not isinstance(raw, dict):
            continue
        try:
            signal_type = SignalType(str(raw.get("signalType") or raw.get("signal_type") or "").strip().lower())
        except ValueError:
            logger.debug("Dropping signal with unknown type for issue %s: %r", issue.id, raw)
            continue

        confidence = _coerce_float(raw.get("confidence")) or 0.0
        deal_size = _coerce_float(raw.get("dealSizeArr", raw.get("deal_size_arr")))
        if deal_size is None or deal_size < 0:
            deal_size = extract_deal_size(issue_text)
        customer = raw.get("customerName", raw.get("customer_name"))
        customer = str(customer).strip() if customer else ""
        pain_points = raw.get("painPoints", raw.get("pain_points")) or []
        entities = raw.get("extractedEntities", raw.get("extracted_entities")) or {}
        competitive = raw.get("competitiveContext", raw.get("competitive_context"))

        try:
            signals.append(
                RevenueSignal(
                    organization_id=issue.organization_id,
                    issue_id=issue.id,
                    signal_type=signal_type,
                    confidence=max(0.0, min(1.0, confidence)),
                    deal_size_arr=deal_size,
                    customer_name=customer or None,
                    urgency=_coerce_urgency(raw.get("urgency"), issue),
                    extracted_entities=entities if isinstance(entities, dict) else {},
                    pain_points=[str(point) for point in pain_points][:3] if isinstance(pain_points, list) else [],
                    competitive_context=str(competitive) if competitive else None,
                )
            )
        except ValidationError as exc:
            logger.debug("Dropping malformed signal for issue %s: %s", issue.id, exc)
    return signals


async def _extract_one(extractor: SignalExtractor, issue: Issue, timeout: float | None) -> list[RevenueSignal]:
    if timeout is None:
        return await extractor.extract(issue)
    return await asyncio.wait_for(extractor.extract(issue), timeout=timeout)


async def extract_signals_by_issue(
    issues: Sequence[Issue],
    extractor: SignalExtractor,
    batch_size: int = DEFAULT_BATCH_SIZE,
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    timeout: float | None = None,
) -> dict[str, list[RevenueSignal]]:
    """Run the extractor over issues in fixed-size batches.

    Calls inside a batch run concurrently; a failing or timed-out issue is
    logged and left out of the result without cancelling its siblings, so the
    keys are exactly the issues whose extraction completed. The cooldown is
    awaited between batches only, never after the last one.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    by_issue: dict[str, list[RevenueSignal]] = {}
    for start in range(0, len(issues), batch_size):
        batch = issues[start:start + batch_size]
        results = await asyncio.gather(
            *(_extract_one(extractor, issue, timeout) for issue in batch),
            return_exceptions=True,
        )

        for issue, result in zip(batch, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error("Signal extraction failed for issue %s: %r", issue.id, result)
                continue
            by_issue[issue.id] = list(result)

        if start + batch_size < len(issues) and cooldown_seconds > 0:
            await asyncio.sleep(cooldown_seconds)

    return by_issue


async def detect_revenue_signals_batch(
    issues: Sequence[Issue],
    extractor: SignalExtractor,
    batch_size: int = DEFAULT_BATCH_SIZE,
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    timeout: float | None = None,
) -> list[RevenueSignal]:
    """Flattened `extract_signals_by_issue`, in issue order."""
    by_issue = await extract_signals_by_issue(issues, extractor, batch_size, cooldown_seconds, timeout)
    return [signal for signals in by_issue.values() for signal in signals]
