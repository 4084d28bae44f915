from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from openai import AsyncOpenAI, OpenAI, OpenAIError

from .config import Settings
from .errors import ConfigurationError, EmbeddingUnavailable, ProviderError
from .schemas import ClusterSummary, Issue, Opportunity, RevenueSignal
from .signals import issue_prompt_text, parse_signal_payload
from .summarization import parse_summary_payload, summary_prompt

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = "You are an expert at analyzing product issues and identifying patterns."
SIGNAL_SYSTEM_PROMPT = (
    "You are an expert at analyzing product issues for revenue impact. "
    "Be precise and conservative in your assessments."
)
ADVISOR_SYSTEM_PROMPT = (
    "You are a world-class strategic revenue consultant. "
    "Your goal is to maximize ARR and minimize churn through precise action items."
)

SIGNAL_PROMPT = """Analyze this issue for revenue impact signals. Identify:

1. Signal Type: deal_blocker, churn_risk, feature_gap, automation_opportunity
2. Confidence: 0-1 score
3. Deal Size (ARR): Extract if mentioned
4. Customer Name: Extract if mentioned
5. Urgency: low, medium, high, critical
6. Entities: Extract key entities (features, pain points, competitors, etc.)
7. Customer Pain Points: Extract specific frustrations (max 3)
8. Competitive Context: Mention competitors if they appear to be winning/losing ground here

Issue:
{issue}

Respond in JSON format:
{{"signals": [{{"signalType": "deal_blocker", "confidence": 0.85, "dealSizeArr": 50000,
"customerName": "Acme Corp", "urgency": "high", "extractedEntities": {{}},
"painPoints": ["..."], "competitiveContext": "..."}}]}}

Return an empty array if no revenue signals are detected."""

ADVISOR_PROMPT = """As a Strategic Revenue Advisor, analyze this identified revenue opportunity and provide 3-4 highly actionable, specific, and strategic next steps.

Opportunity Details:
- Title: {title}
- Description: {description}
- Category: {category}
- Revenue Impact (ARR): ${revenue:,.0f}
- RPS Score: {rps}
- Affected Customers: {customers}

Your recommendations should be specific, strategic and tailored to whether this is a bug fix, missing feature, or automation gap.

Respond in JSON format:
{{"actions": ["..."]}}"""


def _require_api_key(settings: Settings) -> str:
    if not settings.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY is not set")
    return settings.openai_api_key


def get_openai_client(settings: Settings) -> OpenAI:
    return OpenAI(api_key=_require_api_key(settings), timeout=settings.openai_timeout_seconds)


def get_async_openai_client(settings: Settings) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=_require_api_key(settings), timeout=settings.openai_timeout_seconds)


def _json_content(response: Any) -> dict[str, Any]:
    content = response.choices[0].message.content or "{}"
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ProviderError(f"Provider returned invalid JSON: {exc}") from exc
    return payload if isinstance(payload, dict) else {}


class OpenAIEmbeddingProvider:
    def __init__(self, client: OpenAI, model: str = "text-embedding-3-small") -> None:
        self.client = client
        self.model = model

    def embed(self, text: str) -> list[float]:
        try:
            response = self.client.embeddings.create(model=self.model, input=text)
        except OpenAIError as exc:
            raise EmbeddingUnavailable(str(exc)) from exc
        return list(response.data[0].embedding)


class OpenAIClusterSummarizer:
    def __init__(self, client: OpenAI, model: str = "gpt-4o") -> None:
        self.client = client
        self.model = model

    def summarize(self, issues: Sequence[Issue]) -> ClusterSummary:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": summary_prompt(issues)},
                ],
                response_format={"type": "json_object"},
                temperature=0.3,
            )
        except OpenAIError as exc:
            raise ProviderError(str(exc)) from exc
        return parse_summary_payload(response.choices[0].message.content)


class OpenAISignalExtractor:
    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o") -> None:
        self.client = client
        self.model = model

    async def extract(self, issue: Issue) -> list[RevenueSignal]:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SIGNAL_SYSTEM_PROMPT},
                    {"role": "user", "content": SIGNAL_PROMPT.format(issue=issue_prompt_text(issue))},
                ],
                response_format={"type": "json_object"},
                temperature=0.2,
            )
        except OpenAIError as exc:
            raise ProviderError(str(exc)) from exc
        return parse_signal_payload(issue, _json_content(response))


class OpenAIStrategicAdvisor:
    def __init__(self, client: OpenAI, model: str = "gpt-4o") -> None:
        self.client = client
        self.model = model

    def suggest_actions(self, draft: Opportunity) -> list[str]:
        prompt = ADVISOR_PROMPT.format(
            title=draft.title,
            description=draft.description or "N/A",
            category=draft.category.value,
            revenue=draft.revenue_impact_arr,
            rps=draft.rps_score,
            customers=", ".join(draft.affected_customers) or "Various",
        )
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": ADVISOR_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=0.4,
            )
        except OpenAIError as exc:
            raise ProviderError(str(exc)) from exc

        actions = _json_content(response).get("actions") or []
        if not isinstance(actions, list):
            raise ProviderError("Advisor response has no action list")
        return [str(action) for action in actions]
