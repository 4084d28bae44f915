"""Recommended actions for an opportunity.

Two strategies: an external strategic advisor, and a deterministic rule table.
`choose_action_strategy` is the single place deciding which one applies.
"""

from __future__ import annotations

import logging
from typing import Protocol

from .schemas import Opportunity, OpportunityCategory

logger = logging.getLogger(__name__)

STRATEGIC_ACTION_THRESHOLD = 80.0
SURVEY_CUSTOMER_THRESHOLD = 5

ESCALATION_ACTIONS = [
    "Escalate to executive team immediately",
    "Schedule customer call within 48 hours",
]

CATEGORY_ACTIONS: dict[OpportunityCategory, list[str]] = {
    OpportunityCategory.MISSING_FEATURE: [
        "Add to product roadmap",
        "Estimate engineering effort",
        "Identify workaround for immediate relief",
    ],
    OpportunityCategory.BUG_FIX: [
        "Create high-priority bug ticket",
        "Assign to senior engineer",
        "Provide daily status updates to customer",
    ],
    OpportunityCategory.AUTOMATION_GAP: [
        "Evaluate automation tools",
        "Create implementation plan",
        "Calculate ROI for automation",
    ],
}

CUSTOMER_RESEARCH_ACTIONS = [
    "Conduct customer survey",
    "Host customer roundtable discussion",
]


class StrategicAdvisor(Protocol):
    def suggest_actions(self, draft: Opportunity) -> list[str]: ...


class ActionStrategy(Protocol):
    def recommend(self, draft: Opportunity) -> list[str]: ...


class RuleBasedActions:
    """Rule table; every matching rule contributes its actions."""

    def recommend(self, draft: Opportunity) -> list[str]:
        actions: list[str] = []
        if draft.rps_score >= STRATEGIC_ACTION_THRESHOLD:
            actions.extend(ESCALATION_ACTIONS)
        actions.extend(CATEGORY_ACTIONS.get(draft.category, []))
        if len(draft.affected_customers) >= SURVEY_CUSTOMER_THRESHOLD:
            actions.extend(CUSTOMER_RESEARCH_ACTIONS)
        return actions


class AdvisorActions:
    """Asks the external advisor, falling back to the rule table on failure or an empty answer."""

    def __init__(self, advisor: StrategicAdvisor, fallback: ActionStrategy | None = None) -> None:
        self.advisor = advisor
        self.fallback = fallback or RuleBasedActions()

    def recommend(self, draft: Opportunity) -> list[str]:
        try:
            actions = [action.strip() for action in self.advisor.suggest_actions(draft) if action and action.strip()]
        except Exception as exc:
            logger.warning("Strategic advisor failed for %r, using rule table: %r", draft.title, exc)
            return self.fallback.recommend(draft)
        if not actions:
            logger.info("Strategic advisor returned no actions for %r, using rule table", draft.title)
            return self.fallback.recommend(draft)
        return actions


def choose_action_strategy(
    rps_score: float,
    advisor: StrategicAdvisor | None,
    threshold: float = STRATEGIC_ACTION_THRESHOLD,
) -> ActionStrategy:
    if advisor is not None and rps_score >= threshold:
        return AdvisorActions(advisor)
    return RuleBasedActions()


def recommend_actions(
    draft: Opportunity,
    advisor: StrategicAdvisor | None = None,
    threshold: float = STRATEGIC_ACTION_THRESHOLD,
) -> list[str]:
    return choose_action_strategy(draft.rps_score, advisor, threshold).recommend(draft)
