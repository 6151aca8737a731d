"""Signal vocabulary produced by the email analyser, and its score categories."""
from __future__ import annotations

from dealflow.models import ScoreCategory

SIGNAL_TYPE_CATEGORIES: dict[str, ScoreCategory] = {
    "traction_growth": ScoreCategory.TRACTION,
    "revenue_update": ScoreCategory.TRACTION,
    "customer_win": ScoreCategory.TRACTION,
    "partnership_announced": ScoreCategory.MOMENTUM,
    "team_hire": ScoreCategory.TEAM,
    "product_milestone": ScoreCategory.PRODUCT,
    "fundraising_momentum": ScoreCategory.MOMENTUM,
    "quick_response": ScoreCategory.COMMUNICATION,
    "proactive_update": ScoreCategory.COMMUNICATION,
    "transparent_communication": ScoreCategory.COMMUNICATION,
    "detailed_metrics": ScoreCategory.COMMUNICATION,
    "slow_response": ScoreCategory.COMMUNICATION,
    "metric_inconsistency": ScoreCategory.RED_FLAG,
    "missed_deadline": ScoreCategory.RED_FLAG,
    "evasive_answer": ScoreCategory.RED_FLAG,
    "team_departure": ScoreCategory.RED_FLAG,
    "pivot_announced": ScoreCategory.RED_FLAG,
    "runway_concern": ScoreCategory.RED_FLAG,
    "legal_issue": ScoreCategory.RED_FLAG,
    "customer_churn": ScoreCategory.RED_FLAG,
}


def map_signal_type(signal_type: str | None) -> ScoreCategory:
    """Map an analyser signal label to a score category (unknown -> communication)."""
    key = (signal_type or "").strip().lower()
    return SIGNAL_TYPE_CATEGORIES.get(key, ScoreCategory.COMMUNICATION)
