"""Read and feedback operations over stored analysis results."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .errors import NotFoundError
from .models import InsightFeedback, LearningMetric, PatternInsight, UserPattern
from .store import HistoryStore

logger = logging.getLogger(__name__)

DASHBOARD_INSIGHT_LIMIT = 5
DASHBOARD_METRIC_LIMIT = 10


@dataclass
class Dashboard:
    owner_id: str
    patterns: list[UserPattern] = field(default_factory=list)
    insights: list[PatternInsight] = field(default_factory=list)
    metrics: list[LearningMetric] = field(default_factory=list)


@dataclass
class ClearReport:
    patterns_deactivated: int
    insights_deactivated: int


async def load_dashboard(store: HistoryStore, owner_id: str) -> Dashboard:
    return Dashboard(
        owner_id=owner_id,
        patterns=list(await store.get_active_patterns(owner_id)),
        insights=list(await store.get_active_insights(owner_id, limit=DASHBOARD_INSIGHT_LIMIT)),
        metrics=list(await store.list_learning_metrics(owner_id, limit=DASHBOARD_METRIC_LIMIT)),
    )


async def record_feedback(
    store: HistoryStore, owner_id: str, insight_id: str, feedback: InsightFeedback | str
) -> PatternInsight:
    """Tag an insight the user owns as helpful, not helpful or irrelevant."""
    value = InsightFeedback(feedback)
    insight = await store.get_pattern_insight(insight_id)
    if insight is None or insight.owner_id != owner_id:
        raise NotFoundError(f"Insight not found: {insight_id}")
    insight.user_feedback = value.value
    await store.commit()
    logger.info("Recorded %s feedback on insight %s", value, insight_id)
    return insight


async def clear_analysis(store: HistoryStore, owner_id: str) -> ClearReport:
    """Soft-deactivate every active insight and pattern of a user."""
    insights = await store.deactivate_insights(owner_id)
    patterns = await store.deactivate_patterns(owner_id)
    await store.commit()
    return ClearReport(patterns_deactivated=patterns, insights_deactivated=insights)
