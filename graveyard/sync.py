"""Reconciliation of analysis results with stored rows.

Every write path uses the same rule: retire what is there (soft deactivation
for patterns and pattern insights, hard delete for AI insights), then insert
the fresh set. Running an analysis twice on unchanged history therefore leaves
exactly one live copy of each result.

Row inserts are best effort. A failing row is recorded in the report and the
batch continues. Failures of the retire step abort the caller's phase.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .detection import LearningVelocity, PatternFinding
from .errors import PersistenceError
from .models import AIInsight, LearningMetric, PatternInsight, UserPattern
from .parsing import CoachingInsight, ParsedSection
from .store import HistoryStore

logger = logging.getLogger(__name__)


@dataclass
class RowFailure:
    table: str
    key: str
    error: str


@dataclass
class SyncReport:
    retired: int = 0
    failures: list[RowFailure] = field(default_factory=list)

    def record(self, table: str, key: str, exc: PersistenceError) -> None:
        logger.warning("Failed to write %s row %s: %s", table, key, exc)
        self.failures.append(RowFailure(table=table, key=key, error=str(exc)))


def _now() -> datetime:
    return datetime.now(UTC)


def pattern_value_for(finding: PatternFinding) -> dict[str, Any]:
    return {
        "evidence": finding.evidence,
        "metadata": finding.metadata,
        "supporting_projects": list(finding.supporting_projects),
        "source": finding.source,
    }


async def replace_patterns(
    store: HistoryStore,
    owner_id: str,
    findings: Sequence[PatternFinding],
    *,
    now: datetime | None = None,
) -> tuple[list[UserPattern], SyncReport]:
    """Deactivate the user's active patterns and insert one row per finding.

    A finding whose name matches a retired active row inherits that row's
    frequency (plus one) and its first detection time.
    """
    now = now or _now()
    previous = {
        p.pattern_name: (p.frequency, p.first_detected_at)
        for p in await store.get_active_patterns(owner_id)
    }

    report = SyncReport(retired=await store.deactivate_patterns(owner_id))
    saved: list[UserPattern] = []
    for finding in findings:
        frequency, first_detected = previous.get(finding.pattern_name, (0, None))
        row = UserPattern(
            owner_id=owner_id,
            pattern_type=finding.pattern_type.value,
            pattern_name=finding.pattern_name,
            pattern_value=pattern_value_for(finding),
            frequency=(frequency or 0) + 1,
            confidence_score=finding.confidence,
            is_active=True,
            first_detected_at=first_detected or now,
            last_detected_at=now,
        )
        try:
            saved.append(await store.add_pattern(row))
        except PersistenceError as exc:
            report.record("user_patterns", finding.pattern_name, exc)
    return saved, report


async def replace_insights(
    store: HistoryStore,
    owner_id: str,
    insights: Sequence[CoachingInsight],
    patterns: Sequence[UserPattern],
    *,
    projects_analyzed: int,
    now: datetime | None = None,
) -> tuple[list[PatternInsight], SyncReport]:
    """Deactivate the user's active insights and insert the new ones.

    Pattern names referenced by an insight are resolved to the ids of the
    given persisted patterns; unknown names are dropped.
    """
    now = now or _now()
    ids_by_name = {p.pattern_name: p.id for p in patterns}

    report = SyncReport(retired=await store.deactivate_insights(owner_id))
    saved: list[PatternInsight] = []
    for i, insight in enumerate(insights):
        related = [ids_by_name[n] for n in insight.related_patterns if n in ids_by_name]
        row = PatternInsight(
            owner_id=owner_id,
            insight_text=insight.insight_text,
            insight_type=insight.insight_type.value,
            confidence_score=insight.confidence,
            projects_analyzed=projects_analyzed,
            related_pattern_ids=related,
            is_active=True,
            created_at=now,
        )
        try:
            saved.append(await store.add_pattern_insight(row))
        except PersistenceError as exc:
            report.record("pattern_insights", f"{insight.insight_type}#{i}", exc)
    return saved, report


async def replace_ai_insights(
    store: HistoryStore,
    project_id: str,
    post_mortem_id: str,
    sections: Sequence[ParsedSection],
    *,
    now: datetime | None = None,
) -> tuple[list[AIInsight], SyncReport]:
    """Delete a post-mortem's AI insights and insert the accepted sections."""
    now = now or _now()
    report = SyncReport(retired=await store.delete_ai_insights(post_mortem_id))
    saved: list[AIInsight] = []
    for section in sections:
        row = AIInsight(
            project_id=project_id,
            post_mortem_id=post_mortem_id,
            insight_type=section.section_type.value,
            content=section.content,
            confidence_score=section.confidence,
            created_at=now,
        )
        try:
            saved.append(await store.add_ai_insight(row))
        except PersistenceError as exc:
            report.record("ai_insights", section.section_type.value, exc)
    return saved, report


async def record_learning_metric(
    store: HistoryStore,
    owner_id: str,
    velocity: LearningVelocity,
    *,
    projects_analyzed: int,
    now: datetime | None = None,
) -> LearningMetric | None:
    """Store a learning-velocity snapshot; a failure is logged, not raised."""
    row = LearningMetric(
        owner_id=owner_id,
        avg_project_lifespan_trend=velocity.avg_project_lifespan_trend.value,
        scope_management_score=velocity.scope_management_score,
        technology_consistency_score=velocity.technology_consistency_score,
        completion_rate_trend=velocity.completion_rate_trend.value,
        projects_analyzed=projects_analyzed,
        created_at=now or _now(),
    )
    try:
        return await store.add_learning_metric(row)
    except PersistenceError as exc:
        logger.warning("Failed to store learning metrics for %s: %s", owner_id, exc)
        return None
