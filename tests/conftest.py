"""Shared test fixtures and configuration for pytest."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from graveyard.completion import CompletionOptions
from graveyard.config import Settings
from graveyard.errors import PersistenceError
from graveyard.models import (
    AIInsight,
    DeathCause,
    LearningMetric,
    MetadataProvenance,
    PatternInsight,
    PostMortem,
    Project,
    ProjectMetadata,
    RevivalStatus,
    UserPattern,
)

OWNER_ID = "00000000-0000-0000-0000-000000000001"

# 2024-06-01 is a Saturday.
SATURDAY = datetime(2024, 6, 1, 10, 0, tzinfo=UTC)
TUESDAY = datetime(2024, 6, 4, 10, 0, tzinfo=UTC)


def make_project(
    *,
    name: str = "side-project",
    created_at: datetime = TUESDAY,
    lifespan_days: float = 30,
    tech_stack: Sequence[str] = (),
    death_cause: DeathCause = DeathCause.LOST_INTEREST,
    revival_status: RevivalStatus = RevivalStatus.BURIED,
    owner_id: str = OWNER_ID,
    epitaph: str = "It was fun while it lasted",
) -> Project:
    return Project(
        id=str(uuid4()),
        owner_id=owner_id,
        name=name,
        description=None,
        created_at=created_at,
        updated_at=created_at,
        death_date=created_at + timedelta(days=lifespan_days),
        death_cause=death_cause.value,
        tech_stack=list(tech_stack),
        epitaph=epitaph,
        revival_status=revival_status.value,
    )


def make_metadata(
    project: Project,
    *,
    active_days: int = 5,
    loc: int = 500,
    dependencies: int = 3,
    files: int = 10,
    has_readme: bool = False,
    provenance: MetadataProvenance = MetadataProvenance.MEASURED,
) -> ProjectMetadata:
    return ProjectMetadata(
        id=str(uuid4()),
        project_id=project.id,
        active_days=active_days,
        estimated_lines_of_code=loc,
        dependency_count=dependencies,
        file_count=files,
        first_commit_type=None,
        has_readme=has_readme,
        has_tests=False,
        has_documentation=False,
        provenance=provenance.value,
    )


def make_post_mortem(project: Project, **fields: str) -> PostMortem:
    return PostMortem(
        id=str(uuid4()),
        project_id=project.id,
        what_problem=fields.get("what_problem", "Tracking my climbing sessions"),
        what_went_wrong=fields.get("what_went_wrong", "I rebuilt the auth layer three times"),
        lessons_learned=fields.get("lessons_learned", "it was just a fun experiment"),
    )


def make_pattern(
    name: str, confidence: float = 0.8, *, owner_id: str = OWNER_ID, frequency: int = 1
) -> UserPattern:
    now = datetime.now(UTC)
    return UserPattern(
        id=str(uuid4()),
        owner_id=owner_id,
        pattern_type="behavioral",
        pattern_name=name,
        pattern_value={"evidence": f"{name} evidence", "metadata": {}},
        frequency=frequency,
        confidence_score=confidence,
        is_active=True,
        first_detected_at=now,
        last_detected_at=now,
    )


def _created(row: object) -> datetime:
    return getattr(row, "created_at", None) or datetime.min.replace(tzinfo=UTC)


class InMemoryHistoryStore:
    """HistoryStore double backed by plain lists.

    ``fail_when`` makes matching inserts raise ``PersistenceError``; ``writes``
    counts every mutating call.
    """

    def __init__(self) -> None:
        self.projects: list[Project] = []
        self.metadata: list[ProjectMetadata] = []
        self.post_mortems: list[PostMortem] = []
        self.patterns: list[UserPattern] = []
        self.insights: list[PatternInsight] = []
        self.ai_insights: list[AIInsight] = []
        self.metrics: list[LearningMetric] = []
        self.fail_when: Callable[[object], bool] | None = None
        self.writes = 0
        self.commits = 0
        self.rollbacks = 0

    def add_projects(self, *projects: Project) -> None:
        self.projects.extend(projects)

    def active_patterns(self) -> list[UserPattern]:
        return [p for p in self.patterns if p.is_active]

    def active_insights(self) -> list[PatternInsight]:
        return [i for i in self.insights if i.is_active]

    async def list_projects_for_user(
        self, owner_id: str, limit: int | None = None
    ) -> list[Project]:
        rows = sorted(
            (p for p in self.projects if p.owner_id == owner_id), key=_created, reverse=True
        )
        return rows[:limit] if limit is not None else rows

    async def get_project(self, project_id: str) -> Project | None:
        return next((p for p in self.projects if p.id == project_id), None)

    async def get_metadata(self, project_id: str) -> ProjectMetadata | None:
        return next((m for m in self.metadata if m.project_id == project_id), None)

    async def get_post_mortem(self, project_id: str) -> PostMortem | None:
        return next((pm for pm in self.post_mortems if pm.project_id == project_id), None)

    async def get_active_patterns(self, owner_id: str) -> list[UserPattern]:
        rows = [p for p in self.active_patterns() if p.owner_id == owner_id]
        return sorted(rows, key=lambda p: p.confidence_score, reverse=True)

    async def deactivate_patterns(self, owner_id: str) -> int:
        self.writes += 1
        rows = [p for p in self.active_patterns() if p.owner_id == owner_id]
        for p in rows:
            p.is_active = False
        return len(rows)

    async def add_pattern(self, pattern: UserPattern) -> UserPattern:
        return self._insert(self.patterns, pattern)

    async def get_active_insights(
        self, owner_id: str, limit: int | None = None
    ) -> list[PatternInsight]:
        rows = sorted(
            (i for i in self.active_insights() if i.owner_id == owner_id),
            key=lambda i: i.confidence_score,
            reverse=True,
        )
        return rows[:limit] if limit is not None else rows

    async def deactivate_insights(self, owner_id: str) -> int:
        self.writes += 1
        rows = [i for i in self.active_insights() if i.owner_id == owner_id]
        for i in rows:
            i.is_active = False
        return len(rows)

    async def add_pattern_insight(self, insight: PatternInsight) -> PatternInsight:
        return self._insert(self.insights, insight)

    async def get_pattern_insight(self, insight_id: str) -> PatternInsight | None:
        return next((i for i in self.insights if i.id == insight_id), None)

    async def delete_ai_insights(self, post_mortem_id: str) -> int:
        self.writes += 1
        before = len(self.ai_insights)
        self.ai_insights = [a for a in self.ai_insights if a.post_mortem_id != post_mortem_id]
        return before - len(self.ai_insights)

    async def add_ai_insight(self, insight: AIInsight) -> AIInsight:
        return self._insert(self.ai_insights, insight)

    async def add_learning_metric(self, metric: LearningMetric) -> LearningMetric:
        return self._insert(self.metrics, metric)

    async def list_learning_metrics(self, owner_id: str, limit: int = 10) -> list[LearningMetric]:
        rows = sorted(
            (m for m in self.metrics if m.owner_id == owner_id), key=_created, reverse=True
        )
        return rows[:limit]

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    def _insert(self, table: list, row):
        self.writes += 1
        if self.fail_when is not None and self.fail_when(row):
            raise PersistenceError(f"simulated failure for {row.__tablename__}")
        if row.id is None:
            row.id = str(uuid4())
        table.append(row)
        return row


class FakeCompletionService:
    """Returns scripted responses in order; an Exception entry is raised instead."""

    def __init__(self, *responses: str | BaseException) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, CompletionOptions]] = []

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        self.calls.append((prompt, options))
        if not self.responses:
            raise AssertionError("FakeCompletionService ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        anthropic_api_key="test-key",
        completion_timeout=1.0,
        completion_retries=1,
        detection_mode="heuristic",
    )
