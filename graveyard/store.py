"""Project History Store boundary.

The orchestrator, dashboard and metadata providers only talk to a
``HistoryStore``. ``SqlHistoryStore`` is the Postgres implementation over one
``AsyncSession``; tests substitute an in-memory double.
"""

from __future__ import annotations

from collections.abc import Awaitable, Sequence
from typing import Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from . import db
from .errors import PersistenceError
from .models import (
    AIInsight,
    LearningMetric,
    PatternInsight,
    PostMortem,
    Project,
    ProjectMetadata,
    UserPattern,
)

RowT = TypeVar("RowT", UserPattern, PatternInsight, AIInsight, LearningMetric)


class HistoryStore(Protocol):
    async def list_projects_for_user(
        self, owner_id: str, limit: int | None = None
    ) -> Sequence[Project]: ...

    async def get_project(self, project_id: str) -> Project | None: ...

    async def get_metadata(self, project_id: str) -> ProjectMetadata | None: ...

    async def get_post_mortem(self, project_id: str) -> PostMortem | None: ...

    async def get_active_patterns(self, owner_id: str) -> Sequence[UserPattern]: ...

    async def deactivate_patterns(self, owner_id: str) -> int: ...

    async def add_pattern(self, pattern: UserPattern) -> UserPattern: ...

    async def get_active_insights(
        self, owner_id: str, limit: int | None = None
    ) -> Sequence[PatternInsight]: ...

    async def deactivate_insights(self, owner_id: str) -> int: ...

    async def add_pattern_insight(self, insight: PatternInsight) -> PatternInsight: ...

    async def get_pattern_insight(self, insight_id: str) -> PatternInsight | None: ...

    async def delete_ai_insights(self, post_mortem_id: str) -> int: ...

    async def add_ai_insight(self, insight: AIInsight) -> AIInsight: ...

    async def add_learning_metric(self, metric: LearningMetric) -> LearningMetric: ...

    async def list_learning_metrics(
        self, owner_id: str, limit: int = 10
    ) -> Sequence[LearningMetric]: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class SqlHistoryStore:
    """HistoryStore over a single SQLAlchemy async session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_projects_for_user(
        self, owner_id: str, limit: int | None = None
    ) -> Sequence[Project]:
        return await db.list_projects_for_user(self._session, owner_id, limit)

    async def get_project(self, project_id: str) -> Project | None:
        return await db.get_project(self._session, project_id)

    async def get_metadata(self, project_id: str) -> ProjectMetadata | None:
        return await db.get_metadata(self._session, project_id)

    async def get_post_mortem(self, project_id: str) -> PostMortem | None:
        return await db.get_post_mortem(self._session, project_id)

    async def get_active_patterns(self, owner_id: str) -> Sequence[UserPattern]:
        return await db.get_active_patterns(self._session, owner_id)

    async def deactivate_patterns(self, owner_id: str) -> int:
        return await self._bulk(db.deactivate_patterns(self._session, owner_id), "deactivate patterns")

    async def add_pattern(self, pattern: UserPattern) -> UserPattern:
        return await self._insert(pattern)

    async def get_active_insights(
        self, owner_id: str, limit: int | None = None
    ) -> Sequence[PatternInsight]:
        return await db.get_active_insights(self._session, owner_id, limit)

    async def deactivate_insights(self, owner_id: str) -> int:
        return await self._bulk(db.deactivate_insights(self._session, owner_id), "deactivate insights")

    async def add_pattern_insight(self, insight: PatternInsight) -> PatternInsight:
        return await self._insert(insight)

    async def get_pattern_insight(self, insight_id: str) -> PatternInsight | None:
        return await db.get_pattern_insight(self._session, insight_id)

    async def delete_ai_insights(self, post_mortem_id: str) -> int:
        return await self._bulk(
            db.delete_ai_insights(self._session, post_mortem_id), "delete AI insights"
        )

    async def add_ai_insight(self, insight: AIInsight) -> AIInsight:
        return await self._insert(insight)

    async def add_learning_metric(self, metric: LearningMetric) -> LearningMetric:
        return await self._insert(metric)

    async def list_learning_metrics(
        self, owner_id: str, limit: int = 10
    ) -> Sequence[LearningMetric]:
        return await db.list_learning_metrics(self._session, owner_id, limit)

    async def commit(self) -> None:
        try:
            await self._session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Commit failed: {exc}") from exc

    async def rollback(self) -> None:
        await self._session.rollback()

    async def _insert(self, row: RowT) -> RowT:
        # One savepoint per row; a failed insert leaves the outer transaction usable.
        try:
            async with self._session.begin_nested():
                self._session.add(row)
                await self._session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Insert into {row.__tablename__} failed: {exc}") from exc
        return row

    async def _bulk(self, statement: Awaitable[int], action: str) -> int:
        try:
            return await statement
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to {action}: {exc}") from exc
