"""Async database connection and queries for the project graveyard."""

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .errors import SchemaNotInitializedError, is_schema_missing_error, schema_not_initialized_message
from .models import (
    AIInsight,
    Base,
    LearningMetric,
    PatternInsight,
    PostMortem,
    Project,
    ProjectMetadata,
    UserPattern,
)

# Create async engine and session factory
engine = create_async_engine(settings.async_database_url, echo=False, pool_pre_ping=True)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


async def init_db() -> None:
    """Create all tables (for development/testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError) and is_schema_missing_error(exc):
                raise SchemaNotInitializedError(schema_not_initialized_message(exc)) from exc
            raise


# =============================================================================
# Project Operations
# =============================================================================


async def list_projects_for_user(
    session: AsyncSession, owner_id: str, limit: int | None = None
) -> Sequence[Project]:
    """Projects owned by a user, newest first."""
    query = (
        select(Project)
        .where(Project.owner_id == owner_id)
        .order_by(Project.created_at.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return result.scalars().all()


async def get_project(session: AsyncSession, project_id: str) -> Project | None:
    result = await session.execute(select(Project).where(Project.id == project_id))
    return result.scalar_one_or_none()


async def get_metadata(session: AsyncSession, project_id: str) -> ProjectMetadata | None:
    result = await session.execute(
        select(ProjectMetadata).where(ProjectMetadata.project_id == project_id)
    )
    return result.scalar_one_or_none()


async def get_post_mortem(session: AsyncSession, project_id: str) -> PostMortem | None:
    result = await session.execute(select(PostMortem).where(PostMortem.project_id == project_id))
    return result.scalar_one_or_none()


# =============================================================================
# Pattern Operations
# =============================================================================


async def get_active_patterns(session: AsyncSession, owner_id: str) -> Sequence[UserPattern]:
    """Active patterns for a user, highest confidence first."""
    result = await session.execute(
        select(UserPattern)
        .where(UserPattern.owner_id == owner_id, UserPattern.is_active.is_(True))
        .order_by(UserPattern.confidence_score.desc())
    )
    return result.scalars().all()


async def deactivate_patterns(session: AsyncSession, owner_id: str) -> int:
    """Soft-deactivate every active pattern of a user. Returns the row count."""
    result = await session.execute(
        update(UserPattern)
        .where(UserPattern.owner_id == owner_id, UserPattern.is_active.is_(True))
        .values(is_active=False)
    )
    return result.rowcount or 0


# =============================================================================
# Insight Operations
# =============================================================================


async def get_active_insights(
    session: AsyncSession, owner_id: str, limit: int | None = None
) -> Sequence[PatternInsight]:
    """Active insights for a user, highest confidence first."""
    query = (
        select(PatternInsight)
        .where(PatternInsight.owner_id == owner_id, PatternInsight.is_active.is_(True))
        .order_by(PatternInsight.confidence_score.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return result.scalars().all()


async def deactivate_insights(session: AsyncSession, owner_id: str) -> int:
    result = await session.execute(
        update(PatternInsight)
        .where(PatternInsight.owner_id == owner_id, PatternInsight.is_active.is_(True))
        .values(is_active=False)
    )
    return result.rowcount or 0


async def get_pattern_insight(session: AsyncSession, insight_id: str) -> PatternInsight | None:
    result = await session.execute(select(PatternInsight).where(PatternInsight.id == insight_id))
    return result.scalar_one_or_none()


async def delete_ai_insights(session: AsyncSession, post_mortem_id: str) -> int:
    """Hard-delete the AI insights generated for one post-mortem."""
    result = await session.execute(
        delete(AIInsight).where(AIInsight.post_mortem_id == post_mortem_id)
    )
    return result.rowcount or 0


# =============================================================================
# Learning Metric Operations
# =============================================================================


async def list_learning_metrics(
    session: AsyncSession, owner_id: str, limit: int = 10
) -> Sequence[LearningMetric]:
    """Most recent learning-velocity snapshots for a user."""
    result = await session.execute(
        select(LearningMetric)
        .where(LearningMetric.owner_id == owner_id)
        .order_by(LearningMetric.created_at.desc())
        .limit(limit)
    )
    return result.scalars().all()
