"""SQLAlchemy models for the project graveyard database."""

from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    ARRAY,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class DeathCause(StrEnum):
    LOST_INTEREST = "lost_interest"
    OVER_SCOPED = "over_scoped"
    BETTER_SOLUTION_EXISTED = "better_solution_existed"
    TECHNICAL_ROADBLOCK = "technical_roadblock"
    LIFE_GOT_IN_WAY = "life_got_in_way"
    OTHER = "other"


class RevivalStatus(StrEnum):
    BURIED = "buried"
    REVIVING = "reviving"
    REVIVED = "revived"


class FirstCommitType(StrEnum):
    SETUP = "setup"
    AUTH = "auth"
    UI = "ui"
    DATA_MODEL = "data_model"
    API = "api"


class MetadataProvenance(StrEnum):
    """Where a ProjectMetadata row came from."""

    MEASURED = "measured"
    ESTIMATED = "estimated"


class PatternType(StrEnum):
    TIME_BASED = "time_based"
    TECHNICAL = "technical"
    BEHAVIORAL = "behavioral"


class PatternName(StrEnum):
    """Names emitted by the heuristic detectors."""

    WEEKEND_WARRIOR = "weekend_warrior"
    FRAMEWORK_HOPPER = "framework_hopper"
    PROGRESSIVE_LEARNER = "progressive_learner"
    SERIAL_STARTER = "serial_starter"
    PERFECTIONIST_PARALYSIS = "perfectionist_paralysis"
    SCOPE_CREEPER = "scope_creeper"


class InsightType(StrEnum):
    WARNING = "warning"
    RECOMMENDATION = "recommendation"
    OBSERVATION = "observation"
    PREDICTION = "prediction"


class AIInsightType(StrEnum):
    PATTERN_RECOGNITION = "pattern_recognition"
    COACHING = "coaching"
    QUESTIONS = "questions"
    STRATEGIES = "strategies"


class InsightFeedback(StrEnum):
    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"
    IRRELEVANT = "irrelevant"


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
        list[str]: ARRAY(String),
    }


# =============================================================================
# PROJECT HISTORY
# =============================================================================


class Project(Base):
    """An abandoned project owned by one user."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    owner_id: Mapped[str] = mapped_column(UUID(as_uuid=False), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    death_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    death_cause: Mapped[str] = mapped_column(String, default=DeathCause.OTHER.value)
    tech_stack: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    epitaph: Mapped[str | None] = mapped_column(Text, nullable=True)
    revival_status: Mapped[str] = mapped_column(String, default=RevivalStatus.BURIED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ProjectMetadata(Base):
    """Engineering facts about a project, measured or estimated."""

    __tablename__ = "project_metadata"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), unique=True
    )
    active_days: Mapped[int] = mapped_column(Integer, default=0)
    estimated_lines_of_code: Mapped[int] = mapped_column(Integer, default=0)
    dependency_count: Mapped[int] = mapped_column(Integer, default=0)
    file_count: Mapped[int] = mapped_column(Integer, default=0)
    first_commit_type: Mapped[str | None] = mapped_column(String, nullable=True)
    has_readme: Mapped[bool] = mapped_column(Boolean, default=False)
    has_tests: Mapped[bool] = mapped_column(Boolean, default=False)
    has_documentation: Mapped[bool] = mapped_column(Boolean, default=False)
    provenance: Mapped[str] = mapped_column(String, default=MetadataProvenance.ESTIMATED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class PostMortem(Base):
    """The user's written reflection on why a project died."""

    __tablename__ = "post_mortems"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE"), unique=True
    )
    what_problem: Mapped[str | None] = mapped_column(Text, nullable=True)
    what_went_wrong: Mapped[str | None] = mapped_column(Text, nullable=True)
    lessons_learned: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# =============================================================================
# ANALYSIS RESULTS
# =============================================================================


class UserPattern(Base):
    """A detected behavioral signature; retired by soft deactivation."""

    __tablename__ = "user_patterns"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    owner_id: Mapped[str] = mapped_column(UUID(as_uuid=False), index=True, nullable=False)
    pattern_type: Mapped[str] = mapped_column(String, nullable=False)
    pattern_name: Mapped[str] = mapped_column(String, nullable=False)
    pattern_value: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    first_detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class PatternInsight(Base):
    """A coaching statement derived from a user's aggregate pattern set."""

    __tablename__ = "pattern_insights"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    owner_id: Mapped[str] = mapped_column(UUID(as_uuid=False), index=True, nullable=False)
    insight_text: Mapped[str] = mapped_column(Text, nullable=False)
    insight_type: Mapped[str] = mapped_column(String, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    projects_analyzed: Mapped[int] = mapped_column(Integer, default=0)
    related_pattern_ids: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    user_feedback: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class AIInsight(Base):
    """A coaching section generated for one post-mortem; replaced wholesale."""

    __tablename__ = "ai_insights"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE")
    )
    post_mortem_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), ForeignKey("post_mortems.id", ondelete="CASCADE"), index=True
    )
    insight_type: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("post_mortem_id", "insight_type"),)


class LearningMetric(Base):
    """Snapshot of learning-velocity metrics taken on each full analysis."""

    __tablename__ = "user_learning_metrics"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False), primary_key=True, default=lambda: str(uuid4())
    )
    owner_id: Mapped[str] = mapped_column(UUID(as_uuid=False), index=True, nullable=False)
    avg_project_lifespan_trend: Mapped[str] = mapped_column(String, nullable=False)
    scope_management_score: Mapped[int] = mapped_column(Integer, nullable=False)
    technology_consistency_score: Mapped[int] = mapped_column(Integer, nullable=False)
    completion_rate_trend: Mapped[str] = mapped_column(String, nullable=False)
    projects_analyzed: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
