"""Initial schema - project history and analysis result tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Projects table
    op.create_table(
        "projects",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("death_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("death_cause", sa.String(), server_default="other"),
        sa.Column("tech_stack", postgresql.ARRAY(sa.String()), server_default="{}"),
        sa.Column("epitaph", sa.Text(), nullable=True),
        sa.Column("revival_status", sa.String(), server_default="buried"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_projects_owner_id", "projects", ["owner_id"])

    # Project metadata table
    op.create_table(
        "project_metadata",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            unique=True,
        ),
        sa.Column("active_days", sa.Integer(), server_default="0"),
        sa.Column("estimated_lines_of_code", sa.Integer(), server_default="0"),
        sa.Column("dependency_count", sa.Integer(), server_default="0"),
        sa.Column("file_count", sa.Integer(), server_default="0"),
        sa.Column("first_commit_type", sa.String(), nullable=True),
        sa.Column("has_readme", sa.Boolean(), server_default="false"),
        sa.Column("has_tests", sa.Boolean(), server_default="false"),
        sa.Column("has_documentation", sa.Boolean(), server_default="false"),
        sa.Column("provenance", sa.String(), server_default="estimated"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Post-mortems table
    op.create_table(
        "post_mortems",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            unique=True,
        ),
        sa.Column("what_problem", sa.Text(), nullable=True),
        sa.Column("what_went_wrong", sa.Text(), nullable=True),
        sa.Column("lessons_learned", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Detected patterns
    op.create_table(
        "user_patterns",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("pattern_type", sa.String(), nullable=False),
        sa.Column("pattern_name", sa.String(), nullable=False),
        sa.Column("pattern_value", postgresql.JSONB(), server_default="{}"),
        sa.Column("frequency", sa.Integer(), server_default="1"),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("first_detected_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_detected_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_user_patterns_owner_id", "user_patterns", ["owner_id"])
    op.create_index("ix_user_patterns_is_active", "user_patterns", ["is_active"])

    # Coaching insights over the pattern set
    op.create_table(
        "pattern_insights",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("insight_text", sa.Text(), nullable=False),
        sa.Column("insight_type", sa.String(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("projects_analyzed", sa.Integer(), server_default="0"),
        sa.Column("related_pattern_ids", postgresql.ARRAY(sa.String()), server_default="{}"),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("user_feedback", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_pattern_insights_owner_id", "pattern_insights", ["owner_id"])
    op.create_index("ix_pattern_insights_is_active", "pattern_insights", ["is_active"])

    # Per post-mortem AI insights
    op.create_table(
        "ai_insights",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "post_mortem_id",
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey("post_mortems.id", ondelete="CASCADE"),
        ),
        sa.Column("insight_type", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("post_mortem_id", "insight_type"),
    )
    op.create_index("ix_ai_insights_post_mortem_id", "ai_insights", ["post_mortem_id"])

    # Learning velocity snapshots
    op.create_table(
        "user_learning_metrics",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("avg_project_lifespan_trend", sa.String(), nullable=False),
        sa.Column("scope_management_score", sa.Integer(), nullable=False),
        sa.Column("technology_consistency_score", sa.Integer(), nullable=False),
        sa.Column("completion_rate_trend", sa.String(), nullable=False),
        sa.Column("projects_analyzed", sa.Integer(), server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_user_learning_metrics_owner_id", "user_learning_metrics", ["owner_id"])


def downgrade() -> None:
    op.drop_table("user_learning_metrics")
    op.drop_table("ai_insights")
    op.drop_table("pattern_insights")
    op.drop_table("user_patterns")
    op.drop_table("post_mortems")
    op.drop_table("project_metadata")
    op.drop_table("projects")
