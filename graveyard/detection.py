"""
Heuristic behavioral pattern detection over a user's project history.

Everything in this module is pure: no I/O, no clock reads, no randomness.
Detectors return every finding with a positive confidence; callers drop the
ones at or below their significance threshold.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from .models import (
    DeathCause,
    MetadataProvenance,
    PatternName,
    PatternType,
    Project,
    ProjectMetadata,
    RevivalStatus,
)

_SECONDS_PER_DAY = 60 * 60 * 24

# Weekday() values for Friday, Saturday, Sunday.
_WEEKEND_START_DAYS = {4, 5, 6}

FRONTEND_FRAMEWORKS: dict[str, tuple[str, ...]] = {
    "React": ("react", "reactjs"),
    "Vue": ("vue", "vuejs"),
    "Angular": ("angular", "angularjs"),
    "Svelte": ("svelte", "sveltejs", "sveltekit"),
    "Solid": ("solid", "solidjs"),
    "Preact": ("preact", "preactjs"),
}

BACKEND_FRAMEWORKS: dict[str, tuple[str, ...]] = {
    "Express": ("express", "expressjs"),
    "Fastify": ("fastify",),
    "Koa": ("koa", "koajs"),
    "NestJS": ("nest", "nestjs"),
    "Django": ("django",),
    "Flask": ("flask",),
    "Rails": ("rails", "rubyonrails", "ror"),
    "Laravel": ("laravel",),
}

PATTERN_TYPES: dict[str, PatternType] = {
    PatternName.WEEKEND_WARRIOR: PatternType.TIME_BASED,
    PatternName.FRAMEWORK_HOPPER: PatternType.TECHNICAL,
    PatternName.PROGRESSIVE_LEARNER: PatternType.TECHNICAL,
    PatternName.SERIAL_STARTER: PatternType.BEHAVIORAL,
    PatternName.PERFECTIONIST_PARALYSIS: PatternType.BEHAVIORAL,
    PatternName.SCOPE_CREEPER: PatternType.BEHAVIORAL,
}

PATTERN_DESCRIPTIONS: dict[str, str] = {
    PatternName.WEEKEND_WARRIOR: "Starts projects on weekends but abandons them by Monday",
    PatternName.FRAMEWORK_HOPPER: "Never uses the same tech stack twice, preventing mastery",
    PatternName.PROGRESSIVE_LEARNER: "Builds on a consistent core technology while adding new tools",
    PatternName.SERIAL_STARTER: "Starts new projects within days of abandoning previous ones",
    PatternName.PERFECTIONIST_PARALYSIS: (
        "Spends too much time on documentation/planning, not enough on coding"
    ),
    PatternName.SCOPE_CREEPER: "Continuously expands project scope until it becomes unmanageable",
}


class Trend(StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


@dataclass
class PatternFinding:
    """An unpersisted detection result."""

    pattern_name: str
    confidence: float
    supporting_projects: list[str]
    metadata: dict[str, Any]
    evidence: str
    source: str = "heuristic"

    @property
    def pattern_type(self) -> PatternType:
        return pattern_type_for(self.pattern_name)


@dataclass
class LearningVelocity:
    """Aggregate progress metrics over a user's whole history."""

    avg_project_lifespan_trend: Trend = Trend.STABLE
    scope_management_score: int = 100
    technology_consistency_score: int = 100
    completion_rate_trend: Trend = Trend.STABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "avg_project_lifespan_trend": self.avg_project_lifespan_trend.value,
            "scope_management_score": self.scope_management_score,
            "technology_consistency_score": self.technology_consistency_score,
            "completion_rate_trend": self.completion_rate_trend.value,
        }


def pattern_type_for(pattern_name: str) -> PatternType:
    return PATTERN_TYPES.get(pattern_name, PatternType.BEHAVIORAL)


def describe_pattern(pattern_name: str) -> str:
    return PATTERN_DESCRIPTIONS.get(pattern_name, "Unknown pattern")


def significant_findings(
    findings: Sequence[PatternFinding], threshold: float = 0.6
) -> list[PatternFinding]:
    """Keep findings whose confidence is strictly above the threshold."""
    return [f for f in findings if f.confidence > threshold]


def normalize_tech(tag: str) -> str:
    """Fold spelling variants of a technology tag onto one key.

    "Vue.js", "vue", "VueJS" and "vue 3" all normalize to "vue".
    """
    key = re.sub(r"[^a-z0-9]", "", tag.lower())
    key = re.sub(r"\d+$", "", key)
    return key.removesuffix("js") if key.endswith("js") and len(key) > 4 else key


def _build_alias_index(table: dict[str, tuple[str, ...]]) -> dict[str, str]:
    index: dict[str, str] = {}
    for canonical, aliases in table.items():
        for alias in aliases:
            index[normalize_tech(alias)] = canonical
    return index


_FRONTEND_INDEX = _build_alias_index(FRONTEND_FRAMEWORKS)
_BACKEND_INDEX = _build_alias_index(BACKEND_FRAMEWORKS)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def lifespan_days(project: Project) -> float:
    """Days between creation and death, never negative."""
    delta = _as_utc(project.death_date) - _as_utc(project.created_at)
    return max(0.0, delta.total_seconds() / _SECONDS_PER_DAY)


class PatternDetector:
    """Runs every heuristic detector and returns the union of their findings."""

    def __init__(self, estimated_metadata_weight: float = 1.0) -> None:
        self._estimated_weight = estimated_metadata_weight

    def analyze(
        self, projects: Sequence[Project], metadata: Sequence[ProjectMetadata]
    ) -> list[PatternFinding]:
        if not projects:
            return []

        meta_by_project = {m.project_id: m for m in metadata}
        candidates = [
            self.detect_weekend_warrior(projects),
            self.detect_framework_hopper(projects),
            self.detect_progressive_learner(projects),
            self.detect_serial_starter(projects),
            self.detect_perfectionist_paralysis(projects, meta_by_project),
            self.detect_scope_creeper(projects, meta_by_project),
        ]
        return [f for f in candidates if f is not None and f.confidence > 0]

    # -- time-based -----------------------------------------------------------

    def detect_weekend_warrior(self, projects: Sequence[Project]) -> PatternFinding | None:
        weekend = [
            p
            for p in projects
            if _as_utc(p.created_at).weekday() in _WEEKEND_START_DAYS and lifespan_days(p) <= 3
        ]
        if len(weekend) < 2:
            return None

        total = len(projects)
        share = len(weekend) / total
        avg_lifespan = sum(lifespan_days(p) for p in weekend) / len(weekend)
        return PatternFinding(
            pattern_name=PatternName.WEEKEND_WARRIOR,
            confidence=min(0.95, share * 1.2),
            supporting_projects=[p.id for p in weekend],
            metadata={
                "weekend_projects": len(weekend),
                "total_projects": total,
                "weekend_share_pct": round(share * 100),
                "avg_weekend_lifespan_days": round(avg_lifespan, 1),
            },
            evidence=(
                f"{round(share * 100)}% of your projects started on a Friday, Saturday or "
                f"Sunday and were abandoned within 3 days "
                f"(average lifespan {avg_lifespan:.1f} days)."
            ),
        )

    # -- technical ------------------------------------------------------------

    def detect_framework_hopper(self, projects: Sequence[Project]) -> PatternFinding | None:
        frontends: set[str] = set()
        backends: set[str] = set()
        supporting: list[str] = []
        for project in projects:
            keys = {normalize_tech(tag) for tag in project.tech_stack or []}
            project_frontends = {_FRONTEND_INDEX[k] for k in keys if k in _FRONTEND_INDEX}
            project_backends = {_BACKEND_INDEX[k] for k in keys if k in _BACKEND_INDEX}
            if project_frontends or project_backends:
                supporting.append(project.id)
            frontends |= project_frontends
            backends |= project_backends

        total = len(projects)
        if total < 3 or (len(frontends) < 3 and len(backends) < 3):
            return None

        return PatternFinding(
            pattern_name=PatternName.FRAMEWORK_HOPPER,
            confidence=min(0.90, max(len(frontends), len(backends)) / total),
            supporting_projects=supporting,
            metadata={
                "unique_frontends": sorted(frontends),
                "unique_backends": sorted(backends),
                "total_projects": total,
            },
            evidence=(
                f"You've used {len(frontends)} different frontend frameworks "
                f"({', '.join(sorted(frontends)) or 'none'}) and {len(backends)} backend "
                f"frameworks ({', '.join(sorted(backends)) or 'none'}) across {total} projects."
            ),
        )

    def detect_progressive_learner(self, projects: Sequence[Project]) -> PatternFinding | None:
        usage: Counter[str] = Counter()
        labels: dict[str, str] = {}
        for project in projects:
            for tag in project.tech_stack or []:
                labels.setdefault(normalize_tech(tag), tag)
            usage.update({normalize_tech(tag) for tag in project.tech_stack or []})
        if not usage:
            return None

        # Counter.most_common keeps first-seen order among ties.
        core_key, core_count = usage.most_common(1)[0]
        total = len(projects)
        avg_stack = sum(len(p.tech_stack or []) for p in projects) / total
        if core_count < 2 or avg_stack <= 1.5:
            return None

        core_label = labels[core_key]
        supporting = [
            p.id for p in projects if core_key in {normalize_tech(t) for t in p.tech_stack or []}
        ]
        return PatternFinding(
            pattern_name=PatternName.PROGRESSIVE_LEARNER,
            confidence=min(0.85, (core_count / total) * 1.1),
            supporting_projects=supporting,
            metadata={
                "core_technology": core_label,
                "consistent_projects": core_count,
                "avg_stack_size": round(avg_stack, 1),
            },
            evidence=(
                f"You consistently build on {core_label} ({core_count} of {total} projects) "
                f"while adding complementary tools (avg {avg_stack:.1f} technologies per project)."
            ),
        )

    # -- behavioral -----------------------------------------------------------

    def detect_serial_starter(self, projects: Sequence[Project]) -> PatternFinding | None:
        ordered = sorted(projects, key=lambda p: _as_utc(p.created_at))
        restarts: list[str] = []
        gaps: list[float] = []
        for previous, current in zip(ordered, ordered[1:]):
            gap = (
                _as_utc(current.created_at) - _as_utc(previous.death_date)
            ).total_seconds() / _SECONDS_PER_DAY
            # Overlapping projects (negative gap) count as restarts too.
            if gap <= 3:
                restarts.append(current.id)
                gaps.append(gap)

        if len(restarts) < 2:
            return None

        avg_gap = sum(gaps) / len(gaps)
        return PatternFinding(
            pattern_name=PatternName.SERIAL_STARTER,
            confidence=min(0.90, (len(restarts) / (len(projects) - 1)) * 1.1),
            supporting_projects=restarts,
            metadata={
                "quick_starts": len(restarts),
                "avg_gap_days": round(avg_gap, 1),
                "total_projects": len(projects),
            },
            evidence=(
                f"You started a new project within 3 days of abandoning the previous one "
                f"{len(restarts)} times (average gap {avg_gap:.1f} days)."
            ),
        )

    def detect_perfectionist_paralysis(
        self, projects: Sequence[Project], meta_by_project: dict[str, ProjectMetadata]
    ) -> PatternFinding | None:
        stalled: list[tuple[Project, ProjectMetadata]] = []
        for project in projects:
            meta = meta_by_project.get(project.id)
            if meta is None:
                continue
            if (
                meta.has_readme
                and (meta.estimated_lines_of_code or 0) <= 100
                and (meta.active_days or 0) >= 14
            ):
                stalled.append((project, meta))

        if len(stalled) < 2:
            return None

        metas = [m for _, m in stalled]
        avg_days = sum(m.active_days or 0 for m in metas) / len(metas)
        avg_loc = sum(m.estimated_lines_of_code or 0 for m in metas) / len(metas)
        confidence = min(0.85, (len(stalled) / len(projects)) * 1.2)
        return PatternFinding(
            pattern_name=PatternName.PERFECTIONIST_PARALYSIS,
            confidence=self._weigh_provenance(confidence, metas),
            supporting_projects=[p.id for p, _ in stalled],
            metadata={
                "paralysis_projects": len(stalled),
                "avg_planning_days": round(avg_days, 1),
                "avg_lines_of_code": round(avg_loc),
                "estimated_inputs": _estimated_count(metas),
            },
            evidence=(
                f"{len(stalled)} projects had a README and {avg_days:.0f}+ active days "
                f"but only about {avg_loc:.0f} lines of code."
            ),
        )

    def detect_scope_creeper(
        self, projects: Sequence[Project], meta_by_project: dict[str, ProjectMetadata]
    ) -> PatternFinding | None:
        bloated: list[tuple[Project, ProjectMetadata]] = []
        for project in projects:
            meta = meta_by_project.get(project.id)
            if meta is None or project.death_cause != DeathCause.OVER_SCOPED:
                continue
            if (meta.dependency_count or 0) > 5 and (meta.file_count or 0) > 20:
                bloated.append((project, meta))

        if len(bloated) < 2:
            return None

        metas = [m for _, m in bloated]
        avg_files = sum(m.file_count or 0 for m in metas) / len(metas)
        avg_deps = sum(m.dependency_count or 0 for m in metas) / len(metas)
        confidence = min(0.90, (len(bloated) / len(projects)) * 1.3)
        return PatternFinding(
            pattern_name=PatternName.SCOPE_CREEPER,
            confidence=self._weigh_provenance(confidence, metas),
            supporting_projects=[p.id for p, _ in bloated],
            metadata={
                "scope_creep_projects": len(bloated),
                "avg_files": round(avg_files),
                "avg_dependencies": round(avg_deps, 1),
                "estimated_inputs": _estimated_count(metas),
            },
            evidence=(
                f"{len(bloated)} projects died over-scoped with {avg_files:.0f} files and "
                f"{avg_deps:.0f} dependencies on average."
            ),
        )

    def _weigh_provenance(self, confidence: float, metas: Sequence[ProjectMetadata]) -> float:
        if _estimated_count(metas):
            return confidence * self._estimated_weight
        return confidence


def _estimated_count(metas: Sequence[ProjectMetadata]) -> int:
    return sum(1 for m in metas if m.provenance != MetadataProvenance.MEASURED)


def calculate_learning_velocity(projects: Sequence[Project]) -> LearningVelocity:
    """Summarise how a user's abandonment behavior is trending."""
    if not projects:
        return LearningVelocity()

    ordered = sorted(projects, key=lambda p: _as_utc(p.created_at))
    lifespans = [max(1.0, lifespan_days(p)) for p in ordered]
    avg_lifespan = sum(lifespans) / len(lifespans)
    recent = lifespans[-3:]
    recent_lifespan = sum(recent) / len(recent)

    if recent_lifespan > avg_lifespan * 1.2:
        lifespan_trend = Trend.IMPROVING
    elif recent_lifespan < avg_lifespan * 0.8:
        lifespan_trend = Trend.DECLINING
    else:
        lifespan_trend = Trend.STABLE

    total = len(projects)
    over_scoped = sum(1 for p in projects if p.death_cause == DeathCause.OVER_SCOPED)
    scope_score = max(0.0, 100 - (over_scoped / total) * 100)

    unique_techs = {normalize_tech(t) for p in projects for t in p.tech_stack or []}
    consistency_score = max(0.0, 100 - (len(unique_techs) / total) * 10)

    revivals = sum(
        1
        for p in projects
        if p.revival_status in (RevivalStatus.REVIVED, RevivalStatus.REVIVING)
    )

    return LearningVelocity(
        avg_project_lifespan_trend=lifespan_trend,
        scope_management_score=round(scope_score),
        technology_consistency_score=round(consistency_score),
        completion_rate_trend=Trend.IMPROVING if revivals else Trend.STABLE,
    )
