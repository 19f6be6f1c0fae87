from datetime import UTC, datetime, timedelta

import pytest

from conftest import SATURDAY, TUESDAY, make_metadata, make_project
from graveyard.detection import (
    PatternDetector,
    PatternFinding,
    Trend,
    calculate_learning_velocity,
    lifespan_days,
    normalize_tech,
    pattern_type_for,
    significant_findings,
)
from graveyard.models import DeathCause, MetadataProvenance, PatternType, RevivalStatus

EARLY_TUESDAY = TUESDAY - timedelta(weeks=9)


def _names(findings: list[PatternFinding]) -> list[str]:
    return [f.pattern_name for f in findings]


def test_weekend_warrior_detected_for_two_weekend_abandonments() -> None:
    projects = [
        make_project(name="a", created_at=SATURDAY, lifespan_days=2),
        make_project(name="b", created_at=SATURDAY + timedelta(days=7), lifespan_days=1),
        make_project(name="c", created_at=EARLY_TUESDAY, lifespan_days=30),
    ]

    findings = PatternDetector().analyze(projects, [])

    assert _names(findings) == ["weekend_warrior"]
    finding = findings[0]
    assert finding.confidence == pytest.approx(0.8)
    assert finding.confidence >= 0.6
    assert set(finding.supporting_projects) == {projects[0].id, projects[1].id}
    assert finding.metadata["weekend_projects"] == 2
    assert finding.metadata["total_projects"] == 3


def test_weekend_warrior_needs_two_qualifying_projects() -> None:
    projects = [
        make_project(created_at=SATURDAY, lifespan_days=2),
        make_project(created_at=EARLY_TUESDAY, lifespan_days=30),
    ]
    assert PatternDetector().detect_weekend_warrior(projects) is None


def test_friday_starts_count_as_weekend() -> None:
    friday = SATURDAY - timedelta(days=1)
    projects = [
        make_project(created_at=friday, lifespan_days=2),
        make_project(created_at=friday + timedelta(days=7), lifespan_days=1),
    ]

    finding = PatternDetector().detect_weekend_warrior(projects)

    assert finding is not None
    assert finding.metadata["weekend_projects"] == 2


def test_weekend_project_living_longer_than_three_days_does_not_qualify() -> None:
    projects = [
        make_project(created_at=SATURDAY, lifespan_days=4),
        make_project(created_at=SATURDAY + timedelta(days=14), lifespan_days=2),
    ]
    assert PatternDetector().detect_weekend_warrior(projects) is None


def test_framework_churn_below_threshold_with_two_frontends() -> None:
    stacks = [["React"], ["react.js"], ["Vue"], ["Vue 3"], ["TypeScript"]]
    projects = [
        make_project(created_at=EARLY_TUESDAY + timedelta(days=60 * i), tech_stack=s)
        for i, s in enumerate(stacks)
    ]

    assert PatternDetector().detect_framework_hopper(projects) is None


def test_framework_churn_detected_with_three_frontends() -> None:
    stacks = [["React", "Node"], ["Vue.js"], ["Svelte", "Tailwind"]]
    projects = [
        make_project(created_at=EARLY_TUESDAY + timedelta(days=60 * i), tech_stack=s)
        for i, s in enumerate(stacks)
    ]

    finding = PatternDetector().detect_framework_hopper(projects)

    assert finding is not None
    assert finding.confidence == pytest.approx(0.9)
    assert finding.metadata["unique_frontends"] == ["React", "Svelte", "Vue"]
    assert finding.pattern_type is PatternType.TECHNICAL


def test_framework_churn_requires_three_projects() -> None:
    projects = [
        make_project(tech_stack=["React", "Vue"]),
        make_project(tech_stack=["Svelte"]),
    ]
    assert PatternDetector().detect_framework_hopper(projects) is None


def test_progressive_learner_on_shared_core_tech() -> None:
    projects = [
        make_project(tech_stack=["Python", "Django"]),
        make_project(tech_stack=["python", "Flask"]),
        make_project(tech_stack=["Go"]),
    ]

    finding = PatternDetector().detect_progressive_learner(projects)

    assert finding is not None
    assert finding.metadata["core_technology"] == "Python"
    assert finding.metadata["consistent_projects"] == 2
    assert finding.confidence == pytest.approx(min(0.85, 2 / 3 * 1.1))
    assert len(finding.supporting_projects) == 2


def test_progressive_learner_needs_broad_stacks() -> None:
    projects = [
        make_project(tech_stack=["Python"]),
        make_project(tech_stack=["Python"]),
        make_project(tech_stack=["Python"]),
    ]
    assert PatternDetector().detect_progressive_learner(projects) is None


def test_serial_starter_counts_quick_restarts() -> None:
    start = datetime(2024, 1, 1, tzinfo=UTC)
    projects = [
        make_project(created_at=start, lifespan_days=10),
        make_project(created_at=start + timedelta(days=11), lifespan_days=10),
        make_project(created_at=start + timedelta(days=22), lifespan_days=10),
    ]

    finding = PatternDetector().detect_serial_starter(projects)

    assert finding is not None
    assert finding.metadata["quick_starts"] == 2
    assert finding.confidence == pytest.approx(0.9)


def test_serial_starter_counts_overlapping_projects() -> None:
    start = datetime(2024, 1, 1, tzinfo=UTC)
    projects = [
        make_project(created_at=start, lifespan_days=10),
        make_project(created_at=start + timedelta(days=9), lifespan_days=10),
        make_project(created_at=start + timedelta(days=18), lifespan_days=10),
    ]

    finding = PatternDetector().detect_serial_starter(projects)

    assert finding is not None
    assert finding.metadata["quick_starts"] == 2
    assert finding.metadata["avg_gap_days"] == -1.0
    assert finding.confidence == pytest.approx(0.9)


def test_serial_starter_ignores_long_breaks() -> None:
    start = datetime(2024, 1, 1, tzinfo=UTC)
    projects = [
        make_project(created_at=start, lifespan_days=10),
        make_project(created_at=start + timedelta(days=14), lifespan_days=10),
        make_project(created_at=start + timedelta(days=28), lifespan_days=10),
    ]
    assert PatternDetector().detect_serial_starter(projects) is None


def test_planning_paralysis_from_metadata() -> None:
    projects = [make_project(created_at=EARLY_TUESDAY + timedelta(days=60 * i)) for i in range(3)]
    metadata = [
        make_metadata(projects[0], has_readme=True, loc=40, active_days=20),
        make_metadata(projects[1], has_readme=True, loc=100, active_days=14),
        make_metadata(projects[2], has_readme=True, loc=2000, active_days=20),
    ]

    findings = PatternDetector().analyze(projects, metadata)

    assert _names(findings) == ["perfectionist_paralysis"]
    assert findings[0].confidence == pytest.approx(0.8)


def test_estimated_metadata_discounts_confidence() -> None:
    projects = [make_project(), make_project()]
    metadata = [
        make_metadata(p, has_readme=True, loc=40, active_days=20, provenance=MetadataProvenance.ESTIMATED)
        for p in projects
    ]

    finding = PatternDetector(estimated_metadata_weight=0.5).detect_perfectionist_paralysis(
        projects, {m.project_id: m for m in metadata}
    )

    assert finding is not None
    assert finding.confidence == pytest.approx(0.425)
    assert finding.metadata["estimated_inputs"] == 2


def test_scope_creep_requires_over_scoped_death() -> None:
    projects = [
        make_project(death_cause=DeathCause.OVER_SCOPED),
        make_project(death_cause=DeathCause.OVER_SCOPED),
        make_project(death_cause=DeathCause.LOST_INTEREST),
    ]
    metadata = [make_metadata(p, dependencies=8, files=30) for p in projects]

    finding = PatternDetector().detect_scope_creeper(projects, {m.project_id: m for m in metadata})

    assert finding is not None
    assert finding.metadata["scope_creep_projects"] == 2
    assert finding.confidence == pytest.approx(2 / 3 * 1.3)


def test_weekday_long_lived_history_yields_no_findings() -> None:
    projects = [
        make_project(created_at=EARLY_TUESDAY, lifespan_days=40, tech_stack=["Rust"]),
        make_project(created_at=EARLY_TUESDAY + timedelta(days=100), lifespan_days=45, tech_stack=["Elixir"]),
        make_project(created_at=EARLY_TUESDAY + timedelta(days=203), lifespan_days=60, tech_stack=["Kotlin"]),
    ]
    assert PatternDetector().analyze(projects, []) == []


def test_empty_history() -> None:
    assert PatternDetector().analyze([], []) == []


def test_significant_findings_threshold_is_exclusive() -> None:
    findings = [
        PatternFinding("a", 0.6, [], {}, ""),
        PatternFinding("b", 0.61, [], {}, ""),
    ]
    assert _names(significant_findings(findings)) == ["b"]


def test_normalize_tech_folds_spellings() -> None:
    assert normalize_tech("Vue.js") == normalize_tech("vue") == normalize_tech("Vue 3") == "vue"
    assert normalize_tech("NestJS") == "nest"
    assert normalize_tech("js") == "js"


def test_pattern_type_mapping() -> None:
    assert pattern_type_for("weekend_warrior") is PatternType.TIME_BASED
    assert pattern_type_for("progressive_learner") is PatternType.TECHNICAL
    assert pattern_type_for("scope_creeper") is PatternType.BEHAVIORAL
    assert pattern_type_for("late_night_refactorer") is PatternType.BEHAVIORAL


def test_lifespan_never_negative() -> None:
    project = make_project(lifespan_days=-3)
    assert lifespan_days(project) == 0.0


def test_learning_velocity_defaults_for_empty_history() -> None:
    velocity = calculate_learning_velocity([])
    assert velocity.avg_project_lifespan_trend is Trend.STABLE
    assert velocity.scope_management_score == 100


def test_learning_velocity_trends_and_scores() -> None:
    start = datetime(2023, 1, 3, tzinfo=UTC)
    lifespans = [10, 10, 10, 100, 100, 100]
    projects = [
        make_project(created_at=start + timedelta(days=200 * i), lifespan_days=d, tech_stack=["Python"])
        for i, d in enumerate(lifespans)
    ]
    projects[0].death_cause = DeathCause.OVER_SCOPED.value
    projects[1].death_cause = DeathCause.OVER_SCOPED.value
    projects[2].revival_status = RevivalStatus.REVIVING.value

    velocity = calculate_learning_velocity(projects)

    assert velocity.avg_project_lifespan_trend is Trend.IMPROVING
    assert velocity.scope_management_score == round(100 - 2 / 6 * 100)
    assert velocity.technology_consistency_score == round(100 - 1 / 6 * 10)
    assert velocity.completion_rate_trend is Trend.IMPROVING


def test_learning_velocity_declining_lifespans() -> None:
    start = datetime(2023, 1, 3, tzinfo=UTC)
    projects = [
        make_project(created_at=start + timedelta(days=200 * i), lifespan_days=d)
        for i, d in enumerate([100, 100, 100, 5, 5, 5])
    ]
    assert calculate_learning_velocity(projects).avg_project_lifespan_trend is Trend.DECLINING
