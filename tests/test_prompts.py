import pytest

from conftest import make_pattern, make_post_mortem, make_project
from graveyard.detection import LearningVelocity, Trend
from graveyard.models import DeathCause
from graveyard.parsing import SECTION_MARKERS
from graveyard.prompts import (
    ExperienceTier,
    HistoryEntry,
    build_coaching_prompt,
    build_pattern_detection_prompt,
    build_post_mortem_prompt,
    experience_tier,
)


@pytest.mark.parametrize(
    ("total", "tier"),
    [
        (0, ExperienceTier.NEWCOMER),
        (1, ExperienceTier.NEWCOMER),
        (2, ExperienceTier.EARLY),
        (3, ExperienceTier.EXPERIENCED),
        (9, ExperienceTier.EXPERIENCED),
        (10, ExperienceTier.VETERAN),
    ],
)
def test_experience_tier(total: int, tier: ExperienceTier) -> None:
    assert experience_tier(total) is tier


def test_post_mortem_prompt_carries_every_section_marker() -> None:
    project = make_project(name="climb-log", tech_stack=["Django"])
    prompt = build_post_mortem_prompt(project, make_post_mortem(project))

    for _, marker in SECTION_MARKERS:
        assert marker in prompt
    assert "NEWCOMER DEVELOPER" in prompt
    assert "FIRST project burial" in prompt
    assert '"I rebuilt the auth layer three times"' in prompt


def test_post_mortem_prompt_includes_history_patterns_and_velocity() -> None:
    project = make_project(name="current")
    older = make_project(name="older", death_cause=DeathCause.OVER_SCOPED, tech_stack=["Vue"])
    velocity = LearningVelocity(
        avg_project_lifespan_trend=Trend.IMPROVING,
        scope_management_score=70,
        technology_consistency_score=90,
        completion_rate_trend=Trend.STABLE,
    )

    prompt = build_post_mortem_prompt(
        project,
        make_post_mortem(project),
        history=[HistoryEntry(older, make_post_mortem(older, what_went_wrong="Scope exploded"))],
        patterns=[make_pattern("serial_starter", 0.9, frequency=3)],
        velocity=velocity,
        total_projects=4,
    )

    assert "EXPERIENCED DEVELOPER" in prompt
    assert "SERIAL STARTER (90% confidence, detected 3 times)" in prompt
    assert "Scope Management Score: 70/100" in prompt
    assert '- "older" (abandoned due to: over scoped)' in prompt
    assert 'What went wrong: "Scope exploded"' in prompt
    assert "established patterns (serial_starter)" in prompt
    assert "Project #4 in their graveyard" in prompt


def test_pattern_detection_prompt_lists_projects_and_json_contract() -> None:
    projects = [
        make_project(name="first", lifespan_days=0.2, tech_stack=["Go"]),
        make_project(name="second", lifespan_days=12),
    ]

    prompt = build_pattern_detection_prompt(projects)

    assert 'Project 1: "first"' in prompt
    assert 'Project 2: "second"' in prompt
    assert "- Lifespan: 1 days" in prompt
    assert "- Created: 2024-06-04" in prompt
    assert '"patterns"' in prompt


def test_coaching_prompt_lists_pattern_evidence() -> None:
    pattern = make_pattern("weekend_warrior", 0.8)
    pattern.pattern_value = {"evidence": ["Project a died in 2 days", "Project b died in 1 day"]}

    prompt = build_coaching_prompt([pattern], [make_project(name="recent")])

    assert 'Pattern: "weekend_warrior" (80% confidence)' in prompt
    assert "Evidence: Project a died in 2 days; Project b died in 1 day" in prompt
    assert "last 1 projects" in prompt
    assert '"insights"' in prompt
    assert "- Created:" not in prompt
