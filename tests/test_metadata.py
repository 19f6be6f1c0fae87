import pytest

from conftest import InMemoryHistoryStore, make_metadata, make_project
from graveyard.metadata import (
    EstimatedMetadataProvider,
    FallbackMetadataProvider,
    StoredMetadataProvider,
    estimate_metadata,
)
from graveyard.models import MetadataProvenance


def test_estimate_is_deterministic_per_project() -> None:
    project = make_project(lifespan_days=12, tech_stack=["Go", "Postgres"])

    first, second = estimate_metadata(project), estimate_metadata(project)

    assert first.estimated_lines_of_code == second.estimated_lines_of_code
    assert first.dependency_count == second.dependency_count
    assert first.has_readme == second.has_readme
    assert first.provenance == MetadataProvenance.ESTIMATED
    assert first.active_days == 12
    assert 2 <= first.dependency_count <= 4
    assert 240 <= first.estimated_lines_of_code < 740


def test_estimate_has_at_least_one_active_day() -> None:
    assert estimate_metadata(make_project(lifespan_days=0)).active_days == 1


@pytest.mark.asyncio
async def test_stored_provider_skips_projects_without_rows(store: InMemoryHistoryStore) -> None:
    with_row, without_row = make_project(), make_project()
    store.metadata.append(make_metadata(with_row))

    rows = await StoredMetadataProvider(store).metadata_for([with_row, without_row])

    assert [m.project_id for m in rows] == [with_row.id]


@pytest.mark.asyncio
async def test_fallback_provider_estimates_missing_rows(store: InMemoryHistoryStore) -> None:
    with_row, without_row = make_project(), make_project()
    stored = make_metadata(with_row)
    store.metadata.append(stored)

    rows = await FallbackMetadataProvider(store).metadata_for([with_row, without_row])

    assert rows[0] is stored
    assert rows[1].project_id == without_row.id
    assert rows[1].provenance == MetadataProvenance.ESTIMATED
    assert store.writes == 0


@pytest.mark.asyncio
async def test_estimated_provider_covers_every_project() -> None:
    projects = [make_project(), make_project()]
    rows = await EstimatedMetadataProvider().metadata_for(projects)
    assert [m.project_id for m in rows] == [p.id for p in projects]
