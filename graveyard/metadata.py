"""Metadata providers: where ProjectMetadata for the detectors comes from."""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from typing import Protocol

from .detection import lifespan_days
from .models import FirstCommitType, MetadataProvenance, Project, ProjectMetadata
from .store import HistoryStore

logger = logging.getLogger(__name__)


class MetadataProvider(Protocol):
    async def metadata_for(self, projects: Sequence[Project]) -> list[ProjectMetadata]: ...


class StoredMetadataProvider:
    """Reads whatever metadata rows the store holds; projects without one are skipped."""

    def __init__(self, store: HistoryStore) -> None:
        self._store = store

    async def metadata_for(self, projects: Sequence[Project]) -> list[ProjectMetadata]:
        rows: list[ProjectMetadata] = []
        for project in projects:
            meta = await self._store.get_metadata(project.id)
            if meta is not None:
                rows.append(meta)
        return rows


class EstimatedMetadataProvider:
    """Derives plausible metadata from a project's own facts.

    No repository is inspected. Values are pseudo-random but seeded from the
    project id, so the same project always gets the same estimate. Rows are
    tagged ``estimated`` and are never written back to the store.
    """

    async def metadata_for(self, projects: Sequence[Project]) -> list[ProjectMetadata]:
        return [estimate_metadata(project) for project in projects]


class FallbackMetadataProvider:
    """Stored rows where they exist, estimates for the rest."""

    def __init__(self, store: HistoryStore) -> None:
        self._stored = StoredMetadataProvider(store)

    async def metadata_for(self, projects: Sequence[Project]) -> list[ProjectMetadata]:
        stored = {m.project_id: m for m in await self._stored.metadata_for(projects)}
        missing = [p for p in projects if p.id not in stored]
        if missing:
            logger.debug("Estimating metadata for %d of %d projects", len(missing), len(projects))
        return [stored.get(p.id) or estimate_metadata(p) for p in projects]


def estimate_metadata(project: Project) -> ProjectMetadata:
    rng = random.Random(project.id)
    days_active = max(1, int(lifespan_days(project)))
    dependency_count = len(project.tech_stack or []) + rng.randrange(3)
    estimated_loc = rng.randrange(500) + days_active * 20
    return ProjectMetadata(
        project_id=project.id,
        active_days=days_active,
        estimated_lines_of_code=estimated_loc,
        dependency_count=dependency_count,
        file_count=estimated_loc // 50 + dependency_count,
        first_commit_type=rng.choice(list(FirstCommitType)).value,
        has_readme=rng.random() > 0.3,
        has_tests=rng.random() > 0.7,
        has_documentation=rng.random() > 0.8,
        provenance=MetadataProvenance.ESTIMATED.value,
    )
