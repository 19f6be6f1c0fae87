"""Two-pass analysis orchestrator.

The full pipeline is a LangGraph state machine:

    load_history -> detect -> persist_patterns -> generate_coaching -> persist_insights

with two early exits. A user with too few projects stops after
``load_history`` without writing anything. A run with no significant findings
stops after ``persist_patterns`` (stale patterns and insights are retired, the
coaching call is skipped).

Patterns are committed before the coaching prompt is built, and the prompt is
built from the rows read back from the store. A failure in any node rolls back
the uncommitted phase and surfaces as ``AnalysisError``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import operator
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated, Any, TypedDict, TypeVar

from langgraph.graph import END, StateGraph
from sqlalchemy.exc import SQLAlchemyError

from .completion import (
    COACHING_OPTIONS,
    PATTERN_DETECTION_OPTIONS,
    POST_MORTEM_OPTIONS,
    CompletionOptions,
    CompletionService,
)
from .config import Settings, settings
from .detection import (
    PatternDetector,
    PatternFinding,
    calculate_learning_velocity,
    significant_findings,
)
from .errors import (
    AnalysisError,
    CompletionServiceError,
    GraveyardError,
    NotFoundError,
    PersistenceError,
)
from .locks import AnalysisLock, NullAnalysisLock
from .metadata import FallbackMetadataProvider, MetadataProvider
from .models import AIInsight, PatternInsight, Project, ProjectMetadata, UserPattern
from .parsing import (
    CoachingInsight,
    DetectedPattern,
    RejectedSection,
    decode_coaching_insights,
    decode_detected_patterns,
    parse_insight_sections,
    screen_coaching_insights,
)
from .prompts import (
    HistoryEntry,
    build_coaching_prompt,
    build_pattern_detection_prompt,
    build_post_mortem_prompt,
)
from .store import HistoryStore
from .sync import (
    RowFailure,
    record_learning_metric,
    replace_ai_insights,
    replace_insights,
    replace_patterns,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineState(StrEnum):
    IDLE = "idle"
    LOADING_HISTORY = "loading_history"
    DETECTING = "detecting"
    PERSISTING_PATTERNS = "persisting_patterns"
    GENERATING_COACHING = "generating_coaching"
    PERSISTING_INSIGHTS = "persisting_insights"
    DONE = "done"
    ERROR = "error"


class AnalysisOutcome(StrEnum):
    COMPLETED = "completed"
    NEEDS_MORE_DATA = "needs_more_data"
    NO_PATTERNS = "no_patterns"
    NEEDS_PATTERNS = "needs_patterns"
    ALL_FILTERED = "all_filtered"


@dataclass
class FullAnalysisResult:
    owner_id: str
    outcome: AnalysisOutcome
    findings: list[PatternFinding] = field(default_factory=list)
    patterns: list[UserPattern] = field(default_factory=list)
    insights: list[PatternInsight] = field(default_factory=list)
    projects_analyzed: int = 0
    rejected_insights: list[RejectedSection] = field(default_factory=list)
    failed_rows: list[RowFailure] = field(default_factory=list)
    trail: list[PipelineState] = field(default_factory=list)

    @property
    def needs_more_data(self) -> bool:
        return self.outcome is AnalysisOutcome.NEEDS_MORE_DATA


@dataclass
class CoachingResult:
    owner_id: str
    outcome: AnalysisOutcome
    insights: list[PatternInsight] = field(default_factory=list)
    patterns_used: int = 0
    projects_analyzed: int = 0
    rejected_insights: list[RejectedSection] = field(default_factory=list)
    failed_rows: list[RowFailure] = field(default_factory=list)


@dataclass
class PostMortemResult:
    project_id: str
    post_mortem_id: str
    insights: list[AIInsight] = field(default_factory=list)
    rejected_sections: list[RejectedSection] = field(default_factory=list)
    missing_sections: list[str] = field(default_factory=list)
    failed_rows: list[RowFailure] = field(default_factory=list)

    @property
    def all_filtered(self) -> bool:
        return not self.insights and bool(self.rejected_sections)


class AnalysisGraphState(TypedDict, total=False):
    owner_id: str
    outcome: AnalysisOutcome
    projects: list[Project]
    metadata: list[ProjectMetadata]
    findings: list[PatternFinding]
    patterns: list[UserPattern]
    coaching: list[CoachingInsight]
    rejected: list[RejectedSection]
    insights: list[PatternInsight]
    failed_rows: Annotated[list[RowFailure], operator.add]
    trail: Annotated[list[PipelineState], operator.add]


NodeFn = Callable[[Any, AnalysisGraphState], Awaitable[dict[str, Any]]]


def _phase(state: PipelineState) -> Callable[[NodeFn], NodeFn]:
    """Record ``state`` in the trail and turn node failures into AnalysisError."""

    def decorator(fn: NodeFn) -> NodeFn:
        @functools.wraps(fn)
        async def wrapper(self: Any, graph_state: AnalysisGraphState) -> dict[str, Any]:
            logger.debug("Analysis for %s: %s", graph_state["owner_id"], state)
            try:
                update = await fn(self, graph_state)
            except AnalysisError:
                raise
            except (GraveyardError, SQLAlchemyError) as exc:
                raise AnalysisError(
                    f"Analysis failed while {state.replace('_', ' ')}: {exc}", failed_state=state
                ) from exc
            update["trail"] = [state]
            return update

        return wrapper

    return decorator


def _finding_from_ai(pattern: DetectedPattern) -> PatternFinding:
    return PatternFinding(
        pattern_name=pattern.pattern_name,
        confidence=pattern.confidence,
        supporting_projects=[],
        metadata={"evidence": pattern.evidence, "description": pattern.description},
        evidence="; ".join(pattern.evidence) or pattern.description,
        source="ai",
    )


class AnalysisOrchestrator:
    """Runs the analysis operations for one history store.

    Collaborators are injected; none of them is created here except the
    defaults for the lock, detector and metadata provider.
    """

    def __init__(
        self,
        store: HistoryStore,
        completion: CompletionService,
        *,
        lock: AnalysisLock | None = None,
        metadata_provider: MetadataProvider | None = None,
        detector: PatternDetector | None = None,
        config: Settings | None = None,
    ) -> None:
        self._store = store
        self._completion = completion
        self._config = config or settings
        self._lock = lock or NullAnalysisLock()
        self._metadata = metadata_provider or FallbackMetadataProvider(store)
        self._detector = detector or PatternDetector(
            estimated_metadata_weight=self._config.estimated_metadata_weight
        )
        self._graph = self._build_graph()

    # -------------------------------------------------------------------------
    # Full two-pass analysis
    # -------------------------------------------------------------------------

    def _build_graph(self) -> Any:
        graph = StateGraph(AnalysisGraphState)
        graph.add_node("load_history", self._load_history)
        graph.add_node("detect", self._detect)
        graph.add_node("persist_patterns", self._persist_patterns)
        graph.add_node("generate_coaching", self._generate_coaching)
        graph.add_node("persist_insights", self._persist_insights)

        graph.set_entry_point("load_history")
        graph.add_conditional_edges(
            "load_history", self._route_after_load, {"detect": "detect", "end": END}
        )
        graph.add_edge("detect", "persist_patterns")
        graph.add_conditional_edges(
            "persist_patterns",
            self._route_after_patterns,
            {"generate_coaching": "generate_coaching", "end": END},
        )
        graph.add_edge("generate_coaching", "persist_insights")
        graph.add_edge("persist_insights", END)
        return graph.compile()

    async def run_full_analysis(self, owner_id: str) -> FullAnalysisResult:
        """Detect patterns for a user, persist them, then generate coaching insights."""
        async with self._lock.hold(owner_id):
            initial: AnalysisGraphState = {
                "owner_id": owner_id,
                "trail": [PipelineState.IDLE],
                "failed_rows": [],
            }
            try:
                final = await self._graph.ainvoke(initial)
            except AnalysisError as exc:
                logger.error("Analysis for %s failed in %s: %s", owner_id, exc.failed_state, exc)
                await self._store.rollback()
                raise

        result = FullAnalysisResult(
            owner_id=owner_id,
            outcome=final["outcome"],
            findings=final.get("findings", []),
            patterns=final.get("patterns", []),
            insights=final.get("insights", []),
            projects_analyzed=len(final.get("projects", [])),
            rejected_insights=final.get("rejected", []),
            failed_rows=final.get("failed_rows", []),
            trail=[*final["trail"], PipelineState.DONE],
        )
        logger.info(
            "Analysis for %s finished: %s (%d findings, %d insights)",
            owner_id,
            result.outcome,
            len(result.findings),
            len(result.insights),
        )
        return result

    @_phase(PipelineState.LOADING_HISTORY)
    async def _load_history(self, state: AnalysisGraphState) -> dict[str, Any]:
        projects = list(await self._store.list_projects_for_user(state["owner_id"]))
        if len(projects) < self._config.min_projects_for_analysis:
            return {"projects": projects, "outcome": AnalysisOutcome.NEEDS_MORE_DATA}
        metadata = await self._metadata.metadata_for(projects)
        return {"projects": projects, "metadata": metadata}

    @staticmethod
    def _route_after_load(state: AnalysisGraphState) -> str:
        return "end" if state.get("outcome") is AnalysisOutcome.NEEDS_MORE_DATA else "detect"

    @_phase(PipelineState.DETECTING)
    async def _detect(self, state: AnalysisGraphState) -> dict[str, Any]:
        projects, metadata = state["projects"], state.get("metadata", [])
        mode = self._config.detection_mode

        findings: list[PatternFinding] = []
        if mode in ("heuristic", "hybrid"):
            findings.extend(self._detector.analyze(projects, metadata))
        if mode in ("ai", "hybrid"):
            chronological = sorted(projects, key=lambda p: p.created_at)
            detected = await self._complete(
                build_pattern_detection_prompt(chronological),
                PATTERN_DETECTION_OPTIONS,
                decode_detected_patterns,
            )
            known = {f.pattern_name for f in findings}
            findings.extend(_finding_from_ai(p) for p in detected if p.pattern_name not in known)

        significant = significant_findings(findings, self._config.min_pattern_confidence)
        logger.info(
            "Detected %d findings for %s (%d significant)",
            len(findings),
            state["owner_id"],
            len(significant),
        )
        return {"findings": significant}

    @_phase(PipelineState.PERSISTING_PATTERNS)
    async def _persist_patterns(self, state: AnalysisGraphState) -> dict[str, Any]:
        owner_id, findings = state["owner_id"], state["findings"]
        projects = state["projects"]

        _, report = await replace_patterns(self._store, owner_id, findings)
        update: dict[str, Any] = {"failed_rows": report.failures}
        if not findings:
            # Insights about retired patterns must not outlive them.
            await self._store.deactivate_insights(owner_id)
            update["outcome"] = AnalysisOutcome.NO_PATTERNS

        await record_learning_metric(
            self._store,
            owner_id,
            calculate_learning_velocity(projects),
            projects_analyzed=len(projects),
        )
        await self._store.commit()

        update["patterns"] = list(await self._store.get_active_patterns(owner_id))
        return update

    @staticmethod
    def _route_after_patterns(state: AnalysisGraphState) -> str:
        return "end" if state.get("outcome") is AnalysisOutcome.NO_PATTERNS else "generate_coaching"

    @_phase(PipelineState.GENERATING_COACHING)
    async def _generate_coaching(self, state: AnalysisGraphState) -> dict[str, Any]:
        recent = state["projects"][: self._config.coaching_recent_projects]
        insights = await self._complete(
            build_coaching_prompt(state["patterns"], recent),
            COACHING_OPTIONS,
            decode_coaching_insights,
        )
        kept, rejected = screen_coaching_insights(insights)
        return {"coaching": kept, "rejected": rejected}

    @_phase(PipelineState.PERSISTING_INSIGHTS)
    async def _persist_insights(self, state: AnalysisGraphState) -> dict[str, Any]:
        saved, report = await replace_insights(
            self._store,
            state["owner_id"],
            state["coaching"],
            state["patterns"],
            projects_analyzed=len(state["projects"]),
        )
        await self._store.commit()
        outcome = AnalysisOutcome.COMPLETED if state["coaching"] else AnalysisOutcome.ALL_FILTERED
        return {"insights": saved, "failed_rows": report.failures, "outcome": outcome}

    # -------------------------------------------------------------------------
    # Coaching only
    # -------------------------------------------------------------------------

    async def run_coaching_only(self, owner_id: str) -> CoachingResult:
        """Regenerate coaching insights from the patterns already stored."""
        async with self._lock.hold(owner_id):
            patterns = list(await self._store.get_active_patterns(owner_id))
            if not patterns:
                return CoachingResult(owner_id=owner_id, outcome=AnalysisOutcome.NEEDS_PATTERNS)

            recent = list(
                await self._store.list_projects_for_user(
                    owner_id, limit=self._config.coaching_recent_projects
                )
            )
            try:
                insights = await self._complete(
                    build_coaching_prompt(patterns, recent),
                    COACHING_OPTIONS,
                    decode_coaching_insights,
                )
            except CompletionServiceError as exc:
                raise AnalysisError(
                    f"Coaching generation failed: {exc}",
                    failed_state=PipelineState.GENERATING_COACHING,
                ) from exc
            kept, rejected = screen_coaching_insights(insights)

            try:
                saved, report = await replace_insights(
                    self._store, owner_id, kept, patterns, projects_analyzed=len(recent)
                )
                await self._store.commit()
            except PersistenceError as exc:
                await self._store.rollback()
                raise AnalysisError(
                    f"Saving coaching insights failed: {exc}",
                    failed_state=PipelineState.PERSISTING_INSIGHTS,
                ) from exc

        return CoachingResult(
            owner_id=owner_id,
            outcome=AnalysisOutcome.COMPLETED if kept else AnalysisOutcome.ALL_FILTERED,
            insights=saved,
            patterns_used=len(patterns),
            projects_analyzed=len(recent),
            rejected_insights=rejected,
            failed_rows=report.failures,
        )

    # -------------------------------------------------------------------------
    # Single post-mortem
    # -------------------------------------------------------------------------

    async def analyze_post_mortem(
        self,
        project_id: str,
        *,
        post_mortem_id: str | None = None,
        owner_id: str | None = None,
    ) -> PostMortemResult:
        """Generate and store AI insights for one project's post-mortem."""
        project = await self._store.get_project(project_id)
        if project is None or (owner_id is not None and project.owner_id != owner_id):
            raise NotFoundError(f"Project not found: {project_id}")
        post_mortem = await self._store.get_post_mortem(project_id)
        if post_mortem is None or (post_mortem_id is not None and post_mortem.id != post_mortem_id):
            raise NotFoundError(f"Post-mortem not found for project: {project_id}")

        async with self._lock.hold(project.owner_id):
            all_projects = list(await self._store.list_projects_for_user(project.owner_id))
            history = [
                HistoryEntry(p, await self._store.get_post_mortem(p.id))
                for p in [p for p in all_projects if p.id != project.id][
                    : self._config.post_mortem_history_limit
                ]
            ]
            patterns = list(await self._store.get_active_patterns(project.owner_id))
            prompt = build_post_mortem_prompt(
                project,
                post_mortem,
                history=history,
                patterns=patterns[: self._config.prompt_pattern_limit],
                velocity=calculate_learning_velocity(all_projects) if all_projects else None,
                total_projects=max(1, len(all_projects)),
            )

            try:
                parsed = await self._complete(prompt, POST_MORTEM_OPTIONS, parse_insight_sections)
            except CompletionServiceError as exc:
                raise AnalysisError(
                    f"Post-mortem analysis failed: {exc}",
                    failed_state=PipelineState.GENERATING_COACHING,
                ) from exc

            try:
                saved, report = await replace_ai_insights(
                    self._store, project.id, post_mortem.id, parsed.sections
                )
                await self._store.commit()
            except PersistenceError as exc:
                await self._store.rollback()
                raise AnalysisError(
                    f"Saving post-mortem insights failed: {exc}",
                    failed_state=PipelineState.PERSISTING_INSIGHTS,
                ) from exc

        return PostMortemResult(
            project_id=project.id,
            post_mortem_id=post_mortem.id,
            insights=saved,
            rejected_sections=parsed.rejected,
            missing_sections=[str(t) for t in parsed.missing],
            failed_rows=report.failures,
        )

    # -------------------------------------------------------------------------
    # Completion calls
    # -------------------------------------------------------------------------

    async def _complete(
        self, prompt: str, options: CompletionOptions, decode: Callable[[str], T]
    ) -> T:
        """Call the completion service with a timeout and bounded retries.

        ``decode`` runs inside the retry loop, so a malformed response is
        retried like a failed call.
        """
        attempts = 1 + max(0, self._config.completion_retries)
        last_error = CompletionServiceError("Completion was not attempted")
        for attempt in range(1, attempts + 1):
            try:
                text = await asyncio.wait_for(
                    self._completion.complete(prompt, options),
                    timeout=self._config.completion_timeout,
                )
                return decode(text)
            except TimeoutError:
                last_error = CompletionServiceError(
                    f"Completion timed out after {self._config.completion_timeout}s"
                )
            except CompletionServiceError as exc:
                last_error = exc
            logger.warning("Completion attempt %d/%d failed: %s", attempt, attempts, last_error)

        raise last_error


def rejected_summary(rejected: Sequence[RejectedSection]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for r in rejected:
        counts[r.reason] = counts.get(r.reason, 0) + 1
    return counts
