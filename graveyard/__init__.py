"""Behavioral pattern detection and coaching for abandoned side projects."""

__version__ = "0.1.0"

from .detection import PatternDetector, PatternFinding, calculate_learning_velocity
from .errors import (
    AnalysisError,
    AnalysisInProgressError,
    CompletionServiceError,
    GraveyardError,
    MalformedResponseError,
    NotFoundError,
    PersistenceError,
)
from .orchestrate import (
    AnalysisOrchestrator,
    AnalysisOutcome,
    CoachingResult,
    FullAnalysisResult,
    PipelineState,
    PostMortemResult,
)
from .parsing import parse_insight_sections

__all__ = [
    "__version__",
    "AnalysisError",
    "AnalysisInProgressError",
    "AnalysisOrchestrator",
    "AnalysisOutcome",
    "CoachingResult",
    "CompletionServiceError",
    "FullAnalysisResult",
    "GraveyardError",
    "MalformedResponseError",
    "NotFoundError",
    "PatternDetector",
    "PatternFinding",
    "PersistenceError",
    "PipelineState",
    "PostMortemResult",
    "calculate_learning_velocity",
    "parse_insight_sections",
]
