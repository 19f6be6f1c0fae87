"""Completion response parsing and the insight quality gate.

Free-text post-mortem responses are split on fixed section markers and every
section is screened before it may be stored. JSON-shaped responses (pattern
detection, coaching) are decoded strictly: anything that does not match the
expected structure raises ``MalformedResponseError``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import MalformedResponseError
from .models import AIInsightType, InsightType

logger = logging.getLogger(__name__)

SECTION_MARKERS: tuple[tuple[AIInsightType, str], ...] = (
    (AIInsightType.PATTERN_RECOGNITION, "**PATTERN_RECOGNITION:**"),
    (AIInsightType.COACHING, "**COACHING:**"),
    (AIInsightType.QUESTIONS, "**QUESTIONS:**"),
    (AIInsightType.STRATEGIES, "**STRATEGIES:**"),
)

GENERIC_PHRASES: tuple[str, ...] = (
    "consider breaking down",
    "start small and iterate",
    "focus on the mvp",
    "developers often",
    "common pattern",
    "try to be more specific",
    "consider your target audience",
    "make sure to validate",
    "this is a common issue",
    "many projects fail because",
)

MIN_CONTENT_LENGTH = 20
MIN_SECTION_SCORE = 0.3

_QUOTE_CHARS = ('"', "“", "”")
_USER_REFERENCE_RE = re.compile(r"\byou (said|mentioned|wrote|described)\b", re.IGNORECASE)
_CAUSAL_RE = re.compile(r"\b(because|since|given that)\b", re.IGNORECASE)
_HEDGE_RE = re.compile(r"\bconsider|might want to", re.IGNORECASE)
_YOU_RE = re.compile(r"\byou", re.IGNORECASE)
_SPECIFICALLY_RE = re.compile(r"\bspecifically\b", re.IGNORECASE)
_OVERGENERAL_RE = re.compile(r"\b(many|most)\b", re.IGNORECASE)
_BLANK_LINES_RE = re.compile(r"\n\s*\n")
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


@dataclass
class ParsedSection:
    section_type: AIInsightType
    content: str
    confidence: float


@dataclass
class RejectedSection:
    section_type: str
    content: str
    reason: str


@dataclass
class ParseResult:
    """Outcome of splitting and screening one free-text response.

    ``missing`` lists section types whose marker never appeared; that is a
    normal result, not an error.
    """

    sections: list[ParsedSection] = field(default_factory=list)
    rejected: list[RejectedSection] = field(default_factory=list)
    missing: list[AIInsightType] = field(default_factory=list)


# =============================================================================
# Section extraction
# =============================================================================


def _clean_section(raw: str) -> str:
    content = _BLANK_LINES_RE.sub("\n", raw.strip())
    content = content.strip()
    if content.startswith("["):
        content = content[1:]
    if content.endswith("]"):
        content = content[:-1]
    return content.strip()


def extract_sections(
    text: str, markers: Sequence[tuple[AIInsightType, str]] = SECTION_MARKERS
) -> tuple[dict[AIInsightType, str], list[AIInsightType]]:
    """Split ``text`` on section markers.

    Each section runs from just after the first occurrence of its marker to
    the nearest following occurrence of any marker, or to the end of text.
    Returns the cleaned section bodies keyed by type (in marker order) and the
    types whose marker was absent.
    """
    found: dict[AIInsightType, str] = {}
    missing: list[AIInsightType] = []
    for section_type, marker in markers:
        start = text.find(marker)
        if start == -1:
            missing.append(section_type)
            continue
        content_start = start + len(marker)
        end = len(text)
        for _, other in markers:
            idx = text.find(other, content_start)
            if idx != -1 and idx < end:
                end = idx
        found[section_type] = _clean_section(text[content_start:end])
    return found, missing


# =============================================================================
# Quality gate
# =============================================================================


def has_quote(content: str) -> bool:
    return any(ch in content for ch in _QUOTE_CHARS)


def references_user(content: str) -> bool:
    return bool(_USER_REFERENCE_RE.search(content))


def is_generic_insight(content: str) -> bool:
    """True when content is boilerplate advice or hedging with nothing to anchor it."""
    lower = content.lower()
    if any(phrase in lower for phrase in GENERIC_PHRASES):
        return True
    too_vague = bool(_HEDGE_RE.search(content)) and not references_user(content)
    return too_vague and not has_quote(content)


def score_insight(content: str) -> float:
    """Heuristic specificity score in [0.1, 1.0]."""
    mentions_you = bool(_YOU_RE.search(content))
    lower = content.lower()

    score = 0.4
    if has_quote(content):
        score += 0.3
    if references_user(content):
        score += 0.2
    if len(content) > 150:
        score += 0.1
    if _SPECIFICALLY_RE.search(content):
        score += 0.1
    if _CAUSAL_RE.search(content):
        score += 0.1

    if "consider" in lower and not mentions_you:
        score -= 0.2
    if "developers" in lower and not mentions_you:
        score -= 0.15
    if _OVERGENERAL_RE.search(content):
        score -= 0.1

    return max(0.1, min(1.0, round(score, 4)))


def gate_reason(content: str) -> str | None:
    """Why ``content`` fails the length/generic checks, or None if it passes."""
    if len(content.strip()) <= MIN_CONTENT_LENGTH:
        return "too_short"
    if is_generic_insight(content):
        return "generic"
    return None


def parse_insight_sections(
    text: str, markers: Sequence[tuple[AIInsightType, str]] = SECTION_MARKERS
) -> ParseResult:
    """Extract, screen and score the sections of a post-mortem response."""
    found, missing = extract_sections(text, markers)
    result = ParseResult(missing=missing)
    for section_type, content in found.items():
        reason = gate_reason(content)
        confidence = score_insight(content)
        if reason is None and confidence <= MIN_SECTION_SCORE:
            reason = "low_score"
        if reason is not None:
            logger.info("Rejected %s section (%s): %s", section_type, reason, content[:100])
            result.rejected.append(RejectedSection(section_type, content, reason))
            continue
        result.sections.append(ParsedSection(section_type, content, confidence))
    return result


# =============================================================================
# JSON-shaped responses
# =============================================================================


class DetectedPattern(BaseModel):
    pattern_name: str = Field(..., min_length=1)
    confidence: float
    evidence: list[str] = Field(default_factory=list)
    description: str = ""

    @field_validator("pattern_name")
    @classmethod
    def _snake_case(cls, v: str) -> str:
        return re.sub(r"[^a-z0-9]+", "_", v.strip().lower()).strip("_")

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return max(0.0, min(1.0, v))


class PatternDetectionPayload(BaseModel):
    patterns: list[DetectedPattern]


class CoachingInsight(BaseModel):
    insight_type: InsightType
    insight_text: str = Field(..., min_length=1)
    confidence: float
    related_patterns: list[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return max(0.0, min(1.0, v))


class CoachingPayload(BaseModel):
    insights: list[CoachingInsight]


def extract_json_object(output: str) -> Any:
    """Decode the JSON object in a completion, tolerating a ```json fence."""
    candidates = [output.strip()]
    match = _JSON_FENCE_RE.search(output)
    if match:
        candidates.insert(0, match.group(1))
    start, end = output.find("{"), output.rfind("}")
    if start != -1 and end > start:
        candidates.append(output[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise MalformedResponseError("Completion did not contain a JSON object", raw_output=output)


def decode_detected_patterns(output: str) -> list[DetectedPattern]:
    """Decode a pattern-detection response; duplicate names keep the first entry."""
    try:
        payload = PatternDetectionPayload.model_validate(extract_json_object(output))
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Pattern detection response has the wrong shape: {exc}", raw_output=output
        ) from exc

    seen: set[str] = set()
    patterns: list[DetectedPattern] = []
    for p in payload.patterns:
        if not p.pattern_name or p.pattern_name in seen:
            continue
        seen.add(p.pattern_name)
        patterns.append(p)
    return patterns


def decode_coaching_insights(output: str) -> list[CoachingInsight]:
    try:
        payload = CoachingPayload.model_validate(extract_json_object(output))
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Coaching response has the wrong shape: {exc}", raw_output=output
        ) from exc
    return payload.insights


def screen_coaching_insights(
    insights: Sequence[CoachingInsight],
) -> tuple[list[CoachingInsight], list[RejectedSection]]:
    """Apply the length and genericness checks to decoded coaching insights.

    Survivors keep the confidence the model assigned. Exact duplicate texts
    are dropped.
    """
    kept: list[CoachingInsight] = []
    rejected: list[RejectedSection] = []
    seen: set[str] = set()
    for insight in insights:
        text = insight.insight_text.strip()
        reason = gate_reason(text)
        if reason is None and text.lower() in seen:
            reason = "duplicate"
        if reason is not None:
            logger.info("Rejected %s insight (%s): %s", insight.insight_type, reason, text[:100])
            rejected.append(RejectedSection(str(insight.insight_type), text, reason))
            continue
        seen.add(text.lower())
        kept.append(insight.model_copy(update={"insight_text": text}))
    return kept, rejected
