"""Prompt construction for the completion service.

Three prompt shapes exist:

- the post-mortem prompt, answered in free text with four marked sections
  (see ``parsing.SECTION_MARKERS``);
- the pattern-detection prompt, answered with one JSON ``patterns`` object;
- the coaching prompt, answered with one JSON ``insights`` object.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from .detection import LearningVelocity, describe_pattern, lifespan_days
from .models import PostMortem, Project, UserPattern
from .parsing import SECTION_MARKERS


class ExperienceTier(StrEnum):
    NEWCOMER = "newcomer"
    EARLY = "early"
    EXPERIENCED = "experienced"
    VETERAN = "veteran"


@dataclass
class HistoryEntry:
    """Another project of the same user, shown to the model as context."""

    project: Project
    post_mortem: PostMortem | None = None


def experience_tier(total_projects: int) -> ExperienceTier:
    """Tier for a user whose graveyard holds ``total_projects`` (current one included)."""
    if total_projects <= 1:
        return ExperienceTier.NEWCOMER
    if total_projects < 3:
        return ExperienceTier.EARLY
    if total_projects < 10:
        return ExperienceTier.EXPERIENCED
    return ExperienceTier.VETERAN


def _humanize(tag: str | None) -> str:
    return (tag or "other").replace("_", " ")


def _display_lifespan(project: Project) -> int:
    return max(1, round(lifespan_days(project)))


def _format_pattern_context(patterns: Sequence[UserPattern]) -> str:
    if not patterns:
        return ""
    blocks: list[str] = []
    for p in patterns:
        evidence = json.dumps(p.pattern_value.get("metadata", {}), default=str)
        evidence = evidence.replace("{", "").replace("}", "")[:100]
        blocks.append(
            f"- {_humanize(p.pattern_name).upper()} "
            f"({round(p.confidence_score * 100)}% confidence, detected {p.frequency} times)\n"
            f"  Pattern: {describe_pattern(p.pattern_name)}\n"
            f"  Evidence: {evidence}..."
        )
    return "**YOUR DETECTED PATTERNS:**\n" + "\n\n".join(blocks)


def _format_velocity(velocity: LearningVelocity | None) -> str:
    if velocity is None:
        return ""
    return (
        "**YOUR LEARNING VELOCITY:**\n"
        f"- Project Lifespan Trend: {velocity.avg_project_lifespan_trend}\n"
        f"- Scope Management Score: {velocity.scope_management_score}/100\n"
        f"- Technology Consistency: {velocity.technology_consistency_score}/100\n"
        f"- Completion Rate Trend: {velocity.completion_rate_trend}"
    )


def _format_history(history: Sequence[HistoryEntry]) -> str:
    if not history:
        return ""
    blocks: list[str] = []
    for entry in history:
        p, pm = entry.project, entry.post_mortem
        lines = [f'- "{p.name}" (abandoned due to: {_humanize(p.death_cause)})']
        if pm is not None and pm.what_went_wrong:
            lines.append(f'  What went wrong: "{pm.what_went_wrong}"')
        if pm is not None and pm.lessons_learned:
            lines.append(f'  Lessons learned: "{pm.lessons_learned}"')
        if p.tech_stack:
            lines.append(f"  Tech: {', '.join(p.tech_stack)}")
        blocks.append("\n".join(lines))
    return "**PREVIOUS PROJECT CONTEXT:**\n" + "\n\n".join(blocks)


def _format_projects(projects: Sequence[Project], *, with_dates: bool) -> str:
    blocks: list[str] = []
    for i, p in enumerate(projects, start=1):
        lines = [f'Project {i}: "{p.name}"']
        if with_dates:
            lines.append(f"- Created: {p.created_at:%Y-%m-%d}")
            lines.append(f"- Died: {p.death_date:%Y-%m-%d}")
        lines.extend(
            [
                f"- Lifespan: {_display_lifespan(p)} days",
                f"- Death Cause: {_humanize(p.death_cause)}",
                f"- Tech Stack: {', '.join(p.tech_stack or [])}",
                f'- Epitaph: "{p.epitaph or ""}"',
            ]
        )
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def build_post_mortem_prompt(
    project: Project,
    post_mortem: PostMortem,
    *,
    history: Sequence[HistoryEntry] = (),
    patterns: Sequence[UserPattern] = (),
    velocity: LearningVelocity | None = None,
    total_projects: int = 1,
) -> str:
    """Build the sectioned coaching prompt for one post-mortem.

    ``total_projects`` is the size of the user's graveyard including this
    project; it drives the experience tier.
    """
    tier = experience_tier(total_projects)
    if tier is ExperienceTier.NEWCOMER:
        stance = "This is their FIRST project burial - be encouraging but insightful"
        task = (
            "Since this is their first buried project, focus on encouraging initial "
            "pattern recognition and building good habits."
        )
    else:
        stance = (
            "They are still learning patterns - focus on emerging trends"
            if total_projects < 5
            else "They are experienced - provide advanced insights about breaking established patterns"
        )
        if patterns:
            names = ", ".join(p.pattern_name for p in patterns)
            task = (
                f"Given their established patterns ({names}), provide insights that help "
                "them break or leverage these patterns."
            )
        else:
            task = (
                f"With {total_projects - 1} other projects buried, look for emerging "
                "patterns in their behavior."
            )

    pattern_recognition, coaching, questions, strategies = (m for _, m in SECTION_MARKERS)
    context = "\n\n".join(
        block
        for block in (
            _format_pattern_context(patterns),
            _format_velocity(velocity),
            _format_history(history),
        )
        if block
    )

    return f"""You are an expert developer coach who specializes in helping developers learn from project failures. You have deep knowledge of this specific developer's history and patterns.

CRITICAL REQUIREMENTS FOR {tier.upper()} DEVELOPER:
1. You MUST reference their specific patterns and historical data
2. {stance}
3. Quote their exact words AND connect to their established patterns
4. Provide insights that acknowledge their growth trajectory

**PROJECT DETAILS:**
Name: "{project.name}"
Description: {project.description or "No description provided"}
Death Cause: {_humanize(project.death_cause)}
Tech Stack: {", ".join(project.tech_stack or []) or "Not specified"}
Project #{total_projects} in their graveyard

**DEVELOPER'S POST-MORTEM ANALYSIS:**

Problem Statement: "{post_mortem.what_problem or "Not provided"}"

What Went Wrong: "{post_mortem.what_went_wrong or "Not provided"}"

Lessons Learned: "{post_mortem.lessons_learned or "Not provided"}"

{context}

**ANALYSIS TASK:**
{task}

Provide exactly 3-4 insights that are:
- SPECIFIC to their detected patterns and historical data
- Connect their current project to their established behavioral trends
- REFERENCE their exact words AND their pattern history
- Acknowledge their {tier} level

Use exactly these section headers, each on its own line, and no others:

{pattern_recognition}
Historical Pattern: [Reference their specific detected pattern]
Current Evidence: "quote their exact phrase from this project"
Pattern Evolution: [How this project fits their established pattern or breaks from it]

{coaching}
Your Pattern: [Name their relevant pattern with frequency: "serial_starter (3 times)"]
What You Said: "quote their exact words"
Pattern-Breaking Action: [Specific advice based on their pattern history]
Implementation: [Concrete steps that address their specific behavioral tendency]

{questions}
Pattern Context: [Their pattern + this project's evidence]
Your Statement: "quote exact phrase"
Pattern-Aware Question: [Question that helps them see the deeper pattern]
Growth Opportunity: [How answering this could break their cycle]

{strategies}
Based On Your History: [Reference their pattern + quote]
Anti-Pattern Strategy: [Strategy specifically designed to counter their tendency]
Action Plan:
1. [Step that directly addresses their pattern]
2. [Step that builds new positive pattern]
3. [Step that tracks pattern-breaking success]

QUALITY CHECK: Every insight must quote the developer's own words in double quotes and reference their historical patterns. Connect this project to their larger behavioral story.
"""


def build_pattern_detection_prompt(projects: Sequence[Project]) -> str:
    """Phase-one prompt: name behavioral patterns from raw history, as JSON."""
    return f"""You are an expert behavioral analyst specializing in developer project patterns. Your ONLY task is to identify genuine behavioral patterns from project data.

**USER'S PROJECT HISTORY:**
{_format_projects(projects, with_dates=True)}

**TASK: PATTERN DETECTION ONLY**

Identify 2-4 genuine behavioral patterns. Look for:
- Technology evolution and consistency patterns
- Project timing and lifecycle patterns
- Abandonment trigger patterns
- Learning progression patterns

**QUALITY REQUIREMENTS:**
- Only identify patterns with clear evidence from multiple projects
- Be specific, not generic
- Confidence must reflect actual evidence strength
- AVOID GENERATING SIMILAR OR OVERLAPPING PATTERNS
- Each pattern must address a DISTINCT behavioral aspect
- Combine similar patterns into one stronger pattern rather than creating duplicates

**OUTPUT FORMAT (a single valid JSON object, nothing else):**
{{
  "patterns": [
    {{
      "pattern_name": "descriptive_snake_case_name",
      "confidence": 0.85,
      "evidence": [
        "Specific evidence from Project X showing...",
        "Pattern confirmed by Project Y where..."
      ],
      "description": "Clear description of the behavior"
    }}
  ]
}}

Focus ONLY on pattern identification. No coaching advice or recommendations.
"""


def _format_detected_patterns(patterns: Sequence[UserPattern]) -> str:
    blocks: list[str] = []
    for p in patterns:
        evidence = p.pattern_value.get("evidence")
        if isinstance(evidence, list):
            evidence_text = "; ".join(str(e) for e in evidence)
        else:
            evidence_text = str(evidence or describe_pattern(p.pattern_name))
        blocks.append(
            f'Pattern: "{p.pattern_name}" ({round(p.confidence_score * 100)}% confidence)\n'
            f"Evidence: {evidence_text}\n"
            f"Frequency: Detected {p.frequency} time(s)"
        )
    return "\n\n".join(blocks)


def build_coaching_prompt(
    patterns: Sequence[UserPattern], recent_projects: Sequence[Project]
) -> str:
    """Phase-two prompt: coaching insights from persisted patterns, as JSON."""
    return f"""You are an expert software engineering coach. Your ONLY task is to generate personalized coaching insights based on detected behavioral patterns.

**DETECTED PATTERNS:**
{_format_detected_patterns(patterns)}

**RECENT PROJECT CONTEXT (last {len(recent_projects)} projects):**
{_format_projects(recent_projects, with_dates=False)}

**TASK: COACHING INSIGHTS ONLY**

Generate 3-4 DIVERSE personalized coaching insights that:
- Reference specific detected patterns and evidence
- Provide actionable advice based on their behavior
- Are coaching-oriented (supportive but direct)
- Connect patterns to specific project outcomes
- AVOID repetitive advice or near-duplicate insights
- Address DIFFERENT aspects of their development journey

**INSIGHT TYPES:**
- warning: Pattern that could lead to future failures
- recommendation: Specific action to take (vary the domain: technical, process, mindset)
- observation: Positive pattern recognition or neutral behavioral insight
- prediction: Likely future outcome based on patterns

**OUTPUT FORMAT (a single valid JSON object, nothing else):**
{{
  "insights": [
    {{
      "insight_type": "recommendation",
      "insight_text": "Based on your [specific pattern], I recommend [specific action] because [specific evidence from projects].",
      "confidence": 0.85,
      "related_patterns": ["pattern_name_1", "pattern_name_2"]
    }}
  ]
}}

Use the exact pattern names listed above in related_patterns. Focus ONLY on coaching insights. No pattern detection.
"""
