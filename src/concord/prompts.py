"""Prompt builders for every worker invocation in a debate.

All functions are pure: they take already-collected data and return the
text passed to the executor.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from concord.extraction import item_id
from concord.models import DebateMode, Item, Platform

CONTEXT_EXCERPT_CHARS = 5000

PLATFORM_RULES: dict[str, str] = {
    "flutter": """### Flutter
- Async misuse, rebuild loops, setState misuse, state desync
- Isolates, platform channels, flavor configs, build modes
- Missing `dispose()`, `mounted` checks, `BuildContext` used across async gaps
- Provider/Riverpod state management issues
- Widget tree depth and performance concerns
- Stream subscriptions that are never cancelled""",
    "android": """### Android
- Manifest issues, runtime permissions, FCM config
- ProGuard rules, ABI splits, Gradle config
- versionCode/versionName inconsistencies
- Activity/Fragment lifecycle violations
- Leaked context references
- Background work and WorkManager issues""",
    "ios": """### iOS
- plist errors, ATS config, keychain usage
- Notification service extension issues
- Provisioning/signing problems, thread/queue misuse
- Retain cycles and memory management
- UI work off the main thread
- Background fetch and push notification handling""",
    "backend": """### Backend/API
- DTO mismatches, null-handling gaps
- Wrong HTTP status codes, concurrency issues
- Pagination leaks, missing error handling
- SQL injection, authentication/authorization flaws
- Missing rate limiting or input validation
- Transaction handling and leaked database connections""",
    "general": """### General
- Null dereferences and undefined behaviour
- Leaked resources (file handles, connections, memory)
- Race conditions and thread-safety issues
- Error-handling gaps and silent failures
- Security vulnerabilities (injection, XSS, CSRF)
- Missing input validation and boundary checks""",
}

REVIEW_INSTRUCTIONS = """You are a strict code reviewer. Report only correctness problems, regressions, risky edge cases, security or privacy issues, and missing tests. Ignore style and formatting.

## Severity Levels

| Level | Meaning |
|-------|---------|
| **P0** | Crashes, data loss, security/privacy defects, build blockers, anything that must stop a release |
| **P1** | Probable bugs or regressions, wrong logic, missing error handling, untested risky code |
| **P2** | Small correctness issues or test gaps that are not release-blocking |

## Output Format

Respond with a single JSON object and nothing else:

{
  "findings": [
    {
      "severity": "P0",
      "title": "Short issue title",
      "file": "path/to/file:line_number",
      "detail": "One or two sentences describing the problem",
      "fix": "Concrete fix or test to add"
    }
  ],
  "residual_risks": ["Remaining uncertainty worth testing"],
  "open_questions": ["Clarifying question where intent is unclear"]
}

Rules:
- List P0 findings first, then P1, then P2
- Return an empty findings array when nothing is wrong
- Include the file path and line number whenever possible
- Keep fixes specific and actionable
- Comment only on the changes provided"""

PLAN_INSTRUCTIONS = """You are an implementation planner. Produce a structured, actionable implementation plan.

## Output Format

Respond with a single JSON object and nothing else:

{
  "steps": [
    {
      "phase": 1,
      "title": "Step title",
      "description": "What to do and why",
      "files": ["path/to/file"],
      "dependencies": []
    }
  ],
  "summary": "Overall approach in two or three sentences",
  "risks": ["Potential risks or challenges"],
  "open_questions": ["Questions that need clarification"]
}

Rules:
- Order steps so prerequisites come first
- Group related steps into numbered phases (1, 2, 3...)
- Name the files each step touches
- Reference dependencies by step title
- Do not use severity levels; this is planning, not reviewing"""


def platform_rules(platform: Platform | str) -> str:
    return PLATFORM_RULES.get(platform, PLATFORM_RULES["general"])


def is_code_context(context: str) -> bool:
    return "diff --git" in context or "@@" in context or "+++" in context


def _context_section(context: str, mode: DebateMode) -> str:
    if mode == "review" or is_code_context(context):
        return f"## Code Changes (Git Diff)\n```diff\n{context}\n```"
    return f"## Requirements\n{context}"


def _excerpt(context: str) -> str:
    if len(context) > CONTEXT_EXCERPT_CHARS:
        return context[:CONTEXT_EXCERPT_CHARS] + "\n... (truncated)"
    return context


def build_generation_prompt(question: str, context: str, platform: Platform, mode: DebateMode) -> str:
    instructions = PLAN_INSTRUCTIONS if mode == "plan" else REVIEW_INSTRUCTIONS
    request = "Planning Request" if mode == "plan" else "Review Request"
    return (
        f"{instructions}\n\n"
        f"## Platform-Specific Scrutiny\n{platform_rules(platform)}\n\n"
        f"## {request}\n{question}\n\n"
        f"{_context_section(context, mode)}\n\n"
        "Respond with JSON only."
    )


def build_critique_prompt(
    target: str,
    target_output: str,
    context: str,
    platform: Platform,
    mode: DebateMode,
) -> str:
    if mode == "plan":
        task = """Vote on every step of the plan. Respond with JSON:

{
  "step_reviews": [
    {
      "step_title": "Title from the plan",
      "phase": 1,
      "vote": "agree|disagree|modify",
      "reason": "Why",
      "suggestion": "Proposed change when the vote is modify"
    }
  ],
  "missing_steps": [
    {"phase": 1, "title": "Missing step", "description": "What to add", "files": [], "dependencies": []}
  ],
  "overall_assessment": "Clarity, completeness and feasibility in brief"
}"""
        intro = "You are reviewing another agent's implementation plan for clarity, completeness and feasibility."
        heading = "Plan"
    else:
        task = """Judge each finding. Quote the finding title in every point. Respond with JSON:

{
  "correct_points": ["Findings that are correct"],
  "incorrect_points": ["Findings that are wrong or misleading"],
  "missed_issues": [
    {"severity": "P0|P1|P2", "title": "Issue title", "file": "path:line", "detail": "Description", "fix": "Suggestion"}
  ],
  "overall_assessment": "Quality of the review in brief"
}"""
        intro = "You are reviewing another agent's code review. Identify incorrect assessments and missed issues."
        heading = "Review"

    return (
        f"{intro}\n\n"
        f"## Platform-Specific Scrutiny\n{platform_rules(platform)}\n\n"
        f"{_context_section(context, mode)}\n\n"
        f"## {target.upper()}'s {heading}\n{target_output}\n\n"
        f"## Your Task\n{task}\n\n"
        "Respond with JSON only."
    )


def build_compose_prompt(
    corpus: Sequence[dict[str, Any]],
    *,
    rounds: int,
    confidence: int,
    critique_summary: Sequence[str],
    context: str,
    mode: DebateMode,
) -> str:
    corpus_json = json.dumps(list(corpus), indent=2)
    if mode == "plan":
        schema = """{
  "proposed_steps": [
    {"phase": 1, "title": "Step title", "description": "What to do", "files": [], "dependencies": []}
  ],
  "eliminated_steps": [
    {"title": "Eliminated step title", "reason": "Why it was eliminated"}
  ],
  "summary": "Overall approach",
  "risks": ["Remaining risks"],
  "open_questions": ["Remaining questions"]
}"""
        kind = "steps"
    else:
        schema = """{
  "proposed_findings": [
    {"severity": "P0|P1|P2", "title": "Issue title", "file": "path:line", "detail": "Description", "fix": "Suggestion"}
  ],
  "eliminated_findings": [
    {"id": "id from the list above", "title": "Issue title", "reason": "Why it was eliminated"}
  ],
  "residual_risks": ["Remaining risks"],
  "open_questions": ["Remaining questions"]
}"""
        kind = "findings"

    critiques = "\n".join(critique_summary) or "(none)"
    return (
        f"You won a {rounds}-round multi-agent debate (final confidence {confidence}%). "
        f"Compose the final result by deciding which {kind} to keep and which to eliminate.\n\n"
        f"## All {kind.capitalize()} From All Rounds\n{corpus_json}\n\n"
        f"## Critiques\n{critiques}\n\n"
        f"{_context_section(_excerpt(context), mode)}\n\n"
        "## Your Task\n"
        f"1. Keep {kind} that are valid and broadly agreed on, even ones you did not propose\n"
        f"2. Merge duplicates and eliminate false positives or conflicting {kind}\n"
        "3. Give a reason for every elimination\n\n"
        f"Respond with JSON only:\n{schema}"
    )


def build_validation_prompt(items: Sequence[Item], *, composer: str, context: str, mode: DebateMode) -> str:
    kind = "step" if mode == "plan" else "finding"
    listing = json.dumps(
        [{"id": item_id(mode, i), **item.as_dict()} for i, item in enumerate(items)],
        indent=2,
    )
    return (
        f"You are validating the final result composed by {composer.upper()}.\n"
        f"Vote APPROVE for every valid {kind} and REJECT only for one that is clearly wrong.\n\n"
        f"## Proposed {kind.capitalize()}s\n{listing}\n\n"
        f"{_context_section(_excerpt(context), mode)}\n\n"
        "Respond with JSON only:\n"
        "{\n"
        '  "votes": [\n'
        f'    {{"id": "{item_id(mode, 0)}", "vote": "approve|reject", "reason": "Brief reason"}}\n'
        "  ]\n"
        "}"
    )
