"""Deterministic scoring of worker output against the changed-file set.

Review mode::

    P0 findings      +15 each   (max 45)
    P1 findings      +8 each    (max 32)
    P2 findings      +3 each    (max 12)
    false positives  -10 each   (floor -30)
    concrete fixes   up to 25
    file accuracy    up to 10
    clarity          0-10

Plan mode: clarity 0-30, completeness 0-30, feasibility 0-20 and a
consensus share 0-20 supplied by the agreement engine.

Every function here is pure.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

from concord.matching import basename, file_path
from concord.models import (
    Finding,
    PlanScoreBreakdown,
    PlanStep,
    Score,
    ScoreBreakdown,
    StructuredResult,
)

SEVERITY_WEIGHTS: dict[str, tuple[int, int]] = {
    "P0": (15, 45),
    "P1": (8, 32),
    "P2": (3, 12),
}
FALSE_POSITIVE_PENALTY = -10
FALSE_POSITIVE_FLOOR = -30
CONCRETE_FIX_POINTS = 5
CONCRETE_FIX_MAX = 25
FILE_ACCURACY_POINTS = 2
FILE_ACCURACY_MAX = 10
CLARITY_MAX = 10

PLAN_CLARITY_MAX = 30
PLAN_COMPLETENESS_MAX = 30
PLAN_FEASIBILITY_MAX = 20
PLAN_CONSENSUS_MAX = 20
PLAN_BASE_MAX = PLAN_CLARITY_MAX + PLAN_COMPLETENESS_MAX + PLAN_FEASIBILITY_MAX

COMMON_FILE_PATTERNS = (
    "package.json",
    "tsconfig.json",
    "index",
    "main",
    "app",
    "config",
    "README",
    ".gitignore",
    ".env",
    "pubspec.yaml",
    "build.gradle",
    "Podfile",
)

_CALL_REF = re.compile(r"\w+\(")
_ATTR_REF = re.compile(r"\.\w+")
_DIGITS = re.compile(r"^\d+$")


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


# ---------------------------------------------------------------------------
# Review mode
# ---------------------------------------------------------------------------


def file_in_diff(path: str, diff_files: Sequence[str]) -> bool:
    name = basename(path)
    return any(
        diff_file == path
        or diff_file.endswith(path)
        or path.endswith(diff_file)
        or basename(diff_file) == name
        for diff_file in diff_files
    )


def is_common_file(path: str) -> bool:
    name = basename(path)
    return any(pattern in name for pattern in COMMON_FILE_PATTERNS)


def _findings(result: StructuredResult) -> list[Finding]:
    return [i for i in result.items if isinstance(i, Finding)]


def severity_score(findings: Sequence[Finding], severity: str) -> int:
    points, cap = SEVERITY_WEIGHTS[severity]
    count = sum(1 for f in findings if f.severity == severity)
    return min(count * points, cap)


def false_positive_score(findings: Sequence[Finding], diff_files: Sequence[str]) -> int:
    penalty = 0
    for finding in findings:
        if not finding.file:
            continue
        path = file_path(finding.file)
        if not file_in_diff(path, diff_files) and not is_common_file(path):
            penalty += FALSE_POSITIVE_PENALTY
    return max(penalty, FALSE_POSITIVE_FLOOR)


def concrete_fix_score(findings: Sequence[Finding]) -> int:
    count = 0.0
    for finding in findings:
        fix = finding.fix
        if len(fix) <= 10:
            continue
        if "`" in fix:
            count += 2
        elif _CALL_REF.search(fix) or _ATTR_REF.search(fix):
            count += 1
        else:
            count += 0.5
    return min(math.floor(count * CONCRETE_FIX_POINTS), CONCRETE_FIX_MAX)


def file_accuracy_score(findings: Sequence[Finding], diff_files: Sequence[str]) -> int:
    count = 0.0
    for finding in findings:
        if not finding.file:
            continue
        path, _, line_ref = finding.file.partition(":")
        if not file_in_diff(path, diff_files):
            continue
        count += 1
        if _DIGITS.match(line_ref.split(":")[0]) or finding.line is not None:
            count += 0.5
    return min(math.floor(count * FILE_ACCURACY_POINTS), FILE_ACCURACY_MAX)


def clarity_score(result: StructuredResult) -> int:
    findings = _findings(result)
    score = 0
    if findings:
        score += 3
    if result.residual_risks:
        score += 2
    if result.open_questions:
        score += 2
    if findings and all(f.severity and f.title and f.detail and f.fix for f in findings):
        score += 3
    return min(score, CLARITY_MAX)


def score_review(result: StructuredResult, diff_files: Sequence[str]) -> ScoreBreakdown:
    findings = _findings(result)
    return ScoreBreakdown(
        p0_findings=severity_score(findings, "P0"),
        p1_findings=severity_score(findings, "P1"),
        p2_findings=severity_score(findings, "P2"),
        false_positives=false_positive_score(findings, diff_files),
        concrete_fixes=concrete_fix_score(findings),
        file_accuracy=file_accuracy_score(findings, diff_files),
        clarity=clarity_score(result),
    )


# ---------------------------------------------------------------------------
# Plan mode
# ---------------------------------------------------------------------------


def _steps(result: StructuredResult) -> list[PlanStep]:
    return [i for i in result.items if isinstance(i, PlanStep)]


def plan_clarity_score(result: StructuredResult) -> int:
    steps = _steps(result)
    score = 0.0
    if steps:
        score += 5
    score += min(sum(1 for s in steps if len(s.title) >= 5) * 2, 8)
    score += min(sum(1 for s in steps if len(s.description) >= 20) * 2, 8)
    score += min(sum(1 for s in steps if s.files) * 1.5, 6)
    if len(result.summary) >= 20:
        score += 3
    return min(round_half_up(score), PLAN_CLARITY_MAX)


def plan_completeness_score(result: StructuredResult, diff_files: Sequence[str]) -> int:
    steps = _steps(result)
    score = 0
    if steps and diff_files:
        mentioned = {basename(f).lower() for s in steps for f in s.files}
        covered = sum(1 for d in diff_files if basename(d).lower() in mentioned)
        score += round_half_up(covered / len(diff_files) * 15)
    elif steps:
        score += 10

    phases = {s.phase for s in steps}
    if len(phases) >= 3:
        score += 5
    elif len(phases) >= 2:
        score += 3

    if result.residual_risks:
        score += min(len(result.residual_risks) * 2, 5)
    if result.open_questions:
        score += min(len(result.open_questions) * 2, 5)
    return min(score, PLAN_COMPLETENESS_MAX)


def plan_feasibility_score(result: StructuredResult) -> int:
    steps = _steps(result)
    score = 0
    if steps:
        score += 5
        if all(steps[i].phase >= steps[i - 1].phase for i in range(1, len(steps))):
            score += 5
        titles = {s.title.lower() for s in steps}
        if all(dep.lower() in titles for s in steps for dep in s.dependencies):
            score += 5

    count = len(steps)
    if 3 <= count <= 15:
        score += 5
    elif 2 <= count <= 20:
        score += 3
    elif count >= 1:
        score += 1
    return min(score, PLAN_FEASIBILITY_MAX)


def score_plan(result: StructuredResult, diff_files: Sequence[str], consensus: int = 0) -> PlanScoreBreakdown:
    return PlanScoreBreakdown(
        clarity=plan_clarity_score(result),
        completeness=plan_completeness_score(result, diff_files),
        feasibility=plan_feasibility_score(result),
        consensus=max(0, min(consensus, PLAN_CONSENSUS_MAX)),
    )


def distribute_consensus(base: PlanScoreBreakdown, confidence: int) -> PlanScoreBreakdown:
    """Give a worker its share of the round's consensus, weighted by plan quality."""
    share = round_half_up(base.total / PLAN_BASE_MAX * (confidence / 100) * PLAN_CONSENSUS_MAX)
    return PlanScoreBreakdown(
        clarity=base.clarity,
        completeness=base.completeness,
        feasibility=base.feasibility,
        consensus=max(0, min(share, PLAN_CONSENSUS_MAX)),
    )


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


def pick_winner(scores: dict[str, Score]) -> str:
    """Highest total wins; the first worker in insertion order wins ties."""
    winner = ""
    best = -math.inf
    for worker, score in scores.items():
        if score.total > best:
            best = score.total
            winner = worker
    return winner


def describe_scores(scores: dict[str, Score]) -> str:
    """One-line explanation of each worker's points and the winning margin."""
    ranked = sorted(scores.items(), key=lambda kv: kv[1].total, reverse=True)
    reasons: list[str] = []
    for worker, score in ranked:
        if isinstance(score, ScoreBreakdown):
            parts = []
            if score.p0_findings:
                parts.append(f"{score.p0_findings // 15} P0 findings")
            if score.p1_findings:
                parts.append(f"{score.p1_findings // 8} P1 findings")
            if score.p2_findings:
                parts.append(f"{score.p2_findings // 3} P2 findings")
            if score.false_positives < 0:
                parts.append(f"{abs(score.false_positives) // 10} false positives")
            reasons.append(f"{worker}: {score.total} points ({', '.join(parts) or 'no findings'})")
        else:
            parts = [f"{name}: {value}" for name, value in score.components().items() if value > 0]
            reasons.append(f"{worker}: {score.total}/100 ({', '.join(parts) or 'no steps'})")

    if len(ranked) > 1:
        margin = ranked[0][1].total - ranked[1][1].total
        if margin == 0:
            reasons.append("Result: Tie between agents")
        else:
            reasons.append(f"Winner: {ranked[0][0]} by {margin} points")
    return ". ".join(reasons)
