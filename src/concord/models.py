"""Data model shared by the debate engine.

Every value produced during a run is immutable once built: rounds are
snapshots, scores are recomputed from scratch each round, and the final
result is assembled once the validation barrier completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal, Union

from concord.config.schema import RetryConfig

Severity = Literal["P0", "P1", "P2"]
Platform = Literal["flutter", "android", "ios", "backend", "general"]
DebateMode = Literal["review", "plan"]
CritiqueVoteKind = Literal["agree", "disagree", "abstain", "modify"]
ValidationVoteKind = Literal["approve", "reject"]

SEVERITIES: tuple[str, ...] = ("P0", "P1", "P2")
PLATFORMS: tuple[str, ...] = ("flutter", "android", "ios", "backend", "general")
MODES: tuple[str, ...] = ("review", "plan")


class Phase(StrEnum):
    """States of the round orchestrator."""

    INITIALIZING = "initializing"
    PARALLEL_GENERATION = "parallel_generation"
    DEGRADED = "degraded_single_agent"
    CROSS_CRITIQUE = "cross_critique"
    SCORING = "scoring"
    COMPOSING = "composing"
    VALIDATING = "validating"
    FINALIZING = "finalizing"


# ---------------------------------------------------------------------------
# Structured items
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Finding:
    """A severity-tagged review item."""

    severity: Severity
    title: str
    file: str | None = None
    line: int | None = None
    detail: str = ""
    fix: str = ""

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"severity": self.severity, "title": self.title}
        if self.file:
            data["file"] = self.file
        if self.line is not None:
            data["line"] = self.line
        data["detail"] = self.detail
        data["fix"] = self.fix
        return data


@dataclass(frozen=True, slots=True)
class PlanStep:
    """A phased implementation-plan item."""

    phase: int
    title: str
    description: str = ""
    files: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    consensus: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "title": self.title,
            "description": self.description,
            "files": list(self.files),
            "dependencies": list(self.dependencies),
            "consensus": self.consensus,
        }


Item = Union[Finding, PlanStep]


@dataclass(frozen=True, slots=True)
class StructuredResult:
    """Items plus residual-risk / open-question lists from one worker."""

    items: tuple[Item, ...] = ()
    residual_risks: tuple[str, ...] = ()
    open_questions: tuple[str, ...] = ()
    summary: str = ""
    raw_text: str = ""

    def has_content(self, min_raw_chars: int = 50) -> bool:
        """Non-degenerate check used to classify a worker as valid."""
        if self.items or self.residual_risks or self.open_questions:
            return True
        if len(self.summary) >= 20:
            return True
        return len(self.raw_text) >= min_raw_chars


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WorkerTask:
    """One invocation of an external worker."""

    worker_id: str
    prompt: str
    timeout_seconds: float
    retry: RetryConfig
    context: str = ""

    def full_prompt(self) -> str:
        if self.context:
            return f"Context:\n{self.context}\n\nQuestion:\n{self.prompt}"
        return self.prompt


@dataclass(frozen=True, slots=True)
class WorkerResult:
    worker_id: str
    raw_text: str
    exit_status: int | None
    duration_s: float
    failed: bool = False
    error: str = ""
    attempts: int = 1


@dataclass(frozen=True, slots=True)
class WorkerOutput:
    """A worker's generation for one round, extracted and classified."""

    worker_id: str
    raw_text: str
    structured: StructuredResult
    failed: bool = False
    error: str = ""

    @property
    def items(self) -> tuple[Item, ...]:
        return self.structured.items


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    """Review-mode score components; total is always their sum."""

    p0_findings: int = 0
    p1_findings: int = 0
    p2_findings: int = 0
    false_positives: int = 0
    concrete_fixes: int = 0
    file_accuracy: int = 0
    clarity: int = 0

    def components(self) -> dict[str, int]:
        return {
            "p0_findings": self.p0_findings,
            "p1_findings": self.p1_findings,
            "p2_findings": self.p2_findings,
            "false_positives": self.false_positives,
            "concrete_fixes": self.concrete_fixes,
            "file_accuracy": self.file_accuracy,
            "clarity": self.clarity,
        }

    @property
    def total(self) -> int:
        return sum(self.components().values())

    def as_dict(self) -> dict[str, int]:
        return {**self.components(), "total": self.total}


@dataclass(frozen=True, slots=True)
class PlanScoreBreakdown:
    """Plan-mode score components; total is always their sum."""

    clarity: int = 0
    completeness: int = 0
    feasibility: int = 0
    consensus: int = 0

    def components(self) -> dict[str, int]:
        return {
            "clarity": self.clarity,
            "completeness": self.completeness,
            "feasibility": self.feasibility,
            "consensus": self.consensus,
        }

    @property
    def total(self) -> int:
        return sum(self.components().values())

    def as_dict(self) -> dict[str, int]:
        return {**self.components(), "total": self.total}


Score = Union[ScoreBreakdown, PlanScoreBreakdown]


# ---------------------------------------------------------------------------
# Critique and rounds
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CritiqueVote:
    reviewer: str
    target: str
    item_title: str
    vote: CritiqueVoteKind
    phase: int | None = None
    reason: str | None = None
    suggestion: str | None = None


@dataclass(frozen=True, slots=True)
class CritiqueResult:
    """All votes one reviewer cast on one target's output."""

    reviewer: str
    target: str
    raw_text: str
    votes: tuple[CritiqueVote, ...] = ()
    duration_s: float = 0.0
    failed: bool = False


@dataclass(frozen=True, slots=True)
class ConfidenceResult:
    score: int
    converged: bool
    agreement_matrix: dict[str, dict[str, int]]
    agreed_items: int = 0
    total_items: int = 0


@dataclass(frozen=True, slots=True)
class RoundRecord:
    """Immutable snapshot of one completed round."""

    round: int
    outputs: tuple[WorkerOutput, ...]
    critiques: tuple[CritiqueResult, ...]
    scores: dict[str, Score]
    confidence: int
    agreement_matrix: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def critique_votes(self) -> list[CritiqueVote]:
        return [v for c in self.critiques for v in c.votes]


# ---------------------------------------------------------------------------
# Composition, validation, final result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ComposedResult:
    composer: str
    proposed: tuple[Item, ...] = ()
    eliminated: tuple[Item, ...] = ()
    elimination_reasons: dict[str, str] = field(default_factory=dict)
    residual_risks: tuple[str, ...] = ()
    open_questions: tuple[str, ...] = ()
    summary: str = ""
    raw_text: str = ""


@dataclass(frozen=True, slots=True)
class ValidationVote:
    item_id: str
    item_index: int
    voter: str
    vote: ValidationVoteKind
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ValidationResult:
    votes: tuple[ValidationVote, ...] = ()
    approved: tuple[Item, ...] = ()
    rejected: tuple[Item, ...] = ()
    ties: tuple[Item, ...] = ()


@dataclass(frozen=True, slots=True)
class DebateResult:
    """Final result of a run, degraded or full."""

    mode: DebateMode
    winner: str
    rounds: tuple[RoundRecord, ...]
    composed: ComposedResult
    validation: ValidationResult
    final_items: tuple[Item, ...]
    residual_risks: tuple[str, ...]
    open_questions: tuple[str, ...]
    confidence: int
    duration_s: float
    participants: tuple[str, ...] = ()
    summary: str = ""
    degraded: bool = False
    report_path: str = ""


@dataclass(frozen=True, slots=True)
class DiffResult:
    body: str
    file_count: int
    files: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DebateRequest:
    """Validated parameters for one run."""

    question: str
    agents: tuple[str, ...]
    mode: DebateMode = "review"
    platform: Platform = "general"
    max_rounds: int = 3
    confidence_threshold: int = 80
    path: str | None = None
