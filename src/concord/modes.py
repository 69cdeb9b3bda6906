"""Review and plan behaviour plugged into the round orchestrator.

The orchestrator's state machine is identical for both modes; everything
that differs (parsing, validity, scoring, confidence, input handling and
final residual risks) lives on a ``DebateModeStrategy``.
"""

from __future__ import annotations

from collections.abc import Sequence

from concord.agreement import agreed_items, compute_confidence
from concord.config.schema import ConfidenceWeights
from concord.errors import ConfigurationError, PreconditionError
from concord.extraction import parse_plan, parse_review
from concord.judge import distribute_consensus, score_plan, score_review
from concord.models import (
    ComposedResult,
    ConfidenceResult,
    CritiqueResult,
    DebateMode,
    DiffResult,
    RoundRecord,
    Score,
    StructuredResult,
    ValidationResult,
    WorkerOutput,
)

SINGLE_AGENT_RISK = "Single-agent mode: findings not cross-validated by other agents"


class DebateModeStrategy:
    name: DebateMode = "review"
    min_workers: int = 2
    degradable: bool = False
    item_label: str = "items"

    def parse(self, raw_text: str) -> StructuredResult:
        raise NotImplementedError

    def is_valid(self, output: WorkerOutput, min_chars: int = 50) -> bool:
        """Whether a worker's generation counts toward the round."""
        if output.failed or output.raw_text.startswith("Error:"):
            return False
        return output.structured.has_content(min_chars)

    def context_for(self, question: str, diff: DiffResult | None) -> str:
        raise NotImplementedError

    def confidence(
        self,
        outputs: Sequence[WorkerOutput],
        critiques: Sequence[CritiqueResult],
        threshold: int,
        weights: ConfidenceWeights,
    ) -> ConfidenceResult:
        return compute_confidence(outputs, critiques, threshold, mode=self.name, weights=weights)

    def score(
        self,
        outputs: Sequence[WorkerOutput],
        diff_files: Sequence[str],
        confidence: int,
    ) -> dict[str, Score]:
        raise NotImplementedError

    def final_residual_risks(
        self,
        composed: ComposedResult,
        validation: ValidationResult,
        last_round: RoundRecord,
        cap: int,
    ) -> tuple[str, ...]:
        return composed.residual_risks


class ReviewMode(DebateModeStrategy):
    name: DebateMode = "review"
    min_workers = 1
    degradable = True
    item_label = "findings"

    def parse(self, raw_text: str) -> StructuredResult:
        return parse_review(raw_text)

    def context_for(self, question: str, diff: DiffResult | None) -> str:
        if diff is None or not diff.body or diff.file_count == 0:
            raise PreconditionError(
                "No uncommitted changes found. Make changes before running a review debate.",
                phase="initializing",
            )
        return diff.body

    def score(
        self,
        outputs: Sequence[WorkerOutput],
        diff_files: Sequence[str],
        confidence: int,
    ) -> dict[str, Score]:
        return {o.worker_id: score_review(o.structured, diff_files) for o in outputs}

    def final_residual_risks(
        self,
        composed: ComposedResult,
        validation: ValidationResult,
        last_round: RoundRecord,
        cap: int,
    ) -> tuple[str, ...]:
        approved_titles = {item.title for item in validation.approved}
        disputed = [
            f"Disputed: {item.title}"
            for item in agreed_items(last_round.outputs, last_round.critiques)
            if item.title not in approved_titles
        ]
        return tuple([*composed.residual_risks, *disputed][:cap])


class PlanMode(DebateModeStrategy):
    name: DebateMode = "plan"
    min_workers = 2
    degradable = False
    item_label = "steps"

    def parse(self, raw_text: str) -> StructuredResult:
        return parse_plan(raw_text)

    def context_for(self, question: str, diff: DiffResult | None) -> str:
        if diff is not None and diff.body and diff.file_count > 0:
            return diff.body
        return f"[No code context - plan based on requirements]\n\nRequirements:\n{question}"

    def score(
        self,
        outputs: Sequence[WorkerOutput],
        diff_files: Sequence[str],
        confidence: int,
    ) -> dict[str, Score]:
        return {
            o.worker_id: distribute_consensus(score_plan(o.structured, diff_files), confidence)
            for o in outputs
        }


STRATEGIES: dict[str, DebateModeStrategy] = {
    "review": ReviewMode(),
    "plan": PlanMode(),
}


def get_mode(name: str) -> DebateModeStrategy:
    try:
        return STRATEGIES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown mode {name!r}; expected one of: {', '.join(STRATEGIES)}",
        ) from None
