"""Agreement and confidence across workers' structured results."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from concord.config.schema import ConfidenceWeights
from concord.judge import round_half_up
from concord.matching import dedupe, items_match, signature, title_prefix_match
from concord.models import (
    ConfidenceResult,
    CritiqueResult,
    DebateMode,
    Finding,
    Item,
    WorkerOutput,
)

_SEVERITY_ORDER = {"P0": 0, "P1": 1, "P2": 2}


@dataclass(slots=True)
class AgreementTally:
    agrees: list[str] = field(default_factory=list)
    disagrees: list[str] = field(default_factory=list)
    abstains: list[str] = field(default_factory=list)


def collect_unique(outputs: Sequence[WorkerOutput]) -> list[Item]:
    """De-duplicated union of every worker's items, first occurrence wins."""
    return dedupe([item for output in outputs for item in output.items])


def majority(worker_count: int) -> int:
    """Agreeing workers an item needs: more than half, at least one.

    Equal to ``ceil(n / 2)`` for odd ``n``; the two formulas differ only
    for even ``n``, where this needs one more (2 of 2, 3 of 4).  A lone
    producer therefore does not carry an item, so two workers with
    disjoint findings score zero agreement.
    """
    return max(1, worker_count // 2 + 1)


def count_agreements(
    item: Item,
    outputs: Sequence[WorkerOutput],
    critiques: Sequence[CritiqueResult],
) -> AgreementTally:
    """Classify every worker as agreeing, disagreeing or abstaining on *item*.

    Producing a matching item counts as agreement outright.  Otherwise the
    worker's critique votes decide; agreeing and disagreeing on the same
    item is an abstention.
    """
    tally = AgreementTally()
    for output in outputs:
        worker = output.worker_id
        if any(items_match(own, item) for own in output.items):
            tally.agrees.append(worker)
            continue

        voted_agree = False
        voted_disagree = False
        for critique in critiques:
            if critique.reviewer != worker:
                continue
            for vote in critique.votes:
                if not title_prefix_match(vote.item_title, item.title):
                    continue
                if vote.vote == "agree":
                    voted_agree = True
                elif vote.vote == "disagree":
                    voted_disagree = True

        if voted_agree and not voted_disagree:
            tally.agrees.append(worker)
        elif voted_disagree and not voted_agree:
            tally.disagrees.append(worker)
        else:
            tally.abstains.append(worker)
    return tally


def pairwise_agreement(items_a: Sequence[Item], items_b: Sequence[Item]) -> int:
    """Share of A's items matched in B, relative to the combined signatures."""
    if not items_a and not items_b:
        return 100
    matching = sum(1 for a in items_a if any(items_match(a, b) for b in items_b))
    signatures = {signature(i) for i in items_a} | {signature(i) for i in items_b}
    if not signatures:
        return 100
    return min(round_half_up(matching * 2 / len(signatures) * 100), 100)


def agreement_matrix(outputs: Sequence[WorkerOutput]) -> dict[str, dict[str, int]]:
    matrix: dict[str, dict[str, int]] = {}
    for a in outputs:
        row: dict[str, int] = {}
        for b in outputs:
            if a.worker_id == b.worker_id:
                row[b.worker_id] = 100
            else:
                row[b.worker_id] = pairwise_agreement(a.items, b.items)
        matrix[a.worker_id] = row
    return matrix


def mean_pairwise(matrix: dict[str, dict[str, int]]) -> int:
    workers = list(matrix)
    values = [
        matrix[workers[i]][workers[j]]
        for i in range(len(workers))
        for j in range(i + 1, len(workers))
    ]
    if not values:
        return 100
    return round_half_up(sum(values) / len(values))


def review_confidence(
    outputs: Sequence[WorkerOutput],
    critiques: Sequence[CritiqueResult],
    threshold: int,
    weights: ConfidenceWeights | None = None,
) -> ConfidenceResult:
    """Blend of majority-agreement ratio and mean pairwise agreement."""
    weights = weights or ConfidenceWeights()
    unique = collect_unique(outputs)
    needed = majority(len(outputs))
    agreed = sum(1 for item in unique if len(count_agreements(item, outputs, critiques).agrees) >= needed)
    ratio = round_half_up(agreed / len(unique) * 100) if unique else 100

    matrix = agreement_matrix(outputs)
    pairwise = mean_pairwise(matrix)
    score = round_half_up(ratio * weights.agreement + pairwise * weights.pairwise)
    score = max(0, min(100, score))
    return ConfidenceResult(
        score=score,
        converged=score >= threshold,
        agreement_matrix=matrix,
        agreed_items=agreed,
        total_items=len(unique),
    )


def plan_confidence(
    outputs: Sequence[WorkerOutput],
    critiques: Sequence[CritiqueResult],
    threshold: int,
) -> ConfidenceResult:
    """Mean per-step share of agreeing workers; no pairwise blend."""
    matrix = agreement_matrix(outputs)
    unique = collect_unique(outputs)
    needed = majority(len(outputs))
    if len(outputs) < 2 or not unique:
        return ConfidenceResult(
            score=100,
            converged=100 >= threshold,
            agreement_matrix=matrix,
            agreed_items=len(unique),
            total_items=len(unique),
        )

    ratios: list[float] = []
    agreed = 0
    for item in unique:
        agrees = len(count_agreements(item, outputs, critiques).agrees)
        ratios.append(agrees / len(outputs))
        if agrees >= needed:
            agreed += 1
    score = max(0, min(100, round_half_up(sum(ratios) / len(ratios) * 100)))
    return ConfidenceResult(
        score=score,
        converged=score >= threshold,
        agreement_matrix=matrix,
        agreed_items=agreed,
        total_items=len(unique),
    )


def compute_confidence(
    outputs: Sequence[WorkerOutput],
    critiques: Sequence[CritiqueResult],
    threshold: int,
    *,
    mode: DebateMode = "review",
    weights: ConfidenceWeights | None = None,
) -> ConfidenceResult:
    if mode == "plan":
        return plan_confidence(outputs, critiques, threshold)
    return review_confidence(outputs, critiques, threshold, weights)


def agreed_items(outputs: Sequence[WorkerOutput], critiques: Sequence[CritiqueResult]) -> list[Item]:
    """Unique items a majority agrees on; findings sorted P0 first."""
    needed = majority(len(outputs))
    agreed = [
        item
        for item in collect_unique(outputs)
        if len(count_agreements(item, outputs, critiques).agrees) >= needed
    ]
    agreed.sort(key=lambda i: _SEVERITY_ORDER.get(i.severity, 3) if isinstance(i, Finding) else 0)
    return agreed


def disputed_items(
    outputs: Sequence[WorkerOutput],
    critiques: Sequence[CritiqueResult],
) -> list[tuple[Item, AgreementTally]]:
    needed = majority(len(outputs))
    disputed = []
    for item in collect_unique(outputs):
        tally = count_agreements(item, outputs, critiques)
        if len(tally.agrees) < needed:
            disputed.append((item, tally))
    return disputed
