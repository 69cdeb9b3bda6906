"""Winner composition and peer validation.

The winner merges the whole cross-round corpus into one draft; every other
participant then votes approve/reject on each proposed item.  Validation
fails open: a validator whose reply cannot be read, or whose process
fails, approves everything with the reason recorded.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from concord.errors import DebateError, InsufficientParticipantsError
from concord.events import EventBus, PhaseEvent
from concord.executor import ProcessExecutor
from concord.extraction import item_id, parse_composition, parse_validation_votes
from concord.matching import signature
from concord.models import (
    ComposedResult,
    DebateMode,
    Item,
    Phase,
    RoundRecord,
    ValidationResult,
    ValidationVote,
)
from concord.prompts import build_compose_prompt, build_validation_prompt

logger = logging.getLogger(__name__)

PARSE_FAILED_REASON = "Default approval (parsing failed)"
VALIDATOR_ERROR_REASON = "Default approval (validator error)"


def build_corpus(rounds: Sequence[RoundRecord]) -> list[dict[str, Any]]:
    """Every item from every round, grouped by signature with its authors."""
    grouped: dict[str, dict[str, Any]] = {}
    for record in rounds:
        for output in record.outputs:
            for item in output.items:
                sig = signature(item)
                entry = grouped.get(sig)
                if entry is None:
                    grouped[sig] = {**item.as_dict(), "found_by": [output.worker_id], "id": sig}
                elif output.worker_id not in entry["found_by"]:
                    entry["found_by"].append(output.worker_id)
    return list(grouped.values())


def critique_summary(rounds: Sequence[RoundRecord]) -> list[str]:
    return [
        f"Round {record.round}: {c.reviewer} critiqued {c.target}: {len(c.votes)} votes cast"
        for record in rounds
        for c in record.critiques
    ]


def elimination_reason(composed: ComposedResult, item: Item) -> str | None:
    """Reason the composer gave for dropping *item*, looked up by signature then title."""
    reasons = composed.elimination_reasons
    return reasons.get(signature(item)) or reasons.get(item.title)


def default_votes(voter: str, count: int, mode: DebateMode, reason: str) -> tuple[ValidationVote, ...]:
    return tuple(
        ValidationVote(item_id=item_id(mode, i), item_index=i, voter=voter, vote="approve", reason=reason)
        for i in range(count)
    )


def tally_votes(items: Sequence[Item], votes: Sequence[ValidationVote]) -> ValidationResult:
    """Approve when approvals >= rejections; equal non-zero counts are ties."""
    counts = [[0, 0] for _ in items]
    for vote in votes:
        if 0 <= vote.item_index < len(items):
            counts[vote.item_index][0 if vote.vote == "approve" else 1] += 1

    approved: list[Item] = []
    rejected: list[Item] = []
    ties: list[Item] = []
    for item, (approves, rejects) in zip(items, counts):
        if approves >= rejects:
            if approves == rejects and approves > 0:
                ties.append(item)
            approved.append(item)
        else:
            rejected.append(item)
    return ValidationResult(
        votes=tuple(votes),
        approved=tuple(approved),
        rejected=tuple(rejected),
        ties=tuple(ties),
    )


class Composer:
    """Runs the composition and validation phases for one debate."""

    def __init__(
        self,
        executor: ProcessExecutor,
        *,
        mode: DebateMode,
        context: str,
        bus: EventBus | None = None,
    ) -> None:
        self._executor = executor
        self._mode = mode
        self._context = context
        self._bus = bus

    async def compose(self, winner: str, rounds: Sequence[RoundRecord]) -> ComposedResult:
        prompt = build_compose_prompt(
            build_corpus(rounds),
            rounds=len(rounds),
            confidence=rounds[-1].confidence if rounds else 0,
            critique_summary=critique_summary(rounds),
            context=self._context,
            mode=self._mode,
        )
        try:
            result = await self._executor.execute(self._executor.task_for(winner, prompt))
        except DebateError as exc:
            raise InsufficientParticipantsError(
                f"Composer {winner} failed: {exc}",
                phase=str(Phase.COMPOSING),
                details={"composer": winner},
            ) from exc
        composed = parse_composition(result.raw_text, composer=winner, mode=self._mode)
        logger.info(
            "Composer %s proposed %d item(s), eliminated %d",
            winner, len(composed.proposed), len(composed.eliminated),
        )
        return composed

    async def validate(
        self,
        items: Sequence[Item],
        validators: Sequence[str],
        composer: str,
    ) -> ValidationResult:
        completed = 0

        async def _vote(validator: str) -> tuple[ValidationVote, ...]:
            nonlocal completed
            prompt = build_validation_prompt(items, composer=composer, context=self._context, mode=self._mode)
            result = await self._executor.try_execute(self._executor.task_for(validator, prompt))
            if result.failed:
                logger.warning("Validator %s failed: %s", validator, result.error)
                votes = default_votes(validator, len(items), self._mode, VALIDATOR_ERROR_REASON)
            else:
                parsed = parse_validation_votes(
                    result.raw_text, voter=validator, item_count=len(items), mode=self._mode
                )
                if parsed is None:
                    logger.warning("Validator %s reply unreadable; approving all", validator)
                    votes = default_votes(validator, len(items), self._mode, PARSE_FAILED_REASON)
                else:
                    votes = parsed
            completed += 1
            self._emit(validator, completed, len(validators))
            return votes

        batches = await asyncio.gather(*(_vote(v) for v in validators))
        votes = [vote for batch in batches for vote in batch]
        return tally_votes(items, votes)

    def _emit(self, validator: str, completed: int, total: int) -> None:
        if self._bus is None:
            return
        self._bus.emit(PhaseEvent(
            phase=str(Phase.VALIDATING),
            completed=completed,
            total=total,
            message=f"Validation: {validator} voted",
            data={"agent": validator},
        ))
