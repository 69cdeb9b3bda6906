"""Tests for composition, validation and vote tallies."""

from __future__ import annotations

import json

import pytest

from concord.composer import (
    PARSE_FAILED_REASON,
    VALIDATOR_ERROR_REASON,
    Composer,
    build_corpus,
    elimination_reason,
    tally_votes,
)
from concord.errors import InsufficientParticipantsError, WorkerExecutionError
from concord.events import EventBus
from concord.models import ComposedResult, Finding, RoundRecord, ValidationVote
from tests.helpers.fakes import ScriptedExecutor, make_config, output

A = Finding("P0", "Null user dereference", file="src/session.py:41")
B = Finding("P1", "Token race", file="src/tokens.py")
C = Finding("P2", "Log typo", file="src/log.py")


def vote(index: int, voter: str, kind: str) -> ValidationVote:
    return ValidationVote(item_id=f"finding_{index}", item_index=index, voter=voter, vote=kind)  # type: ignore[arg-type]


class TestTally:
    def test_majority_and_ties(self) -> None:
        votes = [
            vote(0, "x", "approve"), vote(0, "y", "approve"),
            vote(1, "x", "approve"), vote(1, "y", "reject"),
            vote(2, "x", "reject"), vote(2, "y", "reject"),
        ]
        result = tally_votes([A, B, C], votes)
        assert result.approved == (A, B)
        assert result.ties == (B,)
        assert result.rejected == (C,)

    def test_no_votes_approves(self) -> None:
        result = tally_votes([A], [])
        assert result.approved == (A,)
        assert result.ties == ()

    def test_out_of_range_votes_ignored(self) -> None:
        result = tally_votes([A], [vote(5, "x", "reject")])
        assert result.approved == (A,)


class TestCorpus:
    def test_grouped_across_rounds(self) -> None:
        rounds = [
            RoundRecord(round=1, outputs=(output("a", A), output("b", A, B)), critiques=(), scores={}, confidence=40),
            RoundRecord(round=2, outputs=(output("a", B),), critiques=(), scores={}, confidence=70),
        ]
        corpus = build_corpus(rounds)
        assert [entry["title"] for entry in corpus] == [A.title, B.title]
        assert corpus[0]["found_by"] == ["a", "b"]
        assert corpus[1]["found_by"] == ["b", "a"]
        assert corpus[0]["id"] == "P0|null user dereference|src/session.py"

    def test_elimination_reason_lookup(self) -> None:
        composed = ComposedResult(
            composer="a",
            elimination_reasons={"P0|null user dereference|src/session.py": "dup", "Token race": "not real"},
        )
        assert elimination_reason(composed, A) == "dup"
        assert elimination_reason(composed, B) == "not real"
        assert elimination_reason(composed, C) is None


ROUNDS = [RoundRecord(round=1, outputs=(output("a", A), output("b", A)), critiques=(), scores={}, confidence=100)]
COMPOSED_JSON = json.dumps({
    "proposed_findings": [
        {"severity": "P0", "title": A.title, "file": A.file},
        {"severity": "P1", "title": B.title, "file": B.file},
    ],
    "eliminated_findings": [],
    "residual_risks": ["r"],
})


class TestComposer:
    @pytest.mark.asyncio
    async def test_compose(self) -> None:
        config = make_config("a", "b", "c")
        executor = ScriptedExecutor(config, lambda worker, kind, n: COMPOSED_JSON)
        composed = await Composer(executor, mode="review", context="diff").compose("a", ROUNDS)
        assert composed.composer == "a"
        assert [f.title for f in composed.proposed] == [A.title, B.title]
        assert executor.calls == [("a", "compose")]

    @pytest.mark.asyncio
    async def test_compose_failure_is_fatal(self) -> None:
        config = make_config("a", "b")
        executor = ScriptedExecutor(
            config, lambda worker, kind, n: WorkerExecutionError("boom", worker_id=worker)
        )
        with pytest.raises(InsufficientParticipantsError) as excinfo:
            await Composer(executor, mode="review", context="diff").compose("a", ROUNDS)
        assert excinfo.value.phase == "composing"

    @pytest.mark.asyncio
    async def test_validate_fail_open(self) -> None:
        config = make_config("a", "b", "c", "d")
        replies = {
            "b": json.dumps({"votes": [{"id": "finding_0", "vote": "approve"}, {"id": "finding_1", "vote": "reject"}]}),
            "c": "I cannot produce JSON today",
            "d": WorkerExecutionError("crashed", worker_id="d"),
        }
        executor = ScriptedExecutor(config, lambda worker, kind, n: replies[worker])
        bus = EventBus()
        composer = Composer(executor, mode="review", context="diff", bus=bus)

        result = await composer.validate([A, B], ["b", "c", "d"], "a")

        assert result.approved == (A, B)
        assert result.rejected == ()
        reasons = {(v.voter, v.item_index): v.reason for v in result.votes}
        assert reasons[("c", 0)] == PARSE_FAILED_REASON
        assert reasons[("d", 1)] == VALIDATOR_ERROR_REASON
        assert len(result.votes) == 6
        assert [e.completed for e in bus.history] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_validate_rejects_on_majority(self) -> None:
        config = make_config("a", "b", "c")
        reject_all = json.dumps({"votes": [{"id": "finding_0", "vote": "reject"}]})
        executor = ScriptedExecutor(config, lambda worker, kind, n: reject_all)
        result = await Composer(executor, mode="review", context="diff").validate([A], ["b", "c"], "a")
        assert result.rejected == (A,)
        assert result.approved == ()
