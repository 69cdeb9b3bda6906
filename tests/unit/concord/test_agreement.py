"""Tests for agreement tallies and confidence."""

from __future__ import annotations

from concord.agreement import (
    agreed_items,
    agreement_matrix,
    collect_unique,
    compute_confidence,
    count_agreements,
    disputed_items,
    majority,
    pairwise_agreement,
    plan_confidence,
    review_confidence,
)
from concord.config.schema import ConfidenceWeights
from concord.models import CritiqueResult, CritiqueVote, Finding, PlanStep, StructuredResult, WorkerOutput
from tests.helpers.fakes import output

NULL_USER = Finding("P0", "Null user dereference in session handler", file="src/session.py:41")
RACE = Finding("P1", "Race condition refreshing cached tokens", file="src/tokens.py:10")
TYPO = Finding("P2", "Misspelled log message", file="src/log.py")


def critique(reviewer: str, target: str, *votes: tuple[str, str]) -> CritiqueResult:
    return CritiqueResult(
        reviewer=reviewer,
        target=target,
        raw_text="{}",
        votes=tuple(CritiqueVote(reviewer, target, title, vote) for title, vote in votes),  # type: ignore[arg-type]
    )


class TestMajority:
    def test_values(self) -> None:
        assert majority(1) == 1
        assert majority(2) == 2
        assert majority(3) == 2
        assert majority(4) == 3


class TestScenarios:
    def test_identical_findings_converge(self) -> None:
        outputs = [output("a", NULL_USER), output("b", NULL_USER)]
        assert collect_unique(outputs) == [NULL_USER]
        result = review_confidence(outputs, [], threshold=80)
        assert result.agreed_items == 1
        assert result.score == 100
        assert result.converged

    def test_disjoint_findings(self) -> None:
        outputs = [output("a", NULL_USER), output("b", RACE)]
        result = review_confidence(outputs, [], threshold=80)
        assert result.agreed_items == 0
        assert result.total_items == 2
        assert result.agreement_matrix["a"]["b"] == 0
        assert result.score == 0
        assert not result.converged

    def test_no_items_is_fully_confident(self) -> None:
        outputs = [output("a"), output("b"), output("c")]
        result = review_confidence(outputs, [], threshold=80)
        assert result.score == 100


class TestCountAgreements:
    def test_votes_decide_for_non_producers(self) -> None:
        outputs = [output("a", NULL_USER), output("b"), output("c"), output("d")]
        critiques = [
            critique("b", "a", (NULL_USER.title, "agree")),
            critique("c", "a", (NULL_USER.title, "disagree")),
            critique("d", "a", (NULL_USER.title, "agree"), (NULL_USER.title, "disagree")),
        ]
        tally = count_agreements(NULL_USER, outputs, critiques)
        assert tally.agrees == ["a", "b"]
        assert tally.disagrees == ["c"]
        assert tally.abstains == ["d"]

    def test_critique_votes_lift_confidence(self) -> None:
        outputs = [output("a", NULL_USER), output("b", RACE)]
        critiques = [
            critique("b", "a", (NULL_USER.title, "agree")),
            critique("a", "b", (RACE.title, "agree")),
        ]
        result = review_confidence(outputs, critiques, threshold=80)
        # ratio 100 blended with pairwise 0
        assert result.score == 60
        assert [i.title for i in agreed_items(outputs, critiques)] == [NULL_USER.title, RACE.title]

    def test_custom_weights(self) -> None:
        outputs = [output("a", NULL_USER), output("b", RACE)]
        critiques = [critique("b", "a", (NULL_USER.title, "agree")), critique("a", "b", (RACE.title, "agree"))]
        result = review_confidence(outputs, critiques, 80, ConfidenceWeights(agreement=1.0, pairwise=0.0))
        assert result.score == 100


class TestPairwise:
    def test_empty_pair_agrees(self) -> None:
        assert pairwise_agreement([], []) == 100

    def test_partial_overlap(self) -> None:
        # 1 of A's 2 items matched; 3 distinct signatures
        assert pairwise_agreement([NULL_USER, RACE], [NULL_USER, TYPO]) == 67

    def test_capped(self) -> None:
        assert pairwise_agreement([NULL_USER], [NULL_USER]) == 100

    def test_matrix_diagonal(self) -> None:
        matrix = agreement_matrix([output("a", NULL_USER), output("b")])
        assert matrix["a"]["a"] == 100
        assert matrix["b"]["b"] == 100
        assert matrix["a"]["b"] == 0


class TestBounds:
    def test_confidence_between_0_and_100(self) -> None:
        pools = [
            [output("a", NULL_USER, RACE), output("b", NULL_USER), output("c", TYPO)],
            [output("a", TYPO), output("b", TYPO, RACE)],
            [output("a"), output("b", NULL_USER)],
        ]
        for outputs in pools:
            score = review_confidence(outputs, [], threshold=80).score
            assert 0 <= score <= 100


STEP_MODEL = PlanStep(1, "Create user model")
STEP_API = PlanStep(2, "Expose REST endpoint")


def plan_output(worker: str, *steps: PlanStep) -> WorkerOutput:
    return WorkerOutput(worker_id=worker, raw_text="{}", structured=StructuredResult(items=steps))


class TestPlanConfidence:
    def test_mean_of_step_shares(self) -> None:
        outputs = [plan_output("a", STEP_MODEL, STEP_API), plan_output("b", STEP_MODEL)]
        # model: 2/2, api: 1/2
        assert plan_confidence(outputs, [], threshold=80).score == 75

    def test_agree_votes_count(self) -> None:
        outputs = [plan_output("a", STEP_MODEL, STEP_API), plan_output("b", STEP_MODEL)]
        critiques = [critique("b", "a", (STEP_API.title, "agree"))]
        result = compute_confidence(outputs, critiques, 80, mode="plan")
        assert result.score == 100
        assert result.converged

    def test_untitled_vote_does_not_count(self) -> None:
        outputs = [plan_output("a", STEP_MODEL, STEP_API), plan_output("b", STEP_MODEL)]
        critiques = [critique("b", "a", ("", "agree"))]
        assert plan_confidence(outputs, critiques, threshold=80).score == 75

    def test_degenerate_inputs(self) -> None:
        assert plan_confidence([plan_output("a", STEP_MODEL)], [], 80).score == 100
        assert plan_confidence([plan_output("a"), plan_output("b")], [], 80).score == 100


class TestDisputed:
    def test_disputed_items(self) -> None:
        outputs = [output("a", NULL_USER), output("b", NULL_USER, RACE)]
        disputed = disputed_items(outputs, [critique("a", "b", (RACE.title, "disagree"))])
        assert len(disputed) == 1
        item, tally = disputed[0]
        assert item == RACE
        assert tally.disagrees == ["a"]
