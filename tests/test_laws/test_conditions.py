"""
Tests for passing conditions and early-outcome detection

Pure functions - no database, no clock.
"""

import pytest

from governance_engine.laws.conditions import (
    determine_early_outcome,
    evaluate_passing_condition,
    supermajority_threshold,
)
from governance_engine.laws.models import PassingCondition, ProposalStatus, Tally, VoteChoice

PASSED = ProposalStatus.PASSED
REJECTED = ProposalStatus.REJECTED


def tally(yes: int, no: int, eligible: int = 10, sovereign: VoteChoice | None = None) -> Tally:
    return Tally(yes=yes, no=no, eligible_voter_count=eligible, sovereign_choice=sovereign)


def test_six_to_four_majority_passes() -> None:
    outcome = evaluate_passing_condition(PassingCondition.MAJORITY, tally(6, 4))

    assert outcome.status == PASSED
    assert "6 yes, 4 no of 10 eligible" in outcome.notes


def test_six_to_four_supermajority_rejects() -> None:
    assert evaluate_passing_condition(PassingCondition.SUPERMAJORITY, tally(6, 4)).status == REJECTED


def test_lone_sovereign_yes_passes() -> None:
    outcome = evaluate_passing_condition(
        PassingCondition.SOVEREIGN_ONLY, tally(1, 0, sovereign=VoteChoice.YES)
    )

    assert outcome.passed
    assert "sovereign approved" in outcome.notes


def test_sovereign_only_ignores_other_votes() -> None:
    assert (
        evaluate_passing_condition(
            PassingCondition.SOVEREIGN_ONLY, tally(5, 0, sovereign=None)
        ).status
        == REJECTED
    )
    assert (
        evaluate_passing_condition(
            PassingCondition.SOVEREIGN_ONLY, tally(1, 5, sovereign=VoteChoice.YES)
        ).status
        == PASSED
    )


@pytest.mark.parametrize(
    "condition",
    [PassingCondition.MAJORITY, PassingCondition.SUPERMAJORITY, PassingCondition.UNANIMOUS],
)
def test_zero_votes_reject_with_no_quorum(condition: PassingCondition) -> None:
    outcome = evaluate_passing_condition(condition, tally(0, 0))

    assert outcome.status == REJECTED
    assert "no quorum" in outcome.notes


@pytest.mark.parametrize(
    "yes, no, expected",
    [(5, 5, REJECTED), (1, 0, PASSED), (0, 1, REJECTED), (3, 2, PASSED)],
)
def test_majority_requires_more_yes_than_no(yes: int, no: int, expected: ProposalStatus) -> None:
    assert evaluate_passing_condition(PassingCondition.MAJORITY, tally(yes, no)).status == expected


@pytest.mark.parametrize(
    "yes, no, expected",
    [(2, 1, PASSED), (4, 2, PASSED), (7, 3, PASSED), (3, 2, REJECTED), (1, 0, PASSED)],
)
def test_supermajority_two_thirds_of_votes_cast(
    yes: int, no: int, expected: ProposalStatus
) -> None:
    assert (
        evaluate_passing_condition(PassingCondition.SUPERMAJORITY, tally(yes, no)).status
        == expected
    )


@pytest.mark.parametrize("total, threshold", [(1, 1), (3, 2), (10, 7), (9, 6)])
def test_supermajority_threshold(total: int, threshold: int) -> None:
    assert supermajority_threshold(total) == threshold


def test_unanimous_needs_every_eligible_voter() -> None:
    assert evaluate_passing_condition(PassingCondition.UNANIMOUS, tally(3, 0, 3)).passed
    assert not evaluate_passing_condition(PassingCondition.UNANIMOUS, tally(2, 0, 3)).passed
    assert not evaluate_passing_condition(PassingCondition.UNANIMOUS, tally(2, 1, 3)).passed


# Early outcomes


def test_no_early_outcome_while_undecided() -> None:
    assert determine_early_outcome(PassingCondition.MAJORITY, tally(3, 2)) is None
    assert determine_early_outcome(PassingCondition.SUPERMAJORITY, tally(4, 1)) is None
    assert determine_early_outcome(PassingCondition.UNANIMOUS, tally(9, 0)) is None
    assert determine_early_outcome(PassingCondition.SOVEREIGN_ONLY, tally(3, 0)) is None


def test_majority_decided_when_remaining_votes_cannot_flip_it() -> None:
    # 6 yes: even 4 remaining NO give 6 > 4
    assert determine_early_outcome(PassingCondition.MAJORITY, tally(6, 0)).status == PASSED
    # 5 no: even 5 remaining YES give 5 > 5, false
    assert determine_early_outcome(PassingCondition.MAJORITY, tally(0, 5)).status == REJECTED
    # 5 yes of 10 can still end 5-5
    assert determine_early_outcome(PassingCondition.MAJORITY, tally(5, 0)) is None


def test_supermajority_early_outcomes() -> None:
    # 7 yes, 3 remaining: worst case 7-3 still passes
    assert determine_early_outcome(PassingCondition.SUPERMAJORITY, tally(7, 0)).status == PASSED
    # 4 no: best case 6-4 fails
    assert determine_early_outcome(PassingCondition.SUPERMAJORITY, tally(0, 4)).status == REJECTED
    assert determine_early_outcome(PassingCondition.SUPERMAJORITY, tally(6, 0)) is None


def test_unanimous_any_no_rejects_early() -> None:
    assert determine_early_outcome(PassingCondition.UNANIMOUS, tally(0, 1)).status == REJECTED
    assert determine_early_outcome(PassingCondition.UNANIMOUS, tally(10, 0)).status == PASSED


def test_sovereign_vote_decides_early() -> None:
    assert (
        determine_early_outcome(
            PassingCondition.SOVEREIGN_ONLY, tally(1, 0, sovereign=VoteChoice.YES)
        ).status
        == PASSED
    )
    assert (
        determine_early_outcome(
            PassingCondition.SOVEREIGN_ONLY, tally(0, 1, sovereign=VoteChoice.NO)
        ).status
        == REJECTED
    )


@pytest.mark.parametrize("condition", list(PassingCondition))
@pytest.mark.parametrize("yes, no", [(0, 0), (2, 1), (6, 4), (10, 0), (0, 10), (4, 3)])
def test_early_outcome_agrees_with_every_final_outcome(
    condition: PassingCondition, yes: int, no: int
) -> None:
    eligible = 10
    early = determine_early_outcome(condition, tally(yes, no, eligible))
    if early is None:
        return
    remaining = eligible - yes - no
    for extra_yes in range(remaining + 1):
        final = tally(yes + extra_yes, no + remaining - extra_yes, eligible)
        assert evaluate_passing_condition(condition, final).status == early.status
