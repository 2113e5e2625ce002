"""
Passing Conditions - Pure functions deciding a proposal's outcome from its tally

Nothing here touches storage. The same functions decide expiry resolution and
early resolution, so both paths always agree.

Fun fact: The two-thirds supermajority goes back to the Roman Senate's quorum
rules and reached the US Constitution via parliamentary practice - it's there
for veto overrides, treaties and amendments.
"""

import math

from pydantic import BaseModel

from governance_engine.laws.models import (
    PassingCondition,
    ProposalStatus,
    Tally,
    VoteChoice,
)


class Outcome(BaseModel):
    """Terminal status a tally leads to, with the audit note explaining why"""

    status: ProposalStatus
    notes: str

    model_config = {"frozen": True}

    @property
    def passed(self) -> bool:
        return self.status == ProposalStatus.PASSED


def supermajority_threshold(total: int) -> int:
    """YES votes needed for two thirds of `total` votes cast"""
    return math.ceil(2 * total / 3)


def evaluate_passing_condition(condition: PassingCondition, tally: Tally) -> Outcome:
    """
    Final outcome once voting has closed

    Zero votes reject every condition (no quorum; no sovereign approval).
    """
    summary = f"{condition.value}: {tally.summary()}"

    if condition == PassingCondition.SOVEREIGN_ONLY:
        if tally.sovereign_choice == VoteChoice.YES:
            return Outcome(status=ProposalStatus.PASSED, notes=f"{summary}; sovereign approved")
        return Outcome(
            status=ProposalStatus.REJECTED, notes=f"{summary}; sovereign did not approve"
        )

    if tally.total == 0:
        return Outcome(status=ProposalStatus.REJECTED, notes=f"{summary}; no quorum")

    if condition == PassingCondition.MAJORITY:
        passed = tally.yes > tally.no
    elif condition == PassingCondition.SUPERMAJORITY:
        passed = tally.yes >= supermajority_threshold(tally.total)
    elif condition == PassingCondition.UNANIMOUS:
        passed = tally.no == 0 and tally.yes == tally.eligible_voter_count
    else:
        raise ValueError(f"Unsupported passing condition: {condition}")

    status = ProposalStatus.PASSED if passed else ProposalStatus.REJECTED
    return Outcome(status=status, notes=f"{summary}; {status.value.lower()}")


def determine_early_outcome(condition: PassingCondition, tally: Tally) -> Outcome | None:
    """
    Outcome that no remaining eligible vote can change, or None

    Remaining votes are assumed to go whichever way is worst for the answer
    being tested, so an early outcome always equals the final one.
    """
    remaining = max(tally.eligible_voter_count - tally.total, 0)
    summary = f"{condition.value}: {tally.summary()}"

    if condition == PassingCondition.SOVEREIGN_ONLY:
        if tally.sovereign_choice is None:
            return None
        return evaluate_passing_condition(condition, tally)

    if condition == PassingCondition.MAJORITY:
        if tally.yes > tally.no + remaining:
            return Outcome(status=ProposalStatus.PASSED, notes=f"{summary}; majority decided early")
        if tally.total > 0 and tally.yes + remaining <= tally.no:
            return Outcome(
                status=ProposalStatus.REJECTED, notes=f"{summary}; majority unreachable"
            )
        return None

    if condition == PassingCondition.SUPERMAJORITY:
        # yes >= ceil(2/3 * total) is equivalent to yes >= 2 * no
        if tally.total > 0 and tally.yes >= 2 * (tally.no + remaining):
            return Outcome(
                status=ProposalStatus.PASSED, notes=f"{summary}; supermajority decided early"
            )
        if tally.total > 0 and tally.yes + remaining < 2 * tally.no:
            return Outcome(
                status=ProposalStatus.REJECTED, notes=f"{summary}; supermajority unreachable"
            )
        return None

    if condition == PassingCondition.UNANIMOUS:
        if tally.no > 0:
            return Outcome(status=ProposalStatus.REJECTED, notes=f"{summary}; unanimity broken")
        if tally.total > 0 and tally.yes >= tally.eligible_voter_count:
            return evaluate_passing_condition(condition, tally)
        return None

    raise ValueError(f"Unsupported passing condition: {condition}")
