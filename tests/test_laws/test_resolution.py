"""
Tests for resolution: expiry sweep, fast-track, instant rules, early resolution

Fun fact: Most of these tests advance a fake clock by a day or two. Real
governance would need a lot more patience.
"""

import sqlite3
from datetime import timedelta

import pytest

from governance_engine.engine import GovernanceEngine
from governance_engine.kernel.errors import (
    InsufficientRank,
    NotFastTrackable,
    NotMember,
    NotPending,
    ProposalNotFound,
)
from governance_engine.kernel.events import PROPOSAL_PASSED, PROPOSAL_REJECTED
from governance_engine.kernel.time import TestTimeProvider
from governance_engine.laws.commands import ProposeLaw
from governance_engine.laws.models import ExecutionStatus, ProposalStatus
from governance_engine.laws.resolution import FAST_TRACK_NOTES, INSTANT_NOTES
from helpers import (
    BARON,
    DUKE,
    FREEPORT,
    NORTHMARCH,
    PEASANT,
    PRESIDENT,
    QUEEN,
    SENATOR,
    SOUTH_KING,
    SOUTHREACH,
    RecordingHandler,
    freeport_voters,
    run_concurrently,
)

WAR = {"target_community_id": SOUTHREACH}


def vote_freeport(engine: GovernanceEngine, proposal_id: str, yes: int, no: int) -> None:
    voters = freeport_voters()
    for voter in voters[:yes]:
        engine.cast_vote(proposal_id, voter, "YES")
    for voter in voters[yes : yes + no]:
        engine.cast_vote(proposal_id, voter, "NO")


# Expiry sweep


def test_sovereign_yes_passes_at_expiry_and_executes(
    engine: GovernanceEngine, directory, test_time: TestTimeProvider
) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    engine.cast_vote(proposal.proposal_id, QUEEN, "YES")
    engine.cast_vote(proposal.proposal_id, DUKE, "NO")
    engine.cast_vote(proposal.proposal_id, BARON, "NO")
    test_time.advance_hours(24)

    result = engine.sweep()
    resolved = engine.get_proposal(proposal.proposal_id)

    assert (result.processed, result.passed, result.rejected) == (1, 1, 0)
    assert result.resolved_ids == [proposal.proposal_id]
    assert resolved.status == ProposalStatus.PASSED
    assert resolved.resolved_at == test_time.now()
    assert "sovereign approved" in resolved.resolution_notes
    assert resolved.execution_status == ExecutionStatus.SUCCEEDED
    assert [c.target_community_id for c in directory.list_conflicts(NORTHMARCH)] == [SOUTHREACH]


def test_no_votes_rejects_at_expiry(engine: GovernanceEngine, test_time: TestTimeProvider) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    test_time.advance_hours(24)

    assert engine.resolve_expired() == 1

    resolved = engine.get_proposal(proposal.proposal_id)
    assert resolved.status == ProposalStatus.REJECTED
    assert resolved.execution_status is None
    assert "sovereign did not approve" in resolved.resolution_notes
    assert engine.audit_log(proposal.proposal_id)[-1].event_type == PROPOSAL_REJECTED


def test_majority_six_to_four_passes(engine: GovernanceEngine, test_time: TestTimeProvider) -> None:
    proposal = engine.propose_law(FREEPORT, SENATOR, "DECLARE_WAR", WAR)
    vote_freeport(engine, proposal.proposal_id, yes=6, no=4)
    test_time.advance_hours(48)

    engine.resolve_expired()

    resolved = engine.get_proposal(proposal.proposal_id)
    assert resolved.status == ProposalStatus.PASSED
    assert "6 yes, 4 no of 10 eligible" in resolved.resolution_notes


def test_supermajority_six_to_four_rejects(
    engine: GovernanceEngine, directory, test_time: TestTimeProvider
) -> None:
    proposal = engine.propose_law(
        FREEPORT, PRESIDENT, "CHANGE_GOVERNANCE", {"new_governance_type": "monarchy"}
    )
    vote_freeport(engine, proposal.proposal_id, yes=6, no=4)
    test_time.advance_hours(48)

    engine.resolve_expired()

    assert engine.get_proposal(proposal.proposal_id).status == ProposalStatus.REJECTED
    assert directory.get_governance_kind(FREEPORT) == "democracy"


def test_sweep_leaves_open_proposals_alone(
    engine: GovernanceEngine, test_time: TestTimeProvider
) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    test_time.advance(timedelta(hours=24) - timedelta(seconds=1))

    assert engine.resolve_expired() == 0
    assert engine.get_proposal(proposal.proposal_id).is_pending()


def test_second_sweep_is_a_no_op(engine: GovernanceEngine, test_time: TestTimeProvider) -> None:
    engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    test_time.advance_hours(24)

    assert engine.resolve_expired() == 1
    assert engine.resolve_expired() == 0


def test_sweep_batches(engine: GovernanceEngine, test_time: TestTimeProvider) -> None:
    engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    engine.propose_law(NORTHMARCH, QUEEN, "PROPOSE_HEIR", {"target_user_id": DUKE})
    engine.propose_law(
        NORTHMARCH, QUEEN, "CHANGE_GOVERNANCE", {"new_governance_type": "democracy"}
    )
    test_time.advance_hours(48)

    first = engine.sweep(limit=2)
    second = engine.sweep(limit=2)

    assert (first.processed, first.resolved, first.has_more) == (2, 2, True)
    assert (second.processed, second.resolved, second.has_more) == (1, 1, False)
    assert "processed 2" in first.summary()


def test_passing_condition_comes_from_governance_at_creation(
    engine: GovernanceEngine, directory, test_time: TestTimeProvider
) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    engine.cast_vote(proposal.proposal_id, QUEEN, "YES")
    engine.cast_vote(proposal.proposal_id, DUKE, "NO")
    engine.cast_vote(proposal.proposal_id, BARON, "NO")
    directory.set_governance_kind(NORTHMARCH, "democracy")
    test_time.advance_hours(24)

    engine.resolve_expired()

    # Still SOVEREIGN_ONLY: a democracy majority would have rejected it
    assert engine.get_proposal(proposal.proposal_id).status == ProposalStatus.PASSED


def test_concurrent_sweeps_dispatch_each_law_once(
    make_engine, test_time: TestTimeProvider
) -> None:
    handler = RecordingHandler()
    engines = [make_engine(register_builtins=False) for _ in range(4)]
    for instance in engines:
        instance.register_handler("DECLARE_WAR", handler)
    engine = engines[0]

    north = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    south = engine.propose_law(
        SOUTHREACH, SOUTH_KING, "DECLARE_WAR", {"target_community_id": NORTHMARCH}
    )
    free = engine.propose_law(FREEPORT, SENATOR, "DECLARE_WAR", WAR)
    engine.cast_vote(north.proposal_id, QUEEN, "YES")
    engine.cast_vote(south.proposal_id, SOUTH_KING, "YES")
    vote_freeport(engine, free.proposal_id, yes=7, no=1)
    test_time.advance_hours(48)

    results = []
    run_concurrently(*[lambda e=e: results.append(e.sweep()) for e in engines])

    assert len(results) == 4
    assert sum(r.passed for r in results) == 3
    assert sum(r.errors for r in results) == 0
    assert handler.calls == {
        north.proposal_id: 1,
        south.proposal_id: 1,
        free.proposal_id: 1,
    }
    passed_events = [e for e in engine.audit_log() if e.event_type == PROPOSAL_PASSED]
    assert len(passed_events) == 3


# Fast-track


def test_fast_track_passes_immediately(
    engine: GovernanceEngine, directory, test_time: TestTimeProvider
) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "PROPOSE_HEIR", {"target_user_id": DUKE})

    passed = engine.fast_track(proposal.proposal_id, QUEEN)

    assert passed.status == ProposalStatus.PASSED
    assert passed.resolution_notes == FAST_TRACK_NOTES
    assert passed.resolved_at == test_time.now()
    assert passed.execution_status == ExecutionStatus.SUCCEEDED
    assert directory.get_community(NORTHMARCH).successor_id == DUKE
    assert engine.audit_log(proposal.proposal_id)[1].actor_id == QUEEN


def test_fast_track_ignores_tally_and_deadline(
    engine: GovernanceEngine, test_time: TestTimeProvider
) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    engine.cast_vote(proposal.proposal_id, DUKE, "NO")
    engine.cast_vote(proposal.proposal_id, BARON, "NO")
    test_time.advance_hours(30)

    assert engine.fast_track(proposal.proposal_id, QUEEN).status == ProposalStatus.PASSED


@pytest.mark.parametrize("actor", [DUKE, BARON])
def test_fast_track_requires_sovereign(engine: GovernanceEngine, actor: str) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)

    with pytest.raises(InsufficientRank):
        engine.fast_track(proposal.proposal_id, actor)
    assert engine.get_proposal(proposal.proposal_id).is_pending()


def test_fast_track_by_outsider(engine: GovernanceEngine) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)

    with pytest.raises(NotMember):
        engine.fast_track(proposal.proposal_id, SOUTH_KING)


@pytest.mark.parametrize("actor", freeport_voters())
def test_not_fast_trackable_for_every_rank(engine: GovernanceEngine, actor: str) -> None:
    proposal = engine.propose_law(FREEPORT, SENATOR, "DECLARE_WAR", WAR)

    with pytest.raises(NotFastTrackable):
        engine.fast_track(proposal.proposal_id, actor)


def test_fast_track_resolved_proposal(engine: GovernanceEngine) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    engine.fast_track(proposal.proposal_id, QUEEN)

    with pytest.raises(NotPending):
        engine.fast_track(proposal.proposal_id, QUEEN)


def test_fast_track_missing_proposal(engine: GovernanceEngine) -> None:
    with pytest.raises(ProposalNotFound):
        engine.fast_track("prop-missing", QUEEN)


def test_fast_track_racing_sweep_resolves_once(
    make_engine, test_time: TestTimeProvider
) -> None:
    handler = RecordingHandler()
    engine = make_engine(register_builtins=False)
    engine.register_handler("DECLARE_WAR", handler)
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)
    engine.cast_vote(proposal.proposal_id, QUEEN, "YES")
    test_time.advance_hours(24)

    lost = []

    def fast_track() -> None:
        try:
            engine.fast_track(proposal.proposal_id, QUEEN)
        except NotPending as e:
            lost.append(e)

    sweeps = []
    run_concurrently(fast_track, lambda: sweeps.append(engine.sweep()))

    swept = sweeps[0].passed
    assert swept + (1 - len(lost)) == 1
    assert handler.calls[proposal.proposal_id] == 1


# Instant rules


def test_instant_rule_passes_and_executes_on_creation(
    engine: GovernanceEngine, directory
) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "WORK_TAX", {"tax_rate": 0.15})

    assert proposal.status == ProposalStatus.PASSED
    assert proposal.resolution_notes == INSTANT_NOTES
    assert proposal.execution_status == ExecutionStatus.SUCCEEDED
    assert directory.get_community(NORTHMARCH).work_tax_rate == pytest.approx(0.15)
    assert engine.resolve_expired() == 0


def test_instant_rule_does_not_block_next_proposal(engine: GovernanceEngine) -> None:
    engine.propose_law(NORTHMARCH, QUEEN, "WORK_TAX", {"tax_rate": 0.1})
    second = engine.propose_law(NORTHMARCH, QUEEN, "WORK_TAX", {"tax_rate": 0.2})

    assert second.status == ProposalStatus.PASSED


def test_sweep_before_instant_pass_still_passes(make_engine, directory) -> None:
    proposer = make_engine()
    worker = make_engine()
    command = ProposeLaw(
        community_id=NORTHMARCH, law_kind="WORK_TAX", metadata={"tax_rate": 0.1}
    )
    created = proposer.proposals.propose(command, QUEEN)

    swept = worker.sweep()
    resolved = proposer.resolution.resolve_instant(created)

    assert swept.passed == 1
    assert swept.rejected == 0
    assert resolved.status == ProposalStatus.PASSED
    assert resolved.resolution_notes == INSTANT_NOTES
    assert resolved.execution_status == ExecutionStatus.SUCCEEDED
    assert directory.get_community(NORTHMARCH).work_tax_rate == pytest.approx(0.1)


def test_import_tariff_passes_instantly(engine: GovernanceEngine, directory) -> None:
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "IMPORT_TARIFF", {"tariff_rate": 0.15})

    assert proposal.status == ProposalStatus.PASSED
    assert proposal.execution_status == ExecutionStatus.SUCCEEDED
    assert directory.get_community(NORTHMARCH).import_tariff_rate == pytest.approx(0.15)
    assert directory.get_community(NORTHMARCH).work_tax_rate is None


def test_same_law_is_timed_under_democracy(engine: GovernanceEngine) -> None:
    proposal = engine.propose_law(FREEPORT, SENATOR, "WORK_TAX", {"tax_rate": 0.1})

    assert proposal.is_pending()
    assert proposal.expires_at - proposal.created_at == timedelta(hours=36)


# Early resolution


def test_early_resolution_disabled_by_default(engine: GovernanceEngine) -> None:
    proposal = engine.propose_law(FREEPORT, SENATOR, "DECLARE_WAR", WAR)
    vote_freeport(engine, proposal.proposal_id, yes=6, no=0)

    assert engine.get_proposal(proposal.proposal_id).is_pending()


def test_early_resolution_passes_decided_majority(make_engine, directory) -> None:
    engine = make_engine(early_resolution=True)
    proposal = engine.propose_law(FREEPORT, SENATOR, "DECLARE_WAR", WAR)

    vote_freeport(engine, proposal.proposal_id, yes=5, no=0)
    assert engine.get_proposal(proposal.proposal_id).is_pending()

    engine.cast_vote(proposal.proposal_id, freeport_voters()[5], "YES")
    resolved = engine.get_proposal(proposal.proposal_id)

    assert resolved.status == ProposalStatus.PASSED
    assert "decided early" in resolved.resolution_notes
    assert len(directory.list_conflicts(FREEPORT)) == 1
    with pytest.raises(NotPending):
        engine.cast_vote(proposal.proposal_id, freeport_voters()[6], "NO")


def test_early_resolution_rejects_on_sovereign_no(make_engine) -> None:
    engine = make_engine(early_resolution=True)
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)

    engine.cast_vote(proposal.proposal_id, DUKE, "YES")
    assert engine.get_proposal(proposal.proposal_id).is_pending()

    engine.cast_vote(proposal.proposal_id, QUEEN, "NO")
    assert engine.get_proposal(proposal.proposal_id).status == ProposalStatus.REJECTED


def test_rank_ten_cannot_vote_in_monarchy_even_with_early_resolution(make_engine) -> None:
    engine = make_engine(early_resolution=True)
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)

    with pytest.raises(InsufficientRank):
        engine.cast_vote(proposal.proposal_id, PEASANT, "YES")


def test_early_resolution_failure_keeps_the_vote(
    make_engine, monkeypatch, test_time: TestTimeProvider
) -> None:
    engine = make_engine(early_resolution=True)
    proposal = engine.propose_law(NORTHMARCH, QUEEN, "DECLARE_WAR", WAR)

    def disk_error(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(engine.store, "transition_status", disk_error)
    vote = engine.cast_vote(proposal.proposal_id, QUEEN, "NO")
    monkeypatch.undo()

    assert vote.voter_id == QUEEN
    assert [v.voter_id for v in engine.list_votes(proposal.proposal_id)] == [QUEEN]
    assert engine.get_proposal(proposal.proposal_id).is_pending()

    test_time.advance_hours(24)
    assert engine.resolve_expired() == 1
    assert engine.get_proposal(proposal.proposal_id).status == ProposalStatus.REJECTED
