"""
End-to-end tests through the GovernanceEngine facade

Fun fact: The full lifecycle below - propose, vote, sweep, execute - is the same
path a real community takes; only the clock is fake.
"""

import json
from pathlib import Path

import pytest

from governance_engine.directory import SQLiteDirectory
from governance_engine.engine import GovernanceEngine
from governance_engine.kernel.errors import NotMember, UnknownLaw
from governance_engine.kernel.events import (
    LAW_EXECUTED,
    PROPOSAL_CREATED,
    PROPOSAL_PASSED,
    VOTE_CAST,
)
from governance_engine.kernel.settings import EngineSettings
from governance_engine.kernel.time import TestTimeProvider
from governance_engine.laws.models import ExecutionStatus, ProposalStatus
from helpers import (
    DUKE,
    FREEPORT,
    NORTHMARCH,
    PEASANT,
    QUEEN,
    SENATOR,
    SOUTHREACH,
    freeport_voters,
)


def test_democratic_war_lifecycle(
    engine: GovernanceEngine, directory: SQLiteDirectory, test_time: TestTimeProvider
) -> None:
    proposal = engine.propose_law(
        FREEPORT, SENATOR, "DECLARE_WAR", {"target_community_id": SOUTHREACH}
    )
    voters = freeport_voters()
    for voter in voters[:6]:
        engine.cast_vote(proposal.proposal_id, voter, "yes")
    for voter in voters[6:]:
        engine.cast_vote(proposal.proposal_id, voter, "no")

    test_time.advance_hours(47)
    assert engine.resolve_expired() == 0
    test_time.advance_hours(1)
    assert engine.resolve_expired() == 1

    resolved = engine.get_proposal(proposal.proposal_id)
    assert resolved.status == ProposalStatus.PASSED
    assert resolved.execution_status == ExecutionStatus.SUCCEEDED

    [conflict] = directory.list_conflicts(FREEPORT)
    assert conflict.target_community_id == SOUTHREACH
    assert conflict.idempotency_key == proposal.proposal_id

    events = [e.event_type for e in engine.audit_log(proposal.proposal_id)]
    assert events == [PROPOSAL_CREATED] + [VOTE_CAST] * 10 + [PROPOSAL_PASSED, LAW_EXECUTED]


def test_proposal_details(engine: GovernanceEngine, test_time: TestTimeProvider) -> None:
    proposal = engine.propose_law(
        NORTHMARCH, QUEEN, "DECLARE_WAR", {"target_community_id": SOUTHREACH}
    )
    engine.cast_vote(proposal.proposal_id, DUKE, "NO")
    test_time.advance_hours(2)

    details = engine.get_proposal_details(proposal.proposal_id)

    assert details["proposal"]["status"] == "PENDING"
    assert details["tally"] == {
        "yes": 0,
        "no": 1,
        "eligible_voter_count": 3,
        "sovereign_choice": None,
        "total": 1,
    }
    assert details["rule"] == {
        "passing_condition": "SOVEREIGN_ONLY",
        "can_fast_track": True,
        "vote_ranks": [0, 1],
    }
    assert details["time_remaining_seconds"] == 22 * 3600
    assert [v["voter_id"] for v in details["votes"]] == [DUKE]
    json.dumps(details)


def test_list_available_laws(engine: GovernanceEngine) -> None:
    everything = {law.law_kind for law in engine.list_available_laws(FREEPORT)}
    for_citizen = [law.law_kind for law in engine.list_available_laws(FREEPORT, "citizen-1")]

    assert everything == {"DECLARE_WAR", "CHANGE_GOVERNANCE", "WORK_TAX"}
    assert for_citizen == ["DECLARE_WAR"]
    assert engine.list_available_laws(NORTHMARCH, PEASANT) == []
    with pytest.raises(NotMember):
        engine.list_available_laws(NORTHMARCH, "stranger")


def test_list_proposals_accepts_status_name(engine: GovernanceEngine) -> None:
    engine.propose_law(NORTHMARCH, QUEEN, "WORK_TAX", {"tax_rate": 0.1})

    assert len(engine.list_proposals(NORTHMARCH, "passed")) == 1
    assert engine.list_proposals(NORTHMARCH, "PENDING") == []
    with pytest.raises(ValueError):
        engine.list_proposals(NORTHMARCH, "vetoed")


def test_rules_file_replaces_builtin_table(
    directory: SQLiteDirectory, temp_db: Path, tmp_path: Path, test_time: TestTimeProvider
) -> None:
    rules_path = tmp_path / "rules.json"
    rules_path.write_text(
        json.dumps(
            {
                "laws": {
                    "DECLARE_WAR": {
                        "required_metadata_fields": ["target_community_id"],
                        "rules": {
                            "monarchy": {
                                "propose_ranks": [0, 1],
                                "vote_ranks": [0, 1, 10],
                                "voting_window": "1h",
                                "passing_condition": "UNANIMOUS",
                            }
                        },
                    }
                }
            }
        )
    )
    engine = GovernanceEngine.with_directory(
        directory,
        settings=EngineSettings(db_path=temp_db, rules_path=rules_path),
        time_provider=test_time,
    )

    proposal = engine.propose_law(
        NORTHMARCH, DUKE, "DECLARE_WAR", {"target_community_id": SOUTHREACH}
    )
    for voter in (QUEEN, DUKE, PEASANT):
        engine.cast_vote(proposal.proposal_id, voter, "YES")
    test_time.advance_hours(1)
    engine.resolve_expired()

    assert engine.tally(proposal.proposal_id).eligible_voter_count == 4
    assert engine.get_proposal(proposal.proposal_id).status == ProposalStatus.REJECTED
    with pytest.raises(UnknownLaw):
        engine.propose_law(NORTHMARCH, QUEEN, "PROPOSE_HEIR", {"target_user_id": DUKE})
