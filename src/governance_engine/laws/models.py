"""
Law Domain Models - Proposals, votes and the rules that govern them

These models are the shared vocabulary of the engine. They use Pydantic for
validation; rules and votes are frozen because nothing may change them after
creation.

Fun fact: "Quorum" comes from the Latin phrase in English commissions of the
peace, "quorum vos ... unum esse volumus" - "of whom we wish you to be one".
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator

# Rank tier holding top authority (king, president, founder)
SOVEREIGN_RANK = 0

DEFAULT_GOVERNANCE_KIND = "monarchy"


class LawKind(str, Enum):
    """
    Built-in law kinds

    The registry keys rules by plain strings, so a new law kind needs only a
    table entry; these members are conveniences for the shipped table.
    """

    DECLARE_WAR = "DECLARE_WAR"
    PROPOSE_HEIR = "PROPOSE_HEIR"
    CHANGE_GOVERNANCE = "CHANGE_GOVERNANCE"
    MESSAGE_OF_THE_DAY = "MESSAGE_OF_THE_DAY"
    WORK_TAX = "WORK_TAX"
    IMPORT_TARIFF = "IMPORT_TARIFF"


class GovernanceKind(str, Enum):
    """Built-in governance kinds (ruling structures)"""

    MONARCHY = "monarchy"
    DEMOCRACY = "democracy"


class PassingCondition(str, Enum):
    """Formula deciding whether collected votes pass a proposal"""

    SOVEREIGN_ONLY = "SOVEREIGN_ONLY"  # a top-rank YES decides, other votes advisory
    MAJORITY = "MAJORITY"  # yes > no
    SUPERMAJORITY = "SUPERMAJORITY"  # yes >= ceil(2/3 of votes cast)
    UNANIMOUS = "UNANIMOUS"  # every eligible voter voted yes


class ProposalStatus(str, Enum):
    """
    Proposal lifecycle states

    PENDING → PASSED | REJECTED. Terminal states are never left.
    """

    PENDING = "PENDING"
    PASSED = "PASSED"
    REJECTED = "REJECTED"


class VoteChoice(str, Enum):
    YES = "YES"
    NO = "NO"

    @classmethod
    def parse(cls, value: "str | VoteChoice") -> "VoteChoice":
        """Accept 'yes'/'no' in any case"""
        if isinstance(value, VoteChoice):
            return value
        return cls(value.strip().upper())


class ExecutionStatus(str, Enum):
    """
    Side-effect state of a PASSED proposal

    PENDING is set in the same statement that passes the proposal and means
    "dispatch owed"; a proposal stuck there was interrupted mid-dispatch.
    """

    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"  # no handler registered for the law kind


def normalize_law_kind(law_kind: "str | LawKind") -> str:
    value = law_kind.value if isinstance(law_kind, Enum) else law_kind
    return value.strip().upper()


def normalize_governance_kind(governance_kind: "str | GovernanceKind | None") -> str:
    if governance_kind is None:
        return DEFAULT_GOVERNANCE_KIND
    value = governance_kind.value if isinstance(governance_kind, Enum) else governance_kind
    value = value.strip().lower()
    return value or DEFAULT_GOVERNANCE_KIND


class GovernanceRule(BaseModel):
    """
    Who may propose and vote on a law under one governance kind, and how it passes

    Attributes:
        law_kind: Law this rule governs
        governance_kind: Ruling structure the rule applies to
        propose_ranks: Rank tiers allowed to propose
        vote_ranks: Rank tiers allowed to vote
        voting_window: Time from creation to deadline (zero = instant rule)
        can_fast_track: Whether the sovereign may force immediate passage
        passing_condition: Formula applied at resolution
        required_metadata_fields: Keys the proposal metadata must carry
        cooldown: Minimum spacing between proposals of this kind in a community
        description: Human-readable summary
    """

    law_kind: str
    governance_kind: str
    propose_ranks: frozenset[int]
    vote_ranks: frozenset[int]
    voting_window: timedelta
    can_fast_track: bool = False
    passing_condition: PassingCondition
    required_metadata_fields: frozenset[str] = frozenset()
    cooldown: timedelta | None = None
    description: str = ""

    model_config = {"frozen": True}

    @field_validator("voting_window")
    @classmethod
    def _window_not_negative(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("voting_window must not be negative")
        return value

    @property
    def is_instant(self) -> bool:
        """Zero-length window: the proposal passes as soon as it is created"""
        return self.voting_window == timedelta(0)


class Proposal(BaseModel):
    """
    A governance action awaiting (or having received) a decision

    Attributes:
        proposal_id: Unique identifier
        community_id: Community the law applies to
        proposer_id: Member who proposed it
        law_kind: What kind of law
        governance_kind: Community governance at creation (selects the rule)
        status: Lifecycle state
        metadata: Law-specific payload (target community, heir, ...)
        created_at: Creation time
        expires_at: Voting deadline, fixed at creation
        resolved_at: When the terminal transition happened
        resolution_notes: Audit text (counts, condition, execution failures)
        execution_status: Side-effect state once PASSED
        execution_attempts: How many dispatches have been made
    """

    proposal_id: str
    community_id: str
    proposer_id: str
    law_kind: str
    governance_kind: str
    status: ProposalStatus = ProposalStatus.PENDING
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    expires_at: datetime
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    execution_status: ExecutionStatus | None = None
    execution_attempts: int = 0

    def is_pending(self) -> bool:
        return self.status == ProposalStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        """Deadline reached (voting closed), whatever the stored status says"""
        return now >= self.expires_at

    def time_remaining(self, now: datetime) -> timedelta:
        return max(self.expires_at - now, timedelta(0))

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "proposal_id": "prop-01908e9a-3b87-7000-8000-123456789abc",
                    "community_id": "northmarch",
                    "proposer_id": "queen-ada",
                    "law_kind": "DECLARE_WAR",
                    "governance_kind": "monarchy",
                    "status": "PENDING",
                    "metadata": {"target_community_id": "southreach"},
                    "created_at": "2025-01-15T12:00:00Z",
                    "expires_at": "2025-01-16T12:00:00Z",
                }
            ]
        }
    }


class Vote(BaseModel):
    """
    One member's vote on one proposal (append-only)

    voter_rank is the voter's rank when the vote was cast; SOVEREIGN_ONLY
    resolution depends on it.
    """

    vote_id: str
    proposal_id: str
    voter_id: str
    voter_rank: int
    choice: VoteChoice
    created_at: datetime

    model_config = {"frozen": True}


class Tally(BaseModel):
    """Aggregate vote counts for a proposal"""

    yes: int = 0
    no: int = 0
    eligible_voter_count: int = 0
    sovereign_choice: VoteChoice | None = None

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return self.yes + self.no

    def summary(self) -> str:
        return f"{self.yes} yes, {self.no} no of {self.eligible_voter_count} eligible"


class ProposalView(BaseModel):
    """Proposal plus its current tally, for listings"""

    proposal: Proposal
    tally: Tally
