"""
Vote Ledger - One vote per member per proposal, only while voting is open

The checks done here (status, deadline, rank) give precise errors. The
guarantees come from the store: the vote INSERT re-checks status and deadline
in the same statement, and UNIQUE(proposal_id, voter_id) rejects a second vote
even when both arrive at the same instant.
"""

from datetime import datetime

from governance_engine.kernel.errors import (
    AuthorizationError,
    ConflictError,
    NotPending,
    ProposalExpired,
    ProposalNotFound,
    StateError,
)
from governance_engine.kernel.events import (
    VOTE_CAST,
    EventSink,
    LoggingEventSink,
    create_audit_event,
)
from governance_engine.kernel.ids import generate_id
from governance_engine.kernel.logging import LogOperation, get_logger
from governance_engine.kernel.metrics import votes_cast_total, votes_refused_total
from governance_engine.kernel.store import SQLiteGovernanceStore
from governance_engine.kernel.time import TimeProvider
from governance_engine.laws.authorization import AuthorizationGate
from governance_engine.laws.commands import CastVote
from governance_engine.laws.models import (
    SOVEREIGN_RANK,
    Proposal,
    Tally,
    Vote,
    VoteChoice,
)
from governance_engine.laws.rules import RuleRegistry
from governance_engine.laws.services import MembershipProvider

logger = get_logger(__name__)


def compute_tally(votes: list[Vote], eligible_voter_count: int) -> Tally:
    """
    Count votes

    sovereign_choice is YES if any top-rank voter voted YES, otherwise the
    top-rank choice if one was cast.
    """
    yes = sum(1 for vote in votes if vote.choice == VoteChoice.YES)
    sovereign_choices = {vote.choice for vote in votes if vote.voter_rank == SOVEREIGN_RANK}
    if VoteChoice.YES in sovereign_choices:
        sovereign_choice: VoteChoice | None = VoteChoice.YES
    elif sovereign_choices:
        sovereign_choice = VoteChoice.NO
    else:
        sovereign_choice = None
    return Tally(
        yes=yes,
        no=len(votes) - yes,
        eligible_voter_count=eligible_voter_count,
        sovereign_choice=sovereign_choice,
    )


class VoteLedger:
    """Records votes and computes tallies"""

    def __init__(
        self,
        store: SQLiteGovernanceStore,
        registry: RuleRegistry,
        gate: AuthorizationGate,
        membership: MembershipProvider,
        time_provider: TimeProvider,
        event_sink: EventSink | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.gate = gate
        self.membership = membership
        self.time_provider = time_provider
        self.event_sink = event_sink or LoggingEventSink()

    def cast_vote(self, command: CastVote, actor_id: str) -> Vote:
        """
        Record a vote

        Raises:
            ProposalNotFound: No such proposal
            NotPending: Proposal already resolved
            ProposalExpired: Deadline reached (even if not yet swept)
            NotMember, InsufficientRank: Voter not allowed
            AlreadyVoted: Voter already voted on this proposal
        """
        with LogOperation(
            logger,
            "cast_vote",
            proposal_id=command.proposal_id,
            choice=command.choice.value,
            voter_id=actor_id,
        ):
            try:
                return self._cast_vote(command, actor_id)
            except (AuthorizationError, ConflictError, StateError) as e:
                votes_refused_total.labels(reason=type(e).__name__).inc()
                raise

    def _cast_vote(self, command: CastVote, actor_id: str) -> Vote:
        now = self.time_provider.now()
        proposal = self._load(command.proposal_id)
        self._require_open(proposal, now)

        rule = self.registry.get_rule(proposal.law_kind, proposal.governance_kind)
        rank = self.gate.require_vote(rule, proposal.community_id, actor_id)

        vote = Vote(
            vote_id=generate_id("vote"),
            proposal_id=proposal.proposal_id,
            voter_id=actor_id,
            voter_rank=rank,
            choice=command.choice,
            created_at=now,
        )
        event = create_audit_event(
            VOTE_CAST,
            proposal.proposal_id,
            proposal.community_id,
            occurred_at=now,
            actor_id=actor_id,
            payload={"choice": vote.choice.value, "voter_rank": rank},
        )
        if not self.store.insert_vote(vote, now, event):
            # Resolved or expired between our read and the insert
            current = self._load(proposal.proposal_id)
            self._require_open(current, now)
            raise NotPending(current.proposal_id, current.status.value)
        self.event_sink.emit(event)

        votes_cast_total.labels(law_kind=proposal.law_kind, choice=vote.choice.value).inc()
        return vote

    def _load(self, proposal_id: str) -> Proposal:
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None:
            raise ProposalNotFound(proposal_id)
        return proposal

    def _require_open(self, proposal: Proposal, now: datetime) -> None:
        if not proposal.is_pending():
            raise NotPending(proposal.proposal_id, proposal.status.value)
        if proposal.is_expired(now):
            raise ProposalExpired(proposal.proposal_id, proposal.expires_at)

    def eligible_voter_count(self, proposal: Proposal) -> int:
        rule = self.registry.get_rule(proposal.law_kind, proposal.governance_kind)
        return self.membership.count_members(proposal.community_id, rule.vote_ranks)

    def tally_for(self, proposal: Proposal) -> Tally:
        return compute_tally(
            self.store.list_votes(proposal.proposal_id),
            self.eligible_voter_count(proposal),
        )

    def tally(self, proposal_id: str) -> Tally:
        """
        Current counts for a proposal (read-only)

        Raises:
            ProposalNotFound: No such proposal
        """
        return self.tally_for(self._load(proposal_id))

    def list_votes(self, proposal_id: str) -> list[Vote]:
        self._load(proposal_id)
        return self.store.list_votes(proposal_id)
