"""
Custom exceptions for the governance engine

Every failure a caller can hit maps to a specific, actionable error class so
that a UI can tell "you lack rank" apart from "someone already proposed this"
and from "voting closed".

Fun fact: Roman tribunes could veto a magistrate by shouting a single word,
"Veto!" ("I forbid!"). Our errors are a little more descriptive.
"""

from datetime import datetime


class GovernanceError(Exception):
    """Base exception for all governance engine errors"""

    pass


class StoreError(GovernanceError):
    """Raised on unexpected persistence failures"""

    pass


# Authorization errors


class AuthorizationError(GovernanceError):
    """Base class for rank-gate failures (the actor is not permitted)"""

    pass


class NotMember(AuthorizationError):
    """Raised when the actor holds no rank in the community"""

    def __init__(self, community_id: str, actor_id: str) -> None:
        self.community_id = community_id
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} is not a member of community {community_id}")


class InsufficientRank(AuthorizationError):
    """Raised when the actor's rank is not in the rule's allowed set"""

    def __init__(
        self, action: str, law_kind: str, rank: int, allowed_ranks: frozenset[int]
    ) -> None:
        self.action = action
        self.law_kind = law_kind
        self.rank = rank
        self.allowed_ranks = allowed_ranks
        super().__init__(
            f"Rank {rank} may not {action} {law_kind} "
            f"(allowed ranks: {sorted(allowed_ranks)})"
        )


# Validation errors


class ValidationError(GovernanceError):
    """Base class for malformed requests"""

    pass


class UnknownLaw(ValidationError):
    """Raised when no rule exists for (law kind, governance kind)"""

    def __init__(self, law_kind: str, governance_kind: str | None = None) -> None:
        self.law_kind = law_kind
        self.governance_kind = governance_kind
        if governance_kind is None:
            message = f"Unknown law kind: {law_kind}"
        else:
            message = f"Law {law_kind} is not available under governance {governance_kind}"
        super().__init__(message)


class MissingMetadata(ValidationError):
    """Raised when required metadata fields are absent from a proposal"""

    def __init__(self, law_kind: str, missing_fields: list[str]) -> None:
        self.law_kind = law_kind
        self.missing_fields = missing_fields
        super().__init__(
            f"Proposal for {law_kind} is missing required metadata: "
            f"{', '.join(missing_fields)}"
        )


class InvalidMetadata(ValidationError):
    """Raised when a metadata value cannot be applied"""

    def __init__(self, law_kind: str, field: str, reason: str) -> None:
        self.law_kind = law_kind
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid metadata field {field} for {law_kind}: {reason}")


# Conflict errors


class ConflictError(GovernanceError):
    """Base class for uniqueness violations detected by the store"""

    pass


class DuplicatePending(ConflictError):
    """Raised when a pending proposal already exists for (community, law kind)"""

    def __init__(self, community_id: str, law_kind: str) -> None:
        self.community_id = community_id
        self.law_kind = law_kind
        super().__init__(
            f"A proposal for {law_kind} is already pending in community {community_id}"
        )


class AlreadyVoted(ConflictError):
    """Raised when the voter already has a vote on the proposal"""

    def __init__(self, proposal_id: str, voter_id: str) -> None:
        self.proposal_id = proposal_id
        self.voter_id = voter_id
        super().__init__(f"Actor {voter_id} has already voted on proposal {proposal_id}")


class CooldownActive(ConflictError):
    """Raised when a law kind was proposed too recently in the community"""

    def __init__(self, community_id: str, law_kind: str, available_at: datetime) -> None:
        self.community_id = community_id
        self.law_kind = law_kind
        self.available_at = available_at
        super().__init__(
            f"{law_kind} cannot be proposed again in community {community_id} "
            f"until {available_at.isoformat()}"
        )


# State errors


class StateError(GovernanceError):
    """Base class for operations invalid in the proposal's current state"""

    pass


class ProposalNotFound(StateError):
    """Raised when a proposal does not exist"""

    def __init__(self, proposal_id: str) -> None:
        self.proposal_id = proposal_id
        super().__init__(f"Proposal {proposal_id} not found")


class NotPending(StateError):
    """Raised when the proposal has already been resolved"""

    def __init__(self, proposal_id: str, status: str) -> None:
        self.proposal_id = proposal_id
        self.status = status
        super().__init__(f"Proposal {proposal_id} is {status}, no longer open")


class ProposalExpired(StateError):
    """Raised when voting is attempted at or after the deadline"""

    def __init__(self, proposal_id: str, expires_at: datetime) -> None:
        self.proposal_id = proposal_id
        self.expires_at = expires_at
        super().__init__(
            f"Voting on proposal {proposal_id} closed at {expires_at.isoformat()}"
        )


class NotFastTrackable(StateError):
    """Raised when the governing rule does not allow fast-tracking"""

    def __init__(self, proposal_id: str, law_kind: str, governance_kind: str) -> None:
        self.proposal_id = proposal_id
        self.law_kind = law_kind
        self.governance_kind = governance_kind
        super().__init__(
            f"{law_kind} cannot be fast-tracked under governance {governance_kind}"
        )


# Execution errors


class ExecutionError(GovernanceError):
    """
    Raised by a law handler when its side effect fails

    The proposal stays PASSED; the failure is recorded on the proposal and the
    dispatch can be retried with the proposal id as idempotency key.
    """

    def __init__(self, proposal_id: str, law_kind: str, reason: str) -> None:
        self.proposal_id = proposal_id
        self.law_kind = law_kind
        self.reason = reason
        super().__init__(f"Execution of {law_kind} for proposal {proposal_id} failed: {reason}")
