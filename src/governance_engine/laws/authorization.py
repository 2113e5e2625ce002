"""
Authorization Gate - Rank checks against governance rules

Pure evaluation: the gate reads the actor's rank from the membership provider
and compares it with the rule. It never writes anything.
"""

from governance_engine.kernel.errors import InsufficientRank, NotMember
from governance_engine.laws.models import SOVEREIGN_RANK, GovernanceRule
from governance_engine.laws.services import MembershipProvider


def can_propose(rule: GovernanceRule, rank: int) -> bool:
    return rank in rule.propose_ranks


def can_vote(rule: GovernanceRule, rank: int) -> bool:
    return rank in rule.vote_ranks


def can_fast_track(rule: GovernanceRule, rank: int) -> bool:
    """Only the sovereign, and only where the rule allows it"""
    return rule.can_fast_track and rank == SOVEREIGN_RANK


class AuthorizationGate:
    """Resolves an actor's rank and enforces a rule's rank sets"""

    def __init__(self, membership: MembershipProvider) -> None:
        self.membership = membership

    def resolve_rank(self, community_id: str, actor_id: str) -> int:
        """
        Raises:
            NotMember: If the actor holds no rank in the community
        """
        rank = self.membership.get_rank(community_id, actor_id)
        if rank is None:
            raise NotMember(community_id, actor_id)
        return rank

    def require_propose(self, rule: GovernanceRule, community_id: str, actor_id: str) -> int:
        rank = self.resolve_rank(community_id, actor_id)
        if not can_propose(rule, rank):
            raise InsufficientRank("propose", rule.law_kind, rank, rule.propose_ranks)
        return rank

    def require_vote(self, rule: GovernanceRule, community_id: str, actor_id: str) -> int:
        rank = self.resolve_rank(community_id, actor_id)
        if not can_vote(rule, rank):
            raise InsufficientRank("vote on", rule.law_kind, rank, rule.vote_ranks)
        return rank

    def require_fast_track(
        self, rule: GovernanceRule, community_id: str, actor_id: str
    ) -> int:
        rank = self.resolve_rank(community_id, actor_id)
        if not can_fast_track(rule, rank):
            raise InsufficientRank(
                "fast-track", rule.law_kind, rank, frozenset({SOVEREIGN_RANK})
            )
        return rank
