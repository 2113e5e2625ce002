"""
Laws Module - Proposals, votes, resolution and execution

- Rule registry: who may propose and vote on which law, and how it passes
- Proposal lifecycle: one pending proposal per community and law kind
- Vote ledger: one vote per member, only while voting is open
- Resolution: single-fire PENDING → PASSED | REJECTED
- Execution: passed laws dispatched to handlers, failures retried
"""

from governance_engine.laws.models import (
    GovernanceKind,
    GovernanceRule,
    LawKind,
    PassingCondition,
    Proposal,
    ProposalStatus,
    Tally,
    Vote,
    VoteChoice,
)

__all__ = [
    "LawKind",
    "GovernanceKind",
    "GovernanceRule",
    "PassingCondition",
    "Proposal",
    "ProposalStatus",
    "Vote",
    "VoteChoice",
    "Tally",
]
