"""
GovernanceEngine - Main façade

The one object applications talk to. It wires the rule registry, the store,
the authorization gate, the proposal manager, the vote ledger, the resolution
engine and the execution dispatcher together, and exposes the governance
operations as plain method calls.

Example:
    >>> from governance_engine import GovernanceEngine
    >>> from governance_engine.directory import SQLiteDirectory
    >>> directory = SQLiteDirectory("governance.db")
    >>> engine = GovernanceEngine.with_directory(directory)
    >>> proposal = engine.propose_law(
    ...     "northmarch", "queen-ada", "DECLARE_WAR", {"target_community_id": "southreach"}
    ... )
    >>> engine.cast_vote(proposal.proposal_id, "queen-ada", "yes")
    >>> engine.resolve_expired()  # run periodically
"""

import sqlite3
from typing import Any

from governance_engine.kernel.errors import GovernanceError
from governance_engine.kernel.events import AuditEvent, EventSink, LoggingEventSink
from governance_engine.kernel.logging import get_logger
from governance_engine.kernel.settings import EngineSettings
from governance_engine.kernel.store import SQLiteGovernanceStore
from governance_engine.kernel.time import RealTimeProvider, TimeProvider
from governance_engine.laws.authorization import AuthorizationGate
from governance_engine.laws.commands import CastVote, FastTrack, ProposeLaw
from governance_engine.laws.execution import (
    ExecutionDispatcher,
    ExecutionOutcome,
    LawHandler,
    register_builtin_handlers,
)
from governance_engine.laws.models import (
    Proposal,
    ProposalStatus,
    ProposalView,
    Tally,
    Vote,
    VoteChoice,
)
from governance_engine.laws.proposals import ProposalLifecycleManager
from governance_engine.laws.resolution import ResolutionEngine, SweepResult
from governance_engine.laws.rules import LawDefinition, RuleRegistry, default_registry
from governance_engine.laws.services import (
    CommunityService,
    ConflictService,
    MembershipProvider,
)
from governance_engine.laws.votes import VoteLedger

logger = get_logger(__name__)


class GovernanceEngine:
    """
    Governance law proposal & voting engine

    Provides:
    - Proposing laws, gated by rank and the community's governance kind
    - Voting, one vote per member per proposal, inside the voting window
    - Resolution by expiry sweep, sovereign fast-track, instant rules and
      (optionally) early resolution
    - Execution of passed laws through registered handlers, with retry
    """

    def __init__(
        self,
        membership: MembershipProvider,
        communities: CommunityService,
        conflicts: ConflictService | None = None,
        settings: EngineSettings | None = None,
        registry: RuleRegistry | None = None,
        time_provider: TimeProvider | None = None,
        event_sink: EventSink | None = None,
        register_builtins: bool = True,
    ) -> None:
        """
        Initialize the engine

        Args:
            membership: Rank lookups
            communities: Community settings (governance kind, successor, ...)
            conflicts: Conflict service for DECLARE_WAR (skipped if None)
            settings: Engine settings (defaults if None)
            registry: Rule table (settings.rules_path or the built-in table if None)
            time_provider: Clock (real time if None)
            event_sink: Observability sink (structured logs if None)
            register_builtins: Register the shipped law handlers
        """
        self.settings = settings or EngineSettings()
        if registry is None:
            registry = (
                RuleRegistry.from_json(self.settings.rules_path)
                if self.settings.rules_path
                else default_registry()
            )
        self.registry = registry
        self.time_provider = time_provider or RealTimeProvider()
        self.event_sink = event_sink or LoggingEventSink()

        self.store = SQLiteGovernanceStore(
            self.settings.db_path, busy_timeout_seconds=self.settings.busy_timeout_seconds
        )
        self.gate = AuthorizationGate(membership)
        self.proposals = ProposalLifecycleManager(
            self.store, self.registry, self.gate, communities, self.time_provider, self.event_sink
        )
        self.ledger = VoteLedger(
            self.store, self.registry, self.gate, membership, self.time_provider, self.event_sink
        )
        self.dispatcher = ExecutionDispatcher(self.store, self.time_provider, self.event_sink)
        if register_builtins:
            register_builtin_handlers(
                self.dispatcher,
                communities,
                conflicts,
                known_governance_kinds=self.registry.governance_kinds(),
            )
        self.resolution = ResolutionEngine(
            self.store,
            self.registry,
            self.gate,
            self.ledger,
            self.dispatcher,
            self.time_provider,
            self.settings,
            self.event_sink,
        )
        self.communities = communities

    @classmethod
    def with_directory(
        cls,
        directory: Any,
        settings: EngineSettings | None = None,
        **kwargs: Any,
    ) -> "GovernanceEngine":
        """Engine whose membership, community and conflict services are one directory"""
        return cls(directory, directory, directory, settings=settings, **kwargs)

    # Proposals

    def propose_law(
        self,
        community_id: str,
        actor_id: str,
        law_kind: str,
        metadata: dict[str, Any] | None = None,
    ) -> Proposal:
        """
        Propose a law

        Instant rules (zero-length window) are passed and executed before this
        returns; the returned proposal then shows status PASSED.
        """
        command = ProposeLaw(
            community_id=community_id, law_kind=law_kind, metadata=metadata or {}
        )
        proposal = self.proposals.propose(command, actor_id)
        return self.resolution.resolve_instant(proposal)

    def get_proposal(self, proposal_id: str) -> Proposal:
        return self.proposals.get_proposal(proposal_id)

    def get_proposal_details(self, proposal_id: str) -> dict[str, Any]:
        """Proposal, tally, votes and audit trail in one JSON-ready dict"""
        proposal = self.proposals.get_proposal(proposal_id)
        tally = self.ledger.tally_for(proposal)
        rule = self.proposals.rule_for(proposal)
        now = self.time_provider.now()
        return {
            "proposal": proposal.model_dump(mode="json"),
            "tally": tally.model_dump(mode="json"),
            "rule": {
                "passing_condition": rule.passing_condition.value,
                "can_fast_track": rule.can_fast_track,
                "vote_ranks": sorted(rule.vote_ranks),
            },
            "time_remaining_seconds": (
                int(proposal.time_remaining(now).total_seconds())
                if proposal.is_pending()
                else 0
            ),
            "votes": [vote.model_dump(mode="json") for vote in self.ledger.list_votes(proposal_id)],
            "events": [event.model_dump(mode="json") for event in self.audit_log(proposal_id)],
        }

    def list_proposals(
        self, community_id: str, status: ProposalStatus | str | None = None
    ) -> list[ProposalView]:
        """Proposals of a community, newest first, each with its current tally"""
        if isinstance(status, str):
            status = ProposalStatus(status.upper())
        return [
            ProposalView(proposal=proposal, tally=self.ledger.tally_for(proposal))
            for proposal in self.proposals.list_proposals(community_id, status)
        ]

    def list_available_laws(
        self, community_id: str, actor_id: str | None = None
    ) -> list[LawDefinition]:
        """
        Laws available under the community's governance kind

        With an actor, only the laws that actor's rank may propose.
        """
        governance_kind = self.communities.get_governance_kind(community_id)
        laws = self.registry.list_laws(governance_kind)
        if actor_id is None:
            return laws
        rank = self.gate.resolve_rank(community_id, actor_id)
        proposable = set(self.registry.list_proposable(governance_kind, rank))
        return [law for law in laws if law.law_kind in proposable]

    # Votes

    def cast_vote(self, proposal_id: str, actor_id: str, choice: VoteChoice | str) -> Vote:
        """
        Cast a vote

        With early resolution enabled, a vote that decides the outcome resolves
        the proposal before this returns.
        """
        command = CastVote(proposal_id=proposal_id, choice=choice)
        vote = self.ledger.cast_vote(command, actor_id)
        try:
            self.resolution.resolve_early(proposal_id)
        except (GovernanceError, sqlite3.Error) as e:
            # The vote is committed; the expiry sweep resolves the proposal later
            logger.error(
                "Early resolution failed",
                proposal_id=proposal_id,
                error_type=type(e).__name__,
                reason=str(e),
            )
        return vote

    def tally(self, proposal_id: str) -> Tally:
        return self.ledger.tally(proposal_id)

    def list_votes(self, proposal_id: str) -> list[Vote]:
        return self.ledger.list_votes(proposal_id)

    # Resolution

    def fast_track(self, proposal_id: str, actor_id: str) -> Proposal:
        return self.resolution.fast_track(FastTrack(proposal_id=proposal_id), actor_id)

    def resolve_expired(self, limit: int | None = None) -> int:
        """
        Resolve expired proposals (one batch)

        Returns:
            Number of proposals this call resolved
        """
        return self.sweep(limit).resolved

    def sweep(self, limit: int | None = None) -> SweepResult:
        """Like resolve_expired, with the full per-batch report"""
        return self.resolution.resolve_expired(limit)

    # Execution

    def register_handler(self, law_kind: str, handler: LawHandler) -> None:
        self.dispatcher.register(law_kind, handler)

    def retry_execution(self, proposal_id: str) -> ExecutionOutcome | None:
        return self.dispatcher.retry_execution(proposal_id)

    def retry_failed_executions(self) -> list[ExecutionOutcome]:
        return self.dispatcher.retry_failed_executions()

    def list_stalled_executions(self) -> list[Proposal]:
        return self.dispatcher.list_stalled_executions()

    # Audit

    def audit_log(self, proposal_id: str | None = None, limit: int | None = None) -> list[AuditEvent]:
        return self.store.list_events(proposal_id, limit)
