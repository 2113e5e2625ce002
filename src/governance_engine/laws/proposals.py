"""
Proposal Lifecycle Manager - Validates and creates proposals

Creation is the only thing this module does to storage: one INSERT plus its
audit event. Uniqueness of the pending proposal per (community, law kind) is
left to the store's partial unique index, and the cooldown is re-checked inside
the INSERT, so two simultaneous proposers can never both succeed.

Fun fact: In the Athenian assembly any citizen could propose a decree - but a
proposer could later be prosecuted under the "graphe paranomon" if it was
found to break existing law. We only check rank and metadata.
"""

from datetime import datetime
from typing import Any, Callable

from governance_engine.kernel.errors import (
    AuthorizationError,
    ConflictError,
    CooldownActive,
    InvalidMetadata,
    MissingMetadata,
    ProposalNotFound,
    ValidationError,
)
from governance_engine.kernel.events import (
    PROPOSAL_CREATED,
    EventSink,
    LoggingEventSink,
    create_audit_event,
)
from governance_engine.kernel.ids import generate_id
from governance_engine.kernel.logging import LogOperation, get_logger
from governance_engine.kernel.metrics import proposals_created_total, proposals_refused_total
from governance_engine.kernel.store import SQLiteGovernanceStore
from governance_engine.kernel.time import TimeProvider
from governance_engine.laws.authorization import AuthorizationGate
from governance_engine.laws.commands import ProposeLaw
from governance_engine.laws.execution import parse_rate
from governance_engine.laws.models import (
    GovernanceRule,
    LawKind,
    Proposal,
    ProposalStatus,
    normalize_governance_kind,
)
from governance_engine.laws.rules import RuleRegistry
from governance_engine.laws.services import CommunityService

logger = get_logger(__name__)

MetadataValidator = Callable[[dict[str, Any], RuleRegistry], None]


def missing_metadata_fields(rule: GovernanceRule, metadata: dict[str, Any]) -> list[str]:
    """Required fields absent from (or null in) the metadata, sorted"""
    return sorted(
        field for field in rule.required_metadata_fields if metadata.get(field) is None
    )


def _validate_tax_rate(metadata: dict[str, Any], registry: RuleRegistry) -> None:
    try:
        parse_rate(metadata["tax_rate"])
    except ValueError as e:
        raise InvalidMetadata(LawKind.WORK_TAX.value, "tax_rate", str(e)) from e


def _validate_tariff_rate(metadata: dict[str, Any], registry: RuleRegistry) -> None:
    try:
        parse_rate(metadata["tariff_rate"], "tariff rate")
    except ValueError as e:
        raise InvalidMetadata(LawKind.IMPORT_TARIFF.value, "tariff_rate", str(e)) from e


def _validate_governance_type(metadata: dict[str, Any], registry: RuleRegistry) -> None:
    raw = metadata["new_governance_type"]
    if not isinstance(raw, str):
        raise InvalidMetadata(
            LawKind.CHANGE_GOVERNANCE.value, "new_governance_type", "must be a string"
        )
    if normalize_governance_kind(raw) not in registry.governance_kinds():
        raise InvalidMetadata(
            LawKind.CHANGE_GOVERNANCE.value,
            "new_governance_type",
            f"unknown governance kind {raw!r}",
        )


# Value checks run after the presence check, so required keys are there
METADATA_VALIDATORS: dict[str, MetadataValidator] = {
    LawKind.WORK_TAX.value: _validate_tax_rate,
    LawKind.IMPORT_TARIFF.value: _validate_tariff_rate,
    LawKind.CHANGE_GOVERNANCE.value: _validate_governance_type,
}


class ProposalLifecycleManager:
    """Creates proposals and answers questions about them"""

    def __init__(
        self,
        store: SQLiteGovernanceStore,
        registry: RuleRegistry,
        gate: AuthorizationGate,
        communities: CommunityService,
        time_provider: TimeProvider,
        event_sink: EventSink | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.gate = gate
        self.communities = communities
        self.time_provider = time_provider
        self.event_sink = event_sink or LoggingEventSink()

    def propose(self, command: ProposeLaw, actor_id: str) -> Proposal:
        """
        Create a PENDING proposal

        Args:
            command: What to propose
            actor_id: Who proposes it

        Returns:
            The persisted proposal

        Raises:
            UnknownLaw: No rule for the law under the community's governance
            NotMember, InsufficientRank: Proposer not allowed
            MissingMetadata, InvalidMetadata: Metadata incomplete or unusable
            CooldownActive: Same law proposed too recently
            DuplicatePending: A proposal of this kind is already pending
        """
        with LogOperation(
            logger,
            "propose_law",
            community_id=command.community_id,
            law_kind=command.law_kind,
            actor_id=actor_id,
        ):
            try:
                return self._propose(command, actor_id)
            except (AuthorizationError, ConflictError, ValidationError) as e:
                proposals_refused_total.labels(
                    law_kind=command.law_kind, reason=type(e).__name__
                ).inc()
                raise

    def _propose(self, command: ProposeLaw, actor_id: str) -> Proposal:
        now = self.time_provider.now()
        governance_kind = normalize_governance_kind(
            self.communities.get_governance_kind(command.community_id)
        )
        rule = self.registry.get_rule(command.law_kind, governance_kind)

        self.gate.require_propose(rule, command.community_id, actor_id)

        missing = missing_metadata_fields(rule, command.metadata)
        if missing:
            raise MissingMetadata(rule.law_kind, missing)
        validator = METADATA_VALIDATORS.get(rule.law_kind)
        if validator is not None:
            validator(command.metadata, self.registry)

        self._check_cooldown(rule, command.community_id, now)

        proposal = Proposal(
            proposal_id=generate_id("prop"),
            community_id=command.community_id,
            proposer_id=actor_id,
            law_kind=rule.law_kind,
            governance_kind=governance_kind,
            status=ProposalStatus.PENDING,
            metadata=command.metadata,
            created_at=now,
            expires_at=now + rule.voting_window,
        )
        event = create_audit_event(
            PROPOSAL_CREATED,
            proposal.proposal_id,
            proposal.community_id,
            occurred_at=now,
            actor_id=actor_id,
            payload={
                "law_kind": proposal.law_kind,
                "governance_kind": governance_kind,
                "expires_at": proposal.expires_at.isoformat(),
                "metadata": proposal.metadata,
            },
        )
        self.store.insert_proposal(proposal, event, cooldown=rule.cooldown)
        self.event_sink.emit(event)

        proposals_created_total.labels(
            law_kind=proposal.law_kind, governance_kind=governance_kind
        ).inc()
        logger.info(
            "Proposal created",
            proposal_id=proposal.proposal_id,
            law_kind=proposal.law_kind,
            expires_at=proposal.expires_at.isoformat(),
        )
        return proposal

    def _check_cooldown(self, rule: GovernanceRule, community_id: str, now: datetime) -> None:
        """Early refusal; the guarded insert is what actually enforces the cooldown"""
        if rule.cooldown is None:
            return
        last_created = self.store.last_proposal_created_at(community_id, rule.law_kind)
        if last_created is None:
            return
        available_at = last_created + rule.cooldown
        if now < available_at:
            raise CooldownActive(community_id, rule.law_kind, available_at)

    def get_proposal(self, proposal_id: str) -> Proposal:
        """
        Raises:
            ProposalNotFound: If no such proposal exists
        """
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None:
            raise ProposalNotFound(proposal_id)
        return proposal

    def list_proposals(
        self, community_id: str, status: ProposalStatus | None = None
    ) -> list[Proposal]:
        return self.store.list_proposals(community_id, status)

    def rule_for(self, proposal: Proposal) -> GovernanceRule:
        """Rule the proposal was created under (its snapshotted governance kind)"""
        return self.registry.get_rule(proposal.law_kind, proposal.governance_kind)
