"""
Execution Dispatcher - Turns passed laws into effects on other systems

Handlers are looked up by law kind. A dispatch only ever happens for a
proposal whose execution claim (execution_status = PENDING) this process holds:
the claim is taken by the same compare-and-swap that passes the proposal, or by
the FAILED → PENDING swap of a retry. That makes dispatch at-most-once per claim,
and the proposal id doubles as the idempotency key handed to external services.

A failing handler never un-passes a law. The failure is appended to the
proposal's resolution notes and the execution can be retried.

Fun fact: Royal assent in the UK is still given in Norman French - "La Reyne le
veult" ("The Queen wills it"). Passing and executing have always been two steps.
"""

from typing import Protocol

from pydantic import BaseModel

from governance_engine.kernel.errors import ExecutionError, ProposalNotFound
from governance_engine.kernel.events import (
    LAW_EXECUTED,
    LAW_EXECUTION_FAILED,
    LAW_EXECUTION_SKIPPED,
    EventSink,
    LoggingEventSink,
    create_audit_event,
)
from governance_engine.kernel.logging import LogOperation, get_logger
from governance_engine.kernel.metrics import law_executions_total
from governance_engine.kernel.store import SQLiteGovernanceStore
from governance_engine.kernel.time import TimeProvider
from governance_engine.laws.models import (
    ExecutionStatus,
    LawKind,
    Proposal,
    normalize_governance_kind,
    normalize_law_kind,
)
from governance_engine.laws.services import CommunityService, ConflictService

logger = get_logger(__name__)


class ExecutionResult(BaseModel):
    """What a handler did"""

    detail: str
    reference: str | None = None  # id of the created external object, if any


class ExecutionOutcome(BaseModel):
    """Result of one dispatch, as recorded on the proposal"""

    proposal_id: str
    law_kind: str
    status: ExecutionStatus
    detail: str | None = None
    reference: str | None = None
    error: ExecutionError | None = None

    model_config = {"arbitrary_types_allowed": True}

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCEEDED


class LawHandler(Protocol):
    """Applies a passed law. Raise ExecutionError on failure."""

    def execute(self, proposal: Proposal) -> ExecutionResult:
        ...


def parse_rate(value: object, label: str = "tax rate") -> float:
    """
    Validate a tax or tariff rate

    Only real numbers are accepted; "0.1" as a string is refused like any
    other non-number.

    Raises:
        ValueError: If the value is not a number in [0, 1]
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{label} must be a number, got {value!r}")
    rate = float(value)
    if not 0.0 <= rate <= 1.0:
        raise ValueError(f"{label} must be between 0 and 1, got {rate}")
    return rate


def _require(proposal: Proposal, field: str) -> str:
    value = proposal.metadata.get(field)
    if value is None or str(value).strip() == "":
        raise ExecutionError(proposal.proposal_id, proposal.law_kind, f"metadata {field} missing")
    return str(value)


class DeclareWarHandler:
    """DECLARE_WAR: open a conflict against the target community"""

    def __init__(self, conflicts: ConflictService) -> None:
        self.conflicts = conflicts

    def execute(self, proposal: Proposal) -> ExecutionResult:
        target = _require(proposal, "target_community_id")
        if target == proposal.community_id:
            raise ExecutionError(
                proposal.proposal_id, proposal.law_kind, "a community cannot declare war on itself"
            )
        conflict_id = self.conflicts.open_conflict(
            proposal.community_id, target, idempotency_key=proposal.proposal_id
        )
        return ExecutionResult(detail=f"Conflict opened against {target}", reference=conflict_id)


class ProposeHeirHandler:
    """PROPOSE_HEIR: record the named successor"""

    def __init__(self, communities: CommunityService) -> None:
        self.communities = communities

    def execute(self, proposal: Proposal) -> ExecutionResult:
        heir = _require(proposal, "target_user_id")
        self.communities.set_successor(proposal.community_id, heir)
        return ExecutionResult(detail=f"Successor set to {heir}", reference=heir)


class ChangeGovernanceHandler:
    """CHANGE_GOVERNANCE: switch the community's ruling structure"""

    def __init__(
        self, communities: CommunityService, known_kinds: set[str] | None = None
    ) -> None:
        self.communities = communities
        self.known_kinds = known_kinds

    def execute(self, proposal: Proposal) -> ExecutionResult:
        new_kind = normalize_governance_kind(_require(proposal, "new_governance_type"))
        if self.known_kinds is not None and new_kind not in self.known_kinds:
            raise ExecutionError(
                proposal.proposal_id, proposal.law_kind, f"unknown governance kind {new_kind}"
            )
        self.communities.set_governance_kind(proposal.community_id, new_kind)
        return ExecutionResult(detail=f"Governance changed to {new_kind}", reference=new_kind)


class MessageOfTheDayHandler:
    """MESSAGE_OF_THE_DAY: publish the announcement"""

    def __init__(self, communities: CommunityService) -> None:
        self.communities = communities

    def execute(self, proposal: Proposal) -> ExecutionResult:
        title = _require(proposal, "title")
        content = _require(proposal, "content")
        self.communities.set_announcement(proposal.community_id, title, content)
        return ExecutionResult(detail=f"Announcement published: {title}")


class WorkTaxHandler:
    """WORK_TAX: set the community's work tax rate"""

    def __init__(self, communities: CommunityService) -> None:
        self.communities = communities

    def execute(self, proposal: Proposal) -> ExecutionResult:
        try:
            rate = parse_rate(proposal.metadata.get("tax_rate"))
        except ValueError as e:
            raise ExecutionError(proposal.proposal_id, proposal.law_kind, str(e)) from e
        self.communities.set_work_tax_rate(proposal.community_id, rate)
        return ExecutionResult(detail=f"Work tax set to {rate:.2%}")


class ImportTariffHandler:
    """IMPORT_TARIFF: set the tariff on goods sold by merchants from other communities"""

    def __init__(self, communities: CommunityService) -> None:
        self.communities = communities

    def execute(self, proposal: Proposal) -> ExecutionResult:
        try:
            rate = parse_rate(proposal.metadata.get("tariff_rate"), "tariff rate")
        except ValueError as e:
            raise ExecutionError(proposal.proposal_id, proposal.law_kind, str(e)) from e
        self.communities.set_import_tariff_rate(proposal.community_id, rate)
        return ExecutionResult(detail=f"Import tariff set to {rate:.2%}")


class ExecutionDispatcher:
    """
    Routes passed proposals to law handlers and records the outcome

    One handler per law kind; registering a second raises ValueError.
    """

    def __init__(
        self,
        store: SQLiteGovernanceStore,
        time_provider: TimeProvider,
        event_sink: EventSink | None = None,
    ) -> None:
        self.store = store
        self.time_provider = time_provider
        self.event_sink = event_sink or LoggingEventSink()
        self._handlers: dict[str, LawHandler] = {}

    def register(self, law_kind: str, handler: LawHandler) -> None:
        """
        Register the handler for a law kind

        Raises:
            ValueError: If a handler is already registered for this law kind
        """
        law_kind = normalize_law_kind(law_kind)
        if law_kind in self._handlers:
            raise ValueError(
                f"Law handler already registered for {law_kind}. "
                "Each law kind has exactly one handler."
            )
        self._handlers[law_kind] = handler
        logger.debug("Law handler registered", law_kind=law_kind)

    def handler_for(self, law_kind: str) -> LawHandler | None:
        return self._handlers.get(normalize_law_kind(law_kind))

    def registered_law_kinds(self) -> list[str]:
        return sorted(self._handlers)

    def dispatch(self, proposal: Proposal) -> ExecutionOutcome:
        """
        Run the handler for a PASSED proposal whose execution claim is held

        Never raises for handler failures; they come back as a FAILED outcome.
        """
        handler = self.handler_for(proposal.law_kind)
        if handler is None:
            logger.warning(
                "No law handler registered, execution skipped",
                proposal_id=proposal.proposal_id,
                law_kind=proposal.law_kind,
            )
            outcome = ExecutionOutcome(
                proposal_id=proposal.proposal_id,
                law_kind=proposal.law_kind,
                status=ExecutionStatus.SKIPPED,
                detail="no handler registered",
            )
            self._record(proposal, outcome, LAW_EXECUTION_SKIPPED, note=None)
            return outcome

        with LogOperation(
            logger,
            "execute_law",
            proposal_id=proposal.proposal_id,
            law_kind=proposal.law_kind,
        ):
            try:
                result = handler.execute(proposal)
            except ExecutionError as e:
                error = e
            except Exception as e:  # handler bugs and service outages alike
                logger.error(
                    "Law handler raised unexpectedly",
                    proposal_id=proposal.proposal_id,
                    law_kind=proposal.law_kind,
                    exc_info=True,
                )
                error = ExecutionError(proposal.proposal_id, proposal.law_kind, str(e))
            else:
                outcome = ExecutionOutcome(
                    proposal_id=proposal.proposal_id,
                    law_kind=proposal.law_kind,
                    status=ExecutionStatus.SUCCEEDED,
                    detail=result.detail,
                    reference=result.reference,
                )
                self._record(proposal, outcome, LAW_EXECUTED, note=None)
                return outcome

        outcome = ExecutionOutcome(
            proposal_id=proposal.proposal_id,
            law_kind=proposal.law_kind,
            status=ExecutionStatus.FAILED,
            detail=error.reason,
            error=error,
        )
        self._record(
            proposal, outcome, LAW_EXECUTION_FAILED, note=f"Execution failed: {error.reason}"
        )
        return outcome

    def retry_execution(self, proposal_id: str) -> ExecutionOutcome | None:
        """
        Dispatch a FAILED execution again

        Returns:
            The new outcome, or None if the execution was not FAILED (already
            retried by someone else, succeeded, or never passed)

        Raises:
            ProposalNotFound: If the proposal does not exist
        """
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None:
            raise ProposalNotFound(proposal_id)
        if not self.store.claim_execution_retry(proposal_id):
            logger.info(
                "Execution retry not claimed",
                proposal_id=proposal_id,
                execution_status=proposal.execution_status,
            )
            return None
        claimed = self.store.get_proposal(proposal_id)
        if claimed is None:
            raise ProposalNotFound(proposal_id)
        return self.dispatch(claimed)

    def retry_failed_executions(self, limit: int | None = None) -> list[ExecutionOutcome]:
        """Retry every FAILED execution; returns the outcomes of claimed retries"""
        outcomes = []
        for proposal in self.store.list_by_execution_status(ExecutionStatus.FAILED, limit):
            outcome = self.retry_execution(proposal.proposal_id)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def list_failed_executions(self) -> list[Proposal]:
        return self.store.list_by_execution_status(ExecutionStatus.FAILED)

    def list_stalled_executions(self) -> list[Proposal]:
        """PASSED proposals whose dispatch was interrupted before recording"""
        return self.store.list_by_execution_status(ExecutionStatus.PENDING)

    def _record(
        self,
        proposal: Proposal,
        outcome: ExecutionOutcome,
        event_type: str,
        note: str | None,
    ) -> None:
        event = create_audit_event(
            event_type,
            proposal.proposal_id,
            proposal.community_id,
            occurred_at=self.time_provider.now(),
            payload={
                "law_kind": proposal.law_kind,
                "status": outcome.status.value,
                "detail": outcome.detail,
                "reference": outcome.reference,
            },
        )
        recorded = self.store.record_execution(
            proposal.proposal_id, outcome.status, note, event
        )
        law_executions_total.labels(
            law_kind=proposal.law_kind, status=outcome.status.value.lower()
        ).inc()
        if not recorded:
            logger.warning(
                "Execution outcome not recorded, claim no longer held",
                proposal_id=proposal.proposal_id,
                status=outcome.status.value,
            )
            return
        self.event_sink.emit(event)


def register_builtin_handlers(
    dispatcher: ExecutionDispatcher,
    communities: CommunityService,
    conflicts: ConflictService | None = None,
    known_governance_kinds: set[str] | None = None,
) -> None:
    """
    Register the shipped handlers

    DECLARE_WAR is only registered when a conflict service is available;
    without one, passed war declarations are recorded as SKIPPED.
    """
    if conflicts is not None:
        dispatcher.register(LawKind.DECLARE_WAR.value, DeclareWarHandler(conflicts))
    dispatcher.register(LawKind.PROPOSE_HEIR.value, ProposeHeirHandler(communities))
    dispatcher.register(
        LawKind.CHANGE_GOVERNANCE.value,
        ChangeGovernanceHandler(communities, known_governance_kinds),
    )
    dispatcher.register(LawKind.MESSAGE_OF_THE_DAY.value, MessageOfTheDayHandler(communities))
    dispatcher.register(LawKind.WORK_TAX.value, WorkTaxHandler(communities))
    dispatcher.register(LawKind.IMPORT_TARIFF.value, ImportTariffHandler(communities))
