"""
Resolution Engine - Moves proposals from PENDING to PASSED or REJECTED, once

Four paths lead to a terminal state: the expiry sweep, a sovereign fast-track,
instant rules (zero-length window) and, when enabled, early resolution after a
decisive vote. All of them go through the same compare-and-swap on status, so
whichever resolver commits first wins and every other one skips silently. Only
the winner dispatches the law.

Fun fact: Sweeps run happily in parallel - two cron jobs, a CLI call and a
web worker can all resolve the same backlog and each proposal still fires once.
"""

import sqlite3
from datetime import datetime

from governance_engine.kernel.errors import (
    GovernanceError,
    NotFastTrackable,
    NotPending,
    ProposalNotFound,
)
from governance_engine.kernel.events import (
    PROPOSAL_PASSED,
    PROPOSAL_REJECTED,
    EventSink,
    LoggingEventSink,
    create_audit_event,
)
from governance_engine.kernel.logging import LogOperation, get_logger
from governance_engine.kernel.metrics import (
    proposals_resolved_total,
    resolution_races_lost_total,
    sweep_duration_seconds,
)
from governance_engine.kernel.settings import EngineSettings
from governance_engine.kernel.store import SQLiteGovernanceStore
from governance_engine.kernel.time import TimeProvider
from governance_engine.laws.authorization import AuthorizationGate
from governance_engine.laws.commands import FastTrack
from governance_engine.laws.conditions import (
    Outcome,
    determine_early_outcome,
    evaluate_passing_condition,
)
from governance_engine.laws.execution import ExecutionDispatcher, ExecutionOutcome
from governance_engine.laws.models import ExecutionStatus, Proposal, ProposalStatus, Tally
from governance_engine.laws.rules import RuleRegistry
from governance_engine.laws.votes import VoteLedger

logger = get_logger(__name__)

FAST_TRACK_NOTES = "Fast-tracked by sovereign"
INSTANT_NOTES = "Instant rule auto-resolved"


class SweepResult:
    """
    Result of one resolve_expired call

    Counts only cover transitions this call performed; proposals resolved by a
    concurrent resolver show up as skipped.
    """

    def __init__(self, swept_at: datetime, batch_size: int) -> None:
        self.swept_at = swept_at
        self.batch_size = batch_size
        self.processed = 0
        self.passed = 0
        self.rejected = 0
        self.skipped = 0
        self.errors = 0
        self.execution_failures = 0
        self.resolved_ids: list[str] = []

    @property
    def resolved(self) -> int:
        return self.passed + self.rejected

    @property
    def has_more(self) -> bool:
        """The batch was full, so more expired proposals may be waiting"""
        return self.processed >= self.batch_size

    def summary(self) -> str:
        parts = [
            f"Sweep at {self.swept_at.isoformat()}",
            f"processed {self.processed}",
            f"passed {self.passed}",
            f"rejected {self.rejected}",
        ]
        if self.skipped:
            parts.append(f"skipped {self.skipped}")
        if self.errors:
            parts.append(f"errors {self.errors}")
        if self.execution_failures:
            parts.append(f"execution failures {self.execution_failures}")
        return " | ".join(parts)


class ResolutionEngine:
    """
    Applies passing conditions and performs terminal transitions

    The engine never holds a lock. Correctness rests on the store's
    conditional UPDATE returning zero rows to every resolver but the first.
    """

    def __init__(
        self,
        store: SQLiteGovernanceStore,
        registry: RuleRegistry,
        gate: AuthorizationGate,
        ledger: VoteLedger,
        dispatcher: ExecutionDispatcher,
        time_provider: TimeProvider,
        settings: EngineSettings,
        event_sink: EventSink | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.gate = gate
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.time_provider = time_provider
        self.settings = settings
        self.event_sink = event_sink or LoggingEventSink()

    def resolve_expired(self, limit: int | None = None) -> SweepResult:
        """
        Resolve PENDING proposals whose deadline has passed

        Each proposal is resolved independently; a failure on one is logged and
        counted, and the sweep continues.

        Args:
            limit: Batch size (defaults to settings.sweep_batch_size)
        """
        now = self.time_provider.now()
        batch_size = limit or self.settings.sweep_batch_size
        result = SweepResult(now, batch_size)

        with sweep_duration_seconds.time(), LogOperation(
            logger, "resolve_expired", batch_size=batch_size
        ):
            for proposal in self.store.list_expired_pending(now, batch_size):
                result.processed += 1
                try:
                    self._resolve_one(proposal, now, result)
                except (GovernanceError, sqlite3.Error) as e:
                    result.errors += 1
                    logger.error(
                        "Failed to resolve proposal",
                        proposal_id=proposal.proposal_id,
                        law_kind=proposal.law_kind,
                        error_type=type(e).__name__,
                        reason=str(e),
                    )

        if result.processed:
            logger.info(
                "Sweep finished",
                processed=result.processed,
                passed=result.passed,
                rejected=result.rejected,
                skipped=result.skipped,
                errors=result.errors,
                has_more=result.has_more,
            )
        return result

    def _resolve_one(self, proposal: Proposal, now: datetime, result: SweepResult) -> None:
        rule = self.registry.get_rule(proposal.law_kind, proposal.governance_kind)
        tally = self.ledger.tally_for(proposal)
        if rule.is_instant:
            # Caught before its proposer's resolve_instant ran; it still passes
            outcome = Outcome(status=ProposalStatus.PASSED, notes=INSTANT_NOTES)
        else:
            outcome = evaluate_passing_condition(rule.passing_condition, tally)

        resolved = self._transition(proposal, outcome, now, path="sweep", tally=tally)
        if resolved is None:
            result.skipped += 1
            return
        resolved_proposal, execution = resolved
        result.resolved_ids.append(resolved_proposal.proposal_id)
        if outcome.passed:
            result.passed += 1
        else:
            result.rejected += 1
        if execution is not None and execution.status == ExecutionStatus.FAILED:
            result.execution_failures += 1

    def fast_track(self, command: FastTrack, actor_id: str) -> Proposal:
        """
        Pass a proposal immediately on the sovereign's word

        Raises:
            ProposalNotFound: No such proposal
            NotPending: Already resolved (including losing the race to a sweep)
            NotFastTrackable: The rule does not allow fast-tracking
            NotMember, InsufficientRank: Actor is not the sovereign
        """
        with LogOperation(
            logger, "fast_track", proposal_id=command.proposal_id, actor_id=actor_id
        ):
            proposal = self.store.get_proposal(command.proposal_id)
            if proposal is None:
                raise ProposalNotFound(command.proposal_id)
            if not proposal.is_pending():
                raise NotPending(proposal.proposal_id, proposal.status.value)

            rule = self.registry.get_rule(proposal.law_kind, proposal.governance_kind)
            if not rule.can_fast_track:
                raise NotFastTrackable(
                    proposal.proposal_id, proposal.law_kind, proposal.governance_kind
                )
            self.gate.require_fast_track(rule, proposal.community_id, actor_id)

            outcome = Outcome(status=ProposalStatus.PASSED, notes=FAST_TRACK_NOTES)
            resolved = self._transition(
                proposal, outcome, self.time_provider.now(), path="fast_track", actor_id=actor_id
            )
            if resolved is None:
                current = self.store.get_proposal(proposal.proposal_id)
                status = current.status.value if current else proposal.status.value
                raise NotPending(proposal.proposal_id, status)
            return resolved[0]

    def resolve_instant(self, proposal: Proposal) -> Proposal:
        """
        Pass a just-created proposal whose rule has a zero-length window

        Returns the proposal unchanged if its rule is not instant or another
        resolver got there first.
        """
        rule = self.registry.get_rule(proposal.law_kind, proposal.governance_kind)
        if not rule.is_instant:
            return proposal
        outcome = Outcome(status=ProposalStatus.PASSED, notes=INSTANT_NOTES)
        resolved = self._transition(
            proposal, outcome, self.time_provider.now(), path="instant"
        )
        if resolved is None:
            return self.store.get_proposal(proposal.proposal_id) or proposal
        return resolved[0]

    def resolve_early(self, proposal_id: str) -> Proposal | None:
        """
        Resolve before the deadline if the outcome can no longer change

        Returns:
            The resolved proposal, or None if still undecided, already
            resolved, or early resolution is disabled
        """
        if not self.settings.early_resolution:
            return None
        proposal = self.store.get_proposal(proposal_id)
        if proposal is None or not proposal.is_pending():
            return None

        rule = self.registry.get_rule(proposal.law_kind, proposal.governance_kind)
        tally = self.ledger.tally_for(proposal)
        outcome = determine_early_outcome(rule.passing_condition, tally)
        if outcome is None:
            return None

        resolved = self._transition(
            proposal, outcome, self.time_provider.now(), path="early", tally=tally
        )
        return resolved[0] if resolved else None

    def _transition(
        self,
        proposal: Proposal,
        outcome: Outcome,
        now: datetime,
        path: str,
        actor_id: str | None = None,
        tally: Tally | None = None,
    ) -> tuple[Proposal, ExecutionOutcome | None] | None:
        """
        CAS PENDING → outcome.status, then dispatch if passed

        Returns:
            (resolved proposal, execution outcome) if this call won the swap,
            None if another resolver already resolved the proposal
        """
        event_type = PROPOSAL_PASSED if outcome.passed else PROPOSAL_REJECTED
        payload: dict[str, object] = {
            "law_kind": proposal.law_kind,
            "path": path,
            "notes": outcome.notes,
        }
        if tally is not None:
            payload["tally"] = tally.model_dump()
        event = create_audit_event(
            event_type,
            proposal.proposal_id,
            proposal.community_id,
            occurred_at=now,
            actor_id=actor_id,
            payload=payload,
        )

        if not self.store.transition_status(
            proposal.proposal_id, outcome.status, now, outcome.notes, event
        ):
            resolution_races_lost_total.labels(path=path).inc()
            logger.debug(
                "Proposal already resolved by another resolver",
                proposal_id=proposal.proposal_id,
                path=path,
            )
            return None

        self.event_sink.emit(event)
        proposals_resolved_total.labels(
            law_kind=proposal.law_kind, status=outcome.status.value, path=path
        ).inc()
        logger.info(
            "Proposal resolved",
            proposal_id=proposal.proposal_id,
            law_kind=proposal.law_kind,
            status=outcome.status.value,
            path=path,
        )

        execution = None
        if outcome.passed:
            claimed = self.store.get_proposal(proposal.proposal_id)
            if claimed is None:
                raise ProposalNotFound(proposal.proposal_id)
            execution = self.dispatcher.dispatch(claimed)

        current = self.store.get_proposal(proposal.proposal_id)
        if current is None:
            raise ProposalNotFound(proposal.proposal_id)
        return current, execution
