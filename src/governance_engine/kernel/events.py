"""
Audit events - the append-only record of what the engine decided

Every state change (a proposal created, a vote cast, a terminal transition, a
law executed) is written as an AuditEvent in the same transaction as the change
itself, so the audit trail can never disagree with the tables.

Fun fact: Medieval parliaments kept "rolls" - parchment sheets sewn end to end
and literally rolled up. Entries were added, never scraped off.
"""

from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, Field

from governance_engine.kernel.ids import generate_id
from governance_engine.kernel.logging import get_logger

logger = get_logger(__name__)

# Event type names
PROPOSAL_CREATED = "ProposalCreated"
VOTE_CAST = "VoteCast"
PROPOSAL_PASSED = "ProposalPassed"
PROPOSAL_REJECTED = "ProposalRejected"
LAW_EXECUTED = "LawExecuted"
LAW_EXECUTION_FAILED = "LawExecutionFailed"
LAW_EXECUTION_SKIPPED = "LawExecutionSkipped"


class AuditEvent(BaseModel):
    """
    Immutable fact about a proposal

    Attributes:
        event_id: Unique event identifier (time-ordered)
        event_type: One of the event type names above
        proposal_id: Proposal the event concerns
        community_id: Community the proposal belongs to
        actor_id: Who caused it (None for the resolution sweep)
        occurred_at: UTC timestamp
        payload: Event-specific data (JSON-serializable)
    """

    event_id: str
    event_type: str
    proposal_id: str
    community_id: str
    actor_id: str | None = None
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


def create_audit_event(
    event_type: str,
    proposal_id: str,
    community_id: str,
    occurred_at: datetime,
    actor_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> AuditEvent:
    """
    Factory function to create an audit event with a fresh time-ordered id

    Args:
        event_type: One of the event type names above
        proposal_id: Proposal the event concerns
        community_id: Community of the proposal
        occurred_at: When it happened
        actor_id: Who caused it
        payload: Event-specific data

    Returns:
        Immutable AuditEvent
    """
    return AuditEvent(
        event_id=generate_id("evt"),
        event_type=event_type,
        proposal_id=proposal_id,
        community_id=community_id,
        actor_id=actor_id,
        occurred_at=occurred_at,
        payload=payload or {},
    )


class EventSink(Protocol):
    """Optional observability sink notified after an event is committed"""

    def emit(self, event: AuditEvent) -> None:
        ...


class LoggingEventSink:
    """Default sink: one structured log line per audit event"""

    def emit(self, event: AuditEvent) -> None:
        logger.info(
            "audit_event",
            event_type=event.event_type,
            proposal_id=event.proposal_id,
            community_id=event.community_id,
            payload=event.payload,
        )


class RecordingEventSink:
    """Sink that keeps events in memory (tests, embedding applications)"""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def event_types(self) -> list[str]:
        return [event.event_type for event in self.events]
