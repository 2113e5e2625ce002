"""
Law Commands - What members ask the engine to do

Commands are validated for shape here and against the rule table and store by
the lifecycle manager, vote ledger and resolution engine. They can be refused;
once accepted they become audit events, which can't.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from governance_engine.laws.models import VoteChoice, normalize_law_kind


class ProposeLaw(BaseModel):
    """
    Propose a law in a community

    The community's current governance kind selects the rule; metadata must
    carry the rule's required fields.
    """

    community_id: str = Field(..., min_length=1)
    law_kind: str = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("law_kind")
    @classmethod
    def _normalize_law_kind(cls, value: str) -> str:
        return normalize_law_kind(value)


class CastVote(BaseModel):
    """Vote YES or NO on a pending proposal"""

    proposal_id: str = Field(..., min_length=1)
    choice: VoteChoice

    @field_validator("choice", mode="before")
    @classmethod
    def _parse_choice(cls, value: Any) -> Any:
        if isinstance(value, str):
            return VoteChoice.parse(value)
        return value


class FastTrack(BaseModel):
    """Sovereign forces immediate passage of a pending proposal"""

    proposal_id: str = Field(..., min_length=1)
