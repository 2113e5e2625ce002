"""
External services consumed by the engine

The engine owns proposals and votes only. Membership, community settings and
conflicts live in other systems and are reached through these narrow protocols;
`governance_engine.directory` provides a SQLite implementation of all three.
"""

from typing import Iterable, Protocol


class MembershipProvider(Protocol):
    """Source of truth for community membership and rank tiers"""

    def get_rank(self, community_id: str, actor_id: str) -> int | None:
        """Rank tier of the actor in the community, None if not a member"""
        ...

    def count_members(self, community_id: str, ranks: Iterable[int]) -> int:
        """Number of members whose rank is in `ranks`"""
        ...


class CommunityService(Protocol):
    """Community settings that passed laws change"""

    def get_governance_kind(self, community_id: str) -> str | None:
        ...

    def set_governance_kind(self, community_id: str, governance_kind: str) -> None:
        ...

    def set_successor(self, community_id: str, successor_id: str) -> None:
        ...

    def set_announcement(self, community_id: str, title: str, content: str) -> None:
        ...

    def set_work_tax_rate(self, community_id: str, rate: float) -> None:
        ...

    def set_import_tariff_rate(self, community_id: str, rate: float) -> None:
        ...


class ConflictService(Protocol):
    """Opens conflicts between communities"""

    def open_conflict(
        self,
        initiator_community_id: str,
        target_community_id: str,
        idempotency_key: str,
    ) -> str:
        """
        Open a conflict and return its id

        Calling again with the same idempotency key must return the same
        conflict instead of opening a second one.
        """
        ...
