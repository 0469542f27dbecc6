"""
Read-only accessor contracts over the persisted access data.

The gateway never writes through these interfaces; administrative mutation
lives with the relational store itself.
"""

from typing import Iterable, List, Protocol

from ..domain.models import AccessGrant, RoleAssignment


class RoleStore(Protocol):
    async def roles_for(self, user_id: str) -> List[RoleAssignment]:
        """Every role assignment held by the user."""
        ...


class AgencyLinkStore(Protocol):
    async def active_clients_of(self, organization_id: str) -> List[str]:
        """Client organizations the given agency currently manages."""
        ...


class AccessGrantStore(Protocol):
    async def active_grants_for(self, organization_ids: Iterable[str]) -> List[AccessGrant]:
        """Grants with no detach timestamp across the given organizations."""
        ...
