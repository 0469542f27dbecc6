"""
In-memory access store.

Backs local development (optionally seeded from a JSON file) and serves as
the store double in tests. Implements RoleStore, AgencyLinkStore and
AccessGrantStore, plus the administrative operations needed to arrange data.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from shared.logging import get_logger

from ..domain.models import (
    AccessGrant,
    AgencyLink,
    Organization,
    OrganizationTier,
    Role,
    RoleAssignment,
)


class InMemoryAccessStore:
    """Dictionary-backed store honouring the same invariants as the relational schema."""

    def __init__(self) -> None:
        self.logger = get_logger("gateway.stores.memory")
        self._organizations: Dict[str, Organization] = {}
        self._roles: Dict[str, List[RoleAssignment]] = {}
        self._links: Dict[tuple, AgencyLink] = {}
        self._grants: List[AccessGrant] = []

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    # Read side -----------------------------------------------------------

    async def roles_for(self, user_id: str) -> List[RoleAssignment]:
        return list(self._roles.get(user_id, []))

    async def active_clients_of(self, organization_id: str) -> List[str]:
        clients = []
        for link in self._links.values():
            if link.agency_organization_id != organization_id or not link.active:
                continue
            client = self._organizations.get(link.client_organization_id)
            if client is not None and not client.active:
                continue
            clients.append(link.client_organization_id)
        return sorted(clients)

    async def active_grants_for(self, organization_ids: Iterable[str]) -> List[AccessGrant]:
        wanted = set(organization_ids)
        return [
            grant for grant in self._grants
            if grant.organization_id in wanted and grant.active
        ]

    # Administrative side -------------------------------------------------

    def add_organization(
        self,
        organization_id: str,
        name: Optional[str] = None,
        tier: OrganizationTier = OrganizationTier.STANDARD,
        active: bool = True,
    ) -> Organization:
        organization = Organization(organization_id, name or organization_id, tier, active)
        self._organizations[organization_id] = organization
        return organization

    def deactivate_organization(self, organization_id: str) -> None:
        self._organizations[organization_id].active = False

    def assign_role(self, user_id: str, role: Union[Role, str], organization_id: Optional[str] = None) -> RoleAssignment:
        if not isinstance(role, Role):
            role = Role.parse(role)
        assignment = RoleAssignment(user_id=user_id, role=role, organization_id=organization_id)
        assignments = self._roles.setdefault(user_id, [])
        if assignment not in assignments:
            assignments.append(assignment)
        return assignment

    def link_agency(self, agency_organization_id: str, client_organization_id: str, active: bool = True) -> AgencyLink:
        link = AgencyLink(agency_organization_id, client_organization_id, active)
        self._links[(agency_organization_id, client_organization_id)] = link
        return link

    def deactivate_agency_link(self, agency_organization_id: str, client_organization_id: str) -> None:
        key = (agency_organization_id, client_organization_id)
        link = self._links[key]
        self._links[key] = AgencyLink(link.agency_organization_id, link.client_organization_id, active=False)

    def attach_app(self, organization_id: str, app_id: str, attached_at: Optional[datetime] = None) -> AccessGrant:
        for grant in self._grants:
            if grant.organization_id == organization_id and grant.app_id == app_id and grant.active:
                raise ValueError(f"App {app_id} is already attached to {organization_id}")
        grant = AccessGrant(
            organization_id=organization_id,
            app_id=app_id,
            attached_at=attached_at or datetime.now(timezone.utc),
        )
        self._grants.append(grant)
        return grant

    def detach_app(self, organization_id: str, app_id: str, detached_at: Optional[datetime] = None) -> AccessGrant:
        for index, grant in enumerate(self._grants):
            if grant.organization_id == organization_id and grant.app_id == app_id and grant.active:
                detached = AccessGrant(
                    organization_id=grant.organization_id,
                    app_id=grant.app_id,
                    attached_at=grant.attached_at,
                    detached_at=detached_at or datetime.now(timezone.utc),
                )
                self._grants[index] = detached
                return detached
        raise KeyError(f"No active grant for {app_id} on {organization_id}")

    # Seeding -------------------------------------------------------------

    @classmethod
    def from_seed(cls, seed: Union[str, Path, Dict[str, Any]]) -> "InMemoryAccessStore":
        """Build a store from a seed document or a path to one.

        Expected keys: ``organizations``, ``role_assignments``,
        ``agency_links`` and ``access_grants``; each is a list of objects.
        """
        if not isinstance(seed, dict):
            seed = json.loads(Path(seed).read_text(encoding="utf-8"))

        store = cls()
        for item in seed.get("organizations", []):
            store.add_organization(
                item["id"],
                item.get("name"),
                OrganizationTier(item.get("tier", OrganizationTier.STANDARD.value)),
                item.get("active", True),
            )
        for item in seed.get("role_assignments", []):
            store.assign_role(item["user_id"], item["role"], item.get("organization_id"))
        for item in seed.get("agency_links", []):
            store.link_agency(item["agency_id"], item["client_id"], item.get("active", True))
        for item in seed.get("access_grants", []):
            grant = store.attach_app(
                item["organization_id"],
                item["app_id"],
                _parse_timestamp(item.get("attached_at")),
            )
            if item.get("detached_at"):
                store.detach_app(grant.organization_id, grant.app_id, _parse_timestamp(item["detached_at"]))

        store.logger.info(
            "Seeded in-memory access store",
            organizations=len(store._organizations),
            users=len(store._roles),
            agency_links=len(store._links),
            grants=len(store._grants),
        )
        return store


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
