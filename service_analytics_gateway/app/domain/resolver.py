"""
Access resolution for analytics queries.

Turns a verified identity plus the organization it asked for into the exact
set of organizations and application identifiers the request may read.
This is the single place where privilege is computed.
"""

from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence, Union

from shared.errors import ForbiddenError, MissingScopeError
from shared.logging import get_logger

from ..identity import IdentityContext
from .models import (
    AccessDecision,
    AccessDenied,
    PrivilegeLevel,
    RoleAssignment,
    ScopeSource,
)

if TYPE_CHECKING:
    from ..stores.base import AccessGrantStore, AgencyLinkStore, RoleStore


class AccessResolver:
    """Combines role, agency-link and grant stores into an AccessDecision.

    Resolution is a pure read: no store mutation and no caching, so two
    calls against unchanged stores always agree.

    Rules:

    - A platform-wide role takes precedence over any organization role. The
      caller must name an organization (``MissingScopeError`` otherwise) and
      that organization becomes the anchor.
    - Otherwise the caller's membership is the anchor. Naming another
      organization is only allowed when one of the caller's organizations
      actively manages it as an agency (``ForbiddenError`` otherwise).
    - Own and platform-selected anchors are widened with the clients they
      actively manage. Delegated anchors are not widened further, so
      delegation stays one level deep.
    - The application set is the union of active grants across the
      organization set, intersected with the caller's explicit subset.
      An empty result is returned as ``AccessDenied``.
    """

    def __init__(
        self,
        role_store: "RoleStore",
        agency_link_store: "AgencyLinkStore",
        access_grant_store: "AccessGrantStore",
    ):
        self.role_store = role_store
        self.agency_link_store = agency_link_store
        self.access_grant_store = access_grant_store
        self.logger = get_logger("gateway.resolver")

    async def resolve(
        self,
        identity: IdentityContext,
        requested_organization_id: Optional[str] = None,
        requested_app_ids: Optional[Sequence[str]] = None,
    ) -> Union[AccessDecision, AccessDenied]:
        assignments = await self.role_store.roles_for(identity.user_id)

        if any(assignment.is_platform_wide for assignment in assignments):
            if not requested_organization_id:
                raise MissingScopeError(
                    "Platform caller must select an organization",
                    details={"user_id": identity.user_id},
                )
            anchor = requested_organization_id
            privilege = PrivilegeLevel.PLATFORM
            scope_source = ScopeSource.PLATFORM_ADMIN_SELECTION
        else:
            anchor, privilege, scope_source = await self._anchor_for_member(
                identity, assignments, requested_organization_id
            )

        organization_ids = {anchor}
        if privilege is not PrivilegeLevel.DELEGATED:
            organization_ids.update(await self.agency_link_store.active_clients_of(anchor))

        grants = await self.access_grant_store.active_grants_for(sorted(organization_ids))
        app_ids = {grant.app_id for grant in grants}

        if requested_app_ids:
            app_ids &= set(requested_app_ids)

        if not app_ids:
            self.logger.info(
                "Access resolved to an empty application set",
                user_id=identity.user_id,
                anchor_organization_id=anchor,
                organization_ids=sorted(organization_ids),
                privilege=privilege.value,
            )
            return AccessDenied(
                anchor_organization_id=anchor,
                organization_ids=frozenset(organization_ids),
                privilege=privilege,
                reason="no_active_grants" if not grants else "no_requested_app_granted",
            )

        decision = AccessDecision(
            anchor_organization_id=anchor,
            organization_ids=frozenset(organization_ids),
            app_ids=frozenset(app_ids),
            privilege=privilege,
            scope_source=scope_source,
        )
        self.logger.debug(
            "Access resolved",
            user_id=identity.user_id,
            anchor_organization_id=anchor,
            organization_ids=decision.sorted_organization_ids,
            app_count=len(decision.app_ids),
            privilege=privilege.value,
        )
        return decision

    async def _anchor_for_member(
        self,
        identity: IdentityContext,
        assignments: List[RoleAssignment],
        requested_organization_id: Optional[str],
    ):
        memberships = sorted({assignment.organization_id for assignment in assignments})

        if not memberships:
            raise ForbiddenError(
                "User is not assigned to an organization",
                details={"user_id": identity.user_id},
            )

        if requested_organization_id is None:
            if len(memberships) > 1:
                raise MissingScopeError(
                    "User belongs to several organizations and must select one",
                    details={"user_id": identity.user_id, "memberships": memberships},
                )
            return memberships[0], PrivilegeLevel.MEMBER, ScopeSource.USER_MEMBERSHIP

        if requested_organization_id in memberships:
            return requested_organization_id, PrivilegeLevel.MEMBER, ScopeSource.USER_MEMBERSHIP

        if await self._manages(memberships, requested_organization_id):
            return requested_organization_id, PrivilegeLevel.DELEGATED, ScopeSource.AGENCY_DELEGATION

        self.logger.warning(
            "Cross-organization access attempt",
            user_id=identity.user_id,
            memberships=memberships,
            requested_organization_id=requested_organization_id,
        )
        raise ForbiddenError(
            "Requested organization is outside the caller's memberships and agency links",
            details={"user_id": identity.user_id, "requested_organization_id": requested_organization_id},
        )

    async def _manages(self, agency_ids: Iterable[str], client_id: str) -> bool:
        for agency_id in agency_ids:
            if client_id in await self.agency_link_store.active_clients_of(agency_id):
                return True
        return False
