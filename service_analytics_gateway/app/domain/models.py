"""
Access and query data models for the analytics gateway.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


SUPPORTED_DIMENSIONS = ("traffic_source",)


class OrganizationTier(str, Enum):
    """Commercial tier of an organization."""
    TRIAL = "trial"
    STANDARD = "standard"
    ENTERPRISE = "enterprise"


class Role(str, Enum):
    """Roles a user can hold."""
    SUPER_ADMIN = "SUPER_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"
    ASO_MANAGER = "ASO_MANAGER"
    ANALYST = "ANALYST"
    VIEWER = "VIEWER"
    CLIENT = "CLIENT"

    @classmethod
    def parse(cls, value: str) -> "Role":
        return cls(value.strip().upper())

    @property
    def is_platform_capable(self) -> bool:
        return self is Role.SUPER_ADMIN


class PrivilegeLevel(str, Enum):
    """How the caller reached the anchor organization."""
    PLATFORM = "platform"
    MEMBER = "member"
    DELEGATED = "delegated"


class ScopeSource(str, Enum):
    PLATFORM_ADMIN_SELECTION = "platform_admin_selection"
    USER_MEMBERSHIP = "user_membership"
    AGENCY_DELEGATION = "agency_delegation"


class AuditOutcome(str, Enum):
    SUCCESS = "success"
    DENIED = "denied"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class Organization:
    """Tenant organization. Never hard-deleted."""
    organization_id: str
    name: str
    tier: OrganizationTier = OrganizationTier.STANDARD
    active: bool = True


@dataclass(frozen=True)
class RoleAssignment:
    """A role held by a user, either inside one organization or platform-wide."""
    user_id: str
    role: Role
    organization_id: Optional[str] = None

    def __post_init__(self):
        if self.organization_id is None and not self.role.is_platform_capable:
            raise ValueError(f"Role {self.role.value} requires an organization")
        if self.organization_id is not None and not self.organization_id.strip():
            raise ValueError("organization_id must not be blank")

    @property
    def is_platform_wide(self) -> bool:
        return self.organization_id is None


@dataclass(frozen=True)
class AgencyLink:
    """Directional agency -> client relationship."""
    agency_organization_id: str
    client_organization_id: str
    active: bool = True

    def __post_init__(self):
        if self.agency_organization_id == self.client_organization_id:
            raise ValueError("An organization cannot manage itself")


@dataclass(frozen=True)
class AccessGrant:
    """Permission for an organization to see warehouse rows of one app."""
    organization_id: str
    app_id: str
    attached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    detached_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.detached_at is None


@dataclass(frozen=True)
class TimeRange:
    """Closed date interval. Ordering is checked by the planner."""
    start: date
    end: date

    def normalized(self) -> Tuple[str, str]:
        return self.start.isoformat(), self.end.isoformat()


@dataclass(frozen=True)
class AccessDecision:
    """What a single request may read. Computed fresh per request."""
    anchor_organization_id: str
    organization_ids: FrozenSet[str]
    app_ids: FrozenSet[str]
    privilege: PrivilegeLevel
    scope_source: ScopeSource

    @property
    def sorted_organization_ids(self) -> List[str]:
        return sorted(self.organization_ids)

    @property
    def sorted_app_ids(self) -> List[str]:
        return sorted(self.app_ids)


@dataclass(frozen=True)
class AccessDenied:
    """Resolution finished but nothing is readable. A reportable outcome, not a failure."""
    anchor_organization_id: str
    organization_ids: FrozenSet[str]
    privilege: PrivilegeLevel
    reason: str


@dataclass(frozen=True)
class AuditRecord:
    """One append-only entry per request."""
    outcome: AuditOutcome
    user_id: Optional[str] = None
    request_id: Optional[str] = None
    organization_ids: Tuple[str, ...] = ()
    requested_app_ids: Tuple[str, ...] = ()
    resolved_app_ids: Tuple[str, ...] = ()
    error_category: Optional[str] = None
    latency_ms: float = 0.0
    cache_hit: Optional[bool] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "user_id": self.user_id,
            "organization_ids": list(self.organization_ids),
            "requested_app_ids": list(self.requested_app_ids),
            "resolved_app_ids": list(self.resolved_app_ids),
            "outcome": self.outcome.value,
            "error_category": self.error_category,
            "latency_ms": round(self.latency_ms, 2),
            "cache_hit": self.cache_hit,
        }


class TimeRangeModel(BaseModel):
    """Inbound time range; accepts ``start``/``end`` and legacy ``from``/``to``."""
    start: date = Field(..., validation_alias=AliasChoices("start", "from"))
    end: date = Field(..., validation_alias=AliasChoices("end", "to"))

    def to_time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)


class AnalyticsQueryRequest(BaseModel):
    """Request model for an analytics query."""
    organization_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("organizationId", "organization_id", "org_id"),
        description="Organization to scope to; required for platform callers",
    )
    time_range: TimeRangeModel = Field(
        ...,
        validation_alias=AliasChoices("timeRange", "date_range", "dateRange"),
    )
    app_ids: Optional[List[str]] = Field(
        None,
        validation_alias=AliasChoices("appIds", "app_ids", "selectedApps"),
        description="Optional subset of application identifiers",
    )
    dimension_filters: Dict[str, List[str]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("dimensionFilters", "dimension_filters"),
    )
    traffic_sources: Optional[List[str]] = Field(
        None,
        validation_alias=AliasChoices("trafficSources", "traffic_sources"),
    )

    @field_validator("organization_id")
    @classmethod
    def _blank_organization_is_absent(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("app_ids")
    @classmethod
    def _normalize_app_ids(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        seen: Dict[str, None] = {}
        for app_id in value:
            app_id = app_id.strip()
            if app_id:
                seen.setdefault(app_id, None)
        return list(seen)

    @field_validator("dimension_filters")
    @classmethod
    def _known_dimensions(cls, value: Dict[str, List[str]]) -> Dict[str, List[str]]:
        unknown = set(value) - set(SUPPORTED_DIMENSIONS)
        if unknown:
            raise ValueError(f"Unsupported dimensions: {sorted(unknown)}")
        return value

    def effective_dimension_filters(self) -> Dict[str, List[str]]:
        """Merge the legacy ``trafficSources`` list into the dimension filters."""
        filters = {key: list(values) for key, values in self.dimension_filters.items()}
        if self.traffic_sources:
            filters.setdefault("traffic_source", [])
            filters["traffic_source"].extend(
                source for source in self.traffic_sources if source not in filters["traffic_source"]
            )
        return filters


class QueryMeta(BaseModel):
    """Response metadata."""
    model_config = ConfigDict(populate_by_name=True)

    organization_scope: List[str] = Field(..., alias="organizationScope")
    app_ids_resolved: List[str] = Field(..., alias="appIdsResolved")
    cache_hit: bool = Field(..., alias="cacheHit")
    query_duration_ms: int = Field(..., alias="queryDurationMs")
    row_count: int = Field(..., alias="rowCount")
    scope_source: str = Field(..., alias="scopeSource")
    time_range: Dict[str, str] = Field(..., alias="timeRange")
    timestamp: datetime


class AnalyticsQueryResponse(BaseModel):
    """Response model for a successful analytics query."""
    rows: List[Dict[str, Any]]
    meta: QueryMeta

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
