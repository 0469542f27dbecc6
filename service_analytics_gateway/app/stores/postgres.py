"""
PostgreSQL persistence for roles, agency links, app grants and audit rows.
"""

import asyncio
from typing import Iterable, List, Optional

import asyncpg

from shared.errors import ExternalServiceError
from shared.logging import get_logger

from ..domain.models import AccessGrant, Role, RoleAssignment


_STORE_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id VARCHAR(255) PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        tier VARCHAR(20) NOT NULL DEFAULT 'standard'
            CHECK (tier IN ('trial', 'standard', 'enterprise')),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        user_id VARCHAR(255) NOT NULL,
        organization_id VARCHAR(255) REFERENCES organizations(id) ON DELETE CASCADE,
        role VARCHAR(40) NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        CHECK (organization_id IS NOT NULL OR role = 'SUPER_ADMIN')
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_user_roles_user ON user_roles(user_id);
    """,
    """
    CREATE TABLE IF NOT EXISTS agency_clients (
        agency_org_id VARCHAR(255) NOT NULL REFERENCES organizations(id),
        client_org_id VARCHAR(255) NOT NULL REFERENCES organizations(id),
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        PRIMARY KEY (agency_org_id, client_org_id),
        CHECK (agency_org_id <> client_org_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS org_app_access (
        id BIGSERIAL PRIMARY KEY,
        organization_id VARCHAR(255) NOT NULL REFERENCES organizations(id),
        app_id VARCHAR(255) NOT NULL,
        attached_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        detached_at TIMESTAMP WITH TIME ZONE
    );
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_org_app_access_active
        ON org_app_access(organization_id, app_id) WHERE detached_at IS NULL;
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_logs (
        id BIGSERIAL PRIMARY KEY,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
        request_id VARCHAR(64),
        user_id VARCHAR(255),
        organization_ids TEXT[] NOT NULL DEFAULT '{}',
        requested_app_ids TEXT[] NOT NULL DEFAULT '{}',
        resolved_app_ids TEXT[] NOT NULL DEFAULT '{}',
        status VARCHAR(20) NOT NULL
            CHECK (status IN ('success', 'denied', 'error', 'cancelled')),
        error_category VARCHAR(40),
        latency_ms DOUBLE PRECISION NOT NULL,
        cache_hit BOOLEAN
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_audit_logs_user ON audit_logs(user_id, created_at DESC);
    """,
)


class PostgresAccessStore:
    """asyncpg-backed RoleStore, AgencyLinkStore and AccessGrantStore."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("gateway.stores.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the pool and make sure the schema exists."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )
            async with self.pool.acquire() as conn:
                for statement in _SCHEMA:
                    await conn.execute(statement)

            self.logger.info("PostgreSQL access store started")

        except _STORE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL access store", error=str(e))
            raise ExternalServiceError("access_store", str(e)) from e

    async def stop(self):
        """Close the pool."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL access store stopped")

    async def roles_for(self, user_id: str) -> List[RoleAssignment]:
        rows = await self._fetch(
            "SELECT organization_id, role FROM user_roles WHERE user_id = $1",
            user_id,
        )
        assignments = []
        for row in rows:
            try:
                assignments.append(
                    RoleAssignment(
                        user_id=user_id,
                        role=Role.parse(row["role"]),
                        organization_id=row["organization_id"],
                    )
                )
            except ValueError as e:
                # Unknown role names grant nothing.
                self.logger.warning(
                    "Skipping unusable role assignment",
                    user_id=user_id,
                    role=row["role"],
                    organization_id=row["organization_id"],
                    error=str(e),
                )
        return assignments

    async def active_clients_of(self, organization_id: str) -> List[str]:
        rows = await self._fetch(
            """
            SELECT ac.client_org_id
            FROM agency_clients ac
            JOIN organizations o ON o.id = ac.client_org_id
            WHERE ac.agency_org_id = $1
              AND ac.is_active = TRUE
              AND o.is_active = TRUE
            ORDER BY ac.client_org_id
            """,
            organization_id,
        )
        return [row["client_org_id"] for row in rows]

    async def active_grants_for(self, organization_ids: Iterable[str]) -> List[AccessGrant]:
        organization_ids = sorted(set(organization_ids))
        if not organization_ids:
            return []
        rows = await self._fetch(
            """
            SELECT organization_id, app_id, attached_at, detached_at
            FROM org_app_access
            WHERE organization_id = ANY($1::varchar[])
              AND detached_at IS NULL
            """,
            organization_ids,
        )
        return [
            AccessGrant(
                organization_id=row["organization_id"],
                app_id=row["app_id"],
                attached_at=row["attached_at"],
                detached_at=row["detached_at"],
            )
            for row in rows
        ]

    async def ping(self) -> bool:
        """Check database health."""
        try:
            await self._fetch("SELECT 1")
            return True
        except ExternalServiceError:
            return False

    async def _fetch(self, query: str, *args) -> List[asyncpg.Record]:
        if self.pool is None:
            raise ExternalServiceError("access_store", "store not started")
        try:
            async with self.pool.acquire() as conn:
                return await conn.fetch(query, *args)
        except _STORE_ERRORS as e:
            self.logger.error("Access store query failed", error=str(e))
            raise ExternalServiceError("access_store", str(e)) from e
