"""
Audit sinks.

A sink appends exactly what it is given. Records are never updated or
deleted once written.
"""

import asyncio
from typing import List, Optional, Protocol

import asyncpg

from shared.errors import AuditWriteError
from shared.logging import get_logger

from ..domain.models import AuditRecord


class AuditSink(Protocol):
    """Append-only destination for per-request audit records."""

    name: str

    async def append(self, record: AuditRecord) -> None:
        ...


class InMemoryAuditSink:
    """Keeps records in a list. Used by tests and local runs."""

    name = "memory"

    def __init__(self):
        self._records: List[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> List[AuditRecord]:
        return list(self._records)


class LoggingAuditSink:
    """Emits each record as a structured log event."""

    name = "log"

    def __init__(self, logger_name: str = "gateway.audit"):
        self.logger = get_logger(logger_name)

    async def append(self, record: AuditRecord) -> None:
        self.logger.info("Audit record", **record.to_dict())


class PostgresAuditSink:
    """Inserts records into the ``audit_logs`` table.

    Shares the access store's pool; the table is created by the store at
    startup.
    """

    name = "postgres"

    _INSERT = """
        INSERT INTO audit_logs (
            created_at, request_id, user_id, organization_ids,
            requested_app_ids, resolved_app_ids, status,
            error_category, latency_ms, cache_hit
        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
    """

    def __init__(self, pool_provider):
        self._pool_provider = pool_provider
        self.logger = get_logger("gateway.audit.postgres")

    @property
    def pool(self) -> Optional[asyncpg.Pool]:
        return self._pool_provider()

    async def append(self, record: AuditRecord) -> None:
        pool = self.pool
        if pool is None:
            raise AuditWriteError("Audit pool not available")
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    self._INSERT,
                    record.timestamp,
                    record.request_id,
                    record.user_id,
                    list(record.organization_ids),
                    list(record.requested_app_ids),
                    list(record.resolved_app_ids),
                    record.outcome.value,
                    record.error_category,
                    record.latency_ms,
                    record.cache_hit,
                )
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise AuditWriteError(
                "Failed to insert audit record",
                details={"request_id": record.request_id, "error": str(e)},
            ) from e
