"""
Analytics query orchestration.

One ``execute`` call walks a request through identity verification, access
resolution, planning, the result cache and (on a miss) the warehouse, then
writes exactly one audit record for whatever terminal state it reached.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from shared.errors import AccessDeniedError, AccessLayerException
from shared.logging import get_logger, get_request_id
from shared.metrics import MetricsCollector

from .models import (
    AccessDenied,
    AnalyticsQueryRequest,
    AnalyticsQueryResponse,
    AuditOutcome,
    AuditRecord,
    QueryMeta,
)
from .planner import apply_dimension_filters


@dataclass
class _RequestTrace:
    """What is known about a request so far; becomes its audit record."""

    requested_app_ids: Tuple[str, ...] = ()
    user_id: Optional[str] = None
    organization_ids: Tuple[str, ...] = ()
    resolved_app_ids: Tuple[str, ...] = ()
    cache_hit: Optional[bool] = None

    def to_record(self, outcome: AuditOutcome, started: float, error_category: Optional[str] = None) -> AuditRecord:
        return AuditRecord(
            outcome=outcome,
            user_id=self.user_id,
            request_id=get_request_id(),
            organization_ids=self.organization_ids,
            requested_app_ids=self.requested_app_ids,
            resolved_app_ids=self.resolved_app_ids,
            error_category=error_category,
            latency_ms=(time.perf_counter() - started) * 1000,
            cache_hit=self.cache_hit,
        )


class GatewayService:
    """Entry point for tenant-scoped analytics queries.

    Failures never populate the cache and are never retried here. Audit
    writes are bounded by ``audit_timeout`` and their failures are logged
    and counted, never raised.
    """

    def __init__(
        self,
        identity_verifier,
        resolver,
        planner,
        cache,
        warehouse,
        audit_sink,
        *,
        metrics: Optional[MetricsCollector] = None,
        audit_timeout: float = 2.0,
    ):
        self.identity_verifier = identity_verifier
        self.resolver = resolver
        self.planner = planner
        self.cache = cache
        self.warehouse = warehouse
        self.audit_sink = audit_sink
        self.metrics = metrics
        self.audit_timeout = audit_timeout
        self.logger = get_logger("gateway.service")

    async def execute(self, credential: Optional[str], request: AnalyticsQueryRequest) -> AnalyticsQueryResponse:
        started = time.perf_counter()
        trace = _RequestTrace(requested_app_ids=tuple(request.app_ids or ()))

        try:
            identity = await self.identity_verifier.verify(credential)
            trace.user_id = identity.user_id

            resolution = await self.resolver.resolve(identity, request.organization_id, request.app_ids)
            trace.organization_ids = tuple(sorted(resolution.organization_ids))
            if isinstance(resolution, AccessDenied):
                raise AccessDeniedError(
                    "Access resolved to an empty application set",
                    details={"reason": resolution.reason, "anchor": resolution.anchor_organization_id},
                )
            trace.resolved_app_ids = tuple(resolution.sorted_app_ids)

            time_range = request.time_range.to_time_range()
            filters = request.effective_dimension_filters()
            query, key = self.planner.plan(resolution, time_range, filters)

            rows = self.cache.get(key)
            trace.cache_hit = rows is not None
            self._count("cache_hits_total" if trace.cache_hit else "cache_misses_total", cache_type="result")
            if rows is None:
                rows = tuple(await self._query_warehouse(query))
                self.cache.put(key, rows)
                self._set_cache_size()

            filtered = apply_dimension_filters(rows, filters)

        except AccessLayerException as exc:
            outcome = AuditOutcome.DENIED if exc.status_code < 500 else AuditOutcome.ERROR
            await self._finish(trace.to_record(outcome, started, exc.category))
            raise
        except asyncio.CancelledError:
            self.logger.info("Analytics query cancelled", user_id=trace.user_id)
            await self._finish(trace.to_record(AuditOutcome.CANCELLED, started))
            raise
        except Exception:
            self.logger.error("Analytics query failed unexpectedly", user_id=trace.user_id, exc_info=True)
            await self._finish(trace.to_record(AuditOutcome.ERROR, started, "internal_error"))
            raise

        start, end = time_range.normalized()
        response = AnalyticsQueryResponse(
            rows=filtered,
            meta=QueryMeta(
                organization_scope=list(trace.organization_ids),
                app_ids_resolved=list(trace.resolved_app_ids),
                cache_hit=trace.cache_hit,
                query_duration_ms=int((time.perf_counter() - started) * 1000),
                row_count=len(filtered),
                scope_source=resolution.scope_source.value,
                time_range={"start": start, "end": end},
                timestamp=datetime.now(timezone.utc),
            ),
        )
        await self._finish(trace.to_record(AuditOutcome.SUCCESS, started))
        return response

    async def _query_warehouse(self, query):
        started = time.perf_counter()
        status = "error"
        try:
            rows = await self.warehouse.execute(query)
            status = "ok"
            return rows
        finally:
            self._observe("warehouse_query_duration_seconds", time.perf_counter() - started, status=status)

    async def _finish(self, record: AuditRecord) -> None:
        self._count("gateway_requests_total", outcome=record.outcome.value)
        sink_name = getattr(self.audit_sink, "name", type(self.audit_sink).__name__)
        try:
            await asyncio.wait_for(self.audit_sink.append(record), timeout=self.audit_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Losing an audit row must not fail a read-only query.
            self.logger.warning(
                "Audit write failed",
                sink=sink_name,
                outcome=record.outcome.value,
                error=str(exc) or type(exc).__name__,
            )
            self._count("audit_write_failures_total", sink=sink_name)

    def _count(self, name: str, **labels: Any) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter(name, **labels)

    def _observe(self, name: str, value: float, **labels: Any) -> None:
        if self.metrics is not None:
            self.metrics.observe_histogram(name, value, **labels)

    def _set_cache_size(self) -> None:
        if self.metrics is not None:
            self.metrics.set_gauge("cache_entries", len(self.cache), cache_type="result")

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
