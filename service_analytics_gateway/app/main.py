"""
Analytics query gateway service.
"""

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from pydantic import ValidationError as PydanticValidationError

from shared.base_service import BaseService
from shared.config import AnalyticsGatewayConfig, get_gateway_config
from shared.errors import ValidationError

from .adapters import LoggingAuditSink, PostgresAuditSink, WarehouseClient
from .caching import ResultCache
from .domain import AccessResolver, GatewayService, QueryPlanner
from .domain.models import AnalyticsQueryRequest
from .identity import JWKSIdentityVerifier
from .stores import InMemoryAccessStore, PostgresAccessStore


class AnalyticsGatewayService(BaseService):
    """HTTP front of the tenant-scoped analytics gateway.

    Collaborators may be injected; anything not injected is built from
    configuration. Without ``postgres_dsn`` the access data lives in memory
    (optionally seeded from ``seed_file``) and audit records go to the log.
    """

    def __init__(
        self,
        config: Optional[AnalyticsGatewayConfig] = None,
        *,
        store=None,
        identity_verifier=None,
        warehouse=None,
        audit_sink=None,
    ):
        super().__init__(config or get_gateway_config())

        self.store = store if store is not None else self._build_store()
        self.audit_sink = audit_sink if audit_sink is not None else self._build_audit_sink()
        self.identity_verifier = identity_verifier or JWKSIdentityVerifier(
            self.config.jwks_url,
            audience=self.config.jwks_audience,
            issuer=self.config.jwks_issuer,
        )
        self.warehouse = warehouse or WarehouseClient(
            self.config.clickhouse_url,
            database=self.config.clickhouse_database,
            timeout=self.config.warehouse_timeout_seconds,
        )
        self.cache = ResultCache(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
        )
        self.gateway = GatewayService(
            identity_verifier=self.identity_verifier,
            resolver=AccessResolver(self.store, self.store, self.store),
            planner=QueryPlanner(self.config.warehouse_table),
            cache=self.cache,
            warehouse=self.warehouse,
            audit_sink=self.audit_sink,
            metrics=self.metrics,
            audit_timeout=self.config.audit_timeout_seconds,
        )
        self.app.state.gateway_service = self.gateway
        self._sweeper: Optional[asyncio.Task] = None

        @self.app.on_event("startup")
        async def _startup():
            await self.store.start()
            await self.identity_verifier.warmup()
            self._sweeper = asyncio.create_task(self._sweep_cache_periodically())

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self._sweeper is not None:
                self._sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._sweeper
            await self.warehouse.close()
            await self.identity_verifier.close()
            await self.store.stop()

        self._setup_gateway_routes()

    def _build_store(self):
        if self.config.postgres_dsn:
            return PostgresAccessStore(self.config.postgres_dsn)
        if self.config.seed_file:
            self.logger.info("Seeding in-memory access store", seed_file=self.config.seed_file)
            return InMemoryAccessStore.from_seed(self.config.seed_file)
        self.logger.warning("No postgres_dsn or seed_file configured; access store is empty")
        return InMemoryAccessStore()

    def _build_audit_sink(self):
        if isinstance(self.store, PostgresAccessStore):
            return PostgresAuditSink(lambda: self.store.pool)
        return LoggingAuditSink()

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Lightweight liveness endpoint with dependency status."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(value == "ok" for value in dependencies.values()) else "error"
            return {
                "service": self.service_name,
                "status": status,
                "dependencies": dependencies,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        @self.app.post("/api/v1/analytics/query")
        async def analytics_query(request: Request):
            """Run a tenant-scoped analytics query for the bearer's access set."""
            query = await self._parse_query(request)
            response = await self.gateway.execute(_bearer_credential(request), query)
            return response.to_payload()

        @self.app.get("/api/v1/cache/stats")
        async def get_cache_stats():
            """Get cache statistics."""
            return self.gateway.cache_stats()

    async def _parse_query(self, request: Request) -> AnalyticsQueryRequest:
        try:
            body = await request.json()
        except ValueError as exc:
            raise ValidationError("Request body is not valid JSON") from exc

        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        try:
            return AnalyticsQueryRequest.model_validate(body)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid analytics query",
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

    async def _sweep_cache_periodically(self):
        while True:
            await asyncio.sleep(self.config.cache_sweep_interval_seconds)
            self.cache.sweep()
            self.metrics.set_gauge("cache_entries", len(self.cache), cache_type="result")

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check gateway dependencies."""
        return {
            "warehouse": "ok" if await self.warehouse.ping() else "error",
            "identity": await self.identity_verifier.check_health(),
            "access_store": "ok" if await self.store.ping() else "error",
        }


def _bearer_credential(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, credential = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credential.strip() or None


def create_app():
    """Create FastAPI application."""
    service = AnalyticsGatewayService()
    return service.app


if __name__ == "__main__":
    service = AnalyticsGatewayService()
    service.run()
