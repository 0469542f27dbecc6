"""
Analytics query gateway package for the tenant analytics dashboard.

The gateway sits between an authenticated user and the shared analytics
warehouse, enforcing:
- Identity: bearer credentials verified against the identity provider JWKS
- Access resolution: memberships, agency->client links and app grants
- Caching: a bounded, short-lived, process-local result cache
- Auditing: one record per request, best effort

Structure:
- app.main: FastAPI app, routes, and dependency wiring.
- app.identity: Credential verification into an IdentityContext.
- app.stores: Read accessors over roles, agency links and grants.
- app.domain: Data model, AccessResolver, QueryPlanner, GatewayService.
- app.caching: ResultCache.
- app.adapters: Warehouse client and audit sinks.
"""
