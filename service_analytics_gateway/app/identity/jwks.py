"""
JSON Web Key Set (JWKS) identity verification for the analytics gateway.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

import httpx
from jose import JWTError, jwt

from shared.errors import AuthenticationError
from shared.logging import get_logger


@dataclass(frozen=True)
class IdentityContext:
    """Verified caller identity. Authority comes from the role store, not from claims."""

    user_id: str
    claims: Dict[str, Any] = field(default_factory=dict)


class JWKSIdentityVerifier:
    """Verifies bearer credentials against a remote JWKS endpoint."""

    def __init__(
        self,
        jwks_url: str,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        *,
        refresh_interval: int = 300,
        http_timeout: float = 5.0,
    ) -> None:
        self.jwks_url = jwks_url
        self.audience = audience
        self.issuer = issuer
        self.refresh_interval = refresh_interval
        self.logger = get_logger("gateway.identity.jwks")

        self._keys: Optional[Iterable[Dict[str, Any]]] = None
        self._last_refresh: float = 0.0
        self._lock = asyncio.Lock()
        self._client = httpx.AsyncClient(timeout=http_timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def warmup(self) -> None:
        """Eagerly load JWKS metadata so the first request does not pay the cost."""
        try:
            await self._refresh_keys(force=True)
        except (httpx.HTTPError, AuthenticationError) as exc:
            self.logger.warning("JWKS warmup failed", error=str(exc))

    async def verify(self, credential: Optional[str]) -> IdentityContext:
        """Validate a bearer token and return the caller identity."""
        if credential is None or not credential.strip():
            raise AuthenticationError("Missing bearer credential")

        claims = await self._validate_token(credential.strip())
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError("JWT missing subject claim")

        return IdentityContext(user_id=subject, claims=claims)

    async def check_health(self) -> str:
        """Return 'ok' if the JWKS endpoint responds correctly, otherwise 'error'."""
        try:
            await self._refresh_keys(force=False)
            return "ok"
        except (httpx.HTTPError, AuthenticationError) as exc:
            self.logger.error("JWKS health check failed", error=str(exc))
            return "error"

    async def _validate_token(self, token: str) -> Dict[str, Any]:
        """Validate the JWT and return its claims."""
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise AuthenticationError("Malformed JWT", details={"error": str(exc)}) from exc

        kid = header.get("kid")
        if not isinstance(kid, str):
            raise AuthenticationError("JWT header missing key id (kid)")

        key_data = await self._get_key(kid)
        if not key_data:
            raise AuthenticationError("Signing key not found for token", details={"kid": kid})

        algorithms = [key_data.get("alg", "RS256")]
        options: Dict[str, Any] = {"verify_aud": self.audience is not None}

        try:
            claims = jwt.decode(
                token,
                key_data,
                algorithms=algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except JWTError as exc:
            raise AuthenticationError("JWT validation failed", details={"error": str(exc)}) from exc

        return claims

    async def _get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """Fetch the JWKS and return the key matching the provided kid."""
        try:
            await self._refresh_keys(force=False)
            for key in self._keys or []:
                if key.get("kid") == kid:
                    return key

            # Key might be rotated; refresh once more eagerly.
            await self._refresh_keys(force=True)
        except httpx.HTTPError as exc:
            raise AuthenticationError("Identity provider unavailable", details={"error": str(exc)}) from exc

        for key in self._keys or []:
            if key.get("kid") == kid:
                return key
        return None

    async def _refresh_keys(self, *, force: bool) -> None:
        """Refresh the JWKS if the cache is stale."""
        now = time.time()
        if not force and self._keys is not None and (now - self._last_refresh) < self.refresh_interval:
            return

        async with self._lock:
            if not force and self._keys is not None and (time.time() - self._last_refresh) < self.refresh_interval:
                return

            response = await self._client.get(self.jwks_url)
            response.raise_for_status()
            payload = response.json()
            keys = payload.get("keys")
            if not isinstance(keys, list):
                raise AuthenticationError("JWKS response missing 'keys' array")

            self._keys = keys
            self._last_refresh = time.time()
