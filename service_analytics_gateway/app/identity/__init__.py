"""
Identity helpers for the analytics gateway.
"""

from .jwks import IdentityContext, JWKSIdentityVerifier

__all__ = [
    "IdentityContext",
    "JWKSIdentityVerifier",
]
