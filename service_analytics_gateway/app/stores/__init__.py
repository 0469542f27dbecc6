"""
Store accessors for the Gateway Service.

The gateway reads roles, agency links and app grants through the protocols
in ``base``; ``memory`` and ``postgres`` provide the implementations.
"""

from .base import AccessGrantStore, AgencyLinkStore, RoleStore
from .memory import InMemoryAccessStore
from .postgres import PostgresAccessStore

__all__ = [
    "AccessGrantStore",
    "AgencyLinkStore",
    "RoleStore",
    "InMemoryAccessStore",
    "PostgresAccessStore",
]
