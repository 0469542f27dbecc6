"""
Outbound adapters: the analytics warehouse and the audit sinks.
"""

from .audit_sink import AuditSink, InMemoryAuditSink, LoggingAuditSink, PostgresAuditSink
from .warehouse_client import WarehouseClient

__all__ = [
    "AuditSink",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "PostgresAuditSink",
    "WarehouseClient",
]
