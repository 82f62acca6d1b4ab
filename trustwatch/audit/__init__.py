"""Audit trail: categorized, hash-chained, retention-bounded event store."""

from trustwatch.audit.logger import AuditLogger
from trustwatch.audit.schemas import (
    SYSTEM_ACTOR,
    AuditCategory,
    AuditEvent,
    AuditResult,
    AuditSeverity,
)
from trustwatch.audit.store import AuditTrailStore

__all__ = [
    "SYSTEM_ACTOR",
    "AuditCategory",
    "AuditEvent",
    "AuditLogger",
    "AuditResult",
    "AuditSeverity",
    "AuditTrailStore",
]
