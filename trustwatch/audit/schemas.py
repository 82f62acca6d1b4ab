"""
Audit Event Schemas.

An AuditEvent is immutable once built. Components create one on every notable
state transition and hand it to the AuditLogger.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trustwatch.db.models import RETENTION_7_YEARS, RETENTION_90_DAYS
from trustwatch.errors import MAX_KEY_LENGTH

SYSTEM_ACTOR = "SYSTEM"
MAX_RESOURCE_LENGTH = 512


# ── Enums ──────────────────────────────────────────────────────────────


class AuditCategory(StrEnum):
    SECURITY = "SECURITY"
    FINANCIAL = "FINANCIAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    PRIVACY = "PRIVACY"


class AuditResult(StrEnum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ALERT = "ALERT"
    ALERT_SENT = "ALERT_SENT"
    DENIED = "DENIED"
    GRANTED = "GRANTED"
    APPROVED = "APPROVED"
    BLOCKED = "BLOCKED"
    UP = "UP"
    DEGRADED = "DEGRADED"


class AuditSeverity(StrEnum):
    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


RETENTION_SECONDS: dict[AuditCategory, int] = {
    AuditCategory.SECURITY: RETENTION_90_DAYS,
    AuditCategory.CONFIDENTIAL: RETENTION_90_DAYS,
    AuditCategory.FINANCIAL: RETENTION_7_YEARS,
    AuditCategory.PRIVACY: RETENTION_7_YEARS,
}


# ── Event ──────────────────────────────────────────────────────────────


class AuditEvent(BaseModel):
    """Immutable record of a security/financial/privacy-relevant occurrence."""

    model_config = ConfigDict(frozen=True)

    category: AuditCategory
    action: str = Field(min_length=1, max_length=100)
    result: AuditResult
    severity: AuditSeverity = AuditSeverity.INFO
    actor_id: str = Field(min_length=1, max_length=MAX_KEY_LENGTH)
    timestamp: Optional[datetime] = None
    control_id: Optional[str] = None
    source_address: Optional[str] = Field(default=None, max_length=MAX_KEY_LENGTH)
    resource: Optional[str] = Field(default=None, max_length=MAX_RESOURCE_LENGTH)
    metadata: dict[str, Any] = Field(default_factory=dict)

    # Set by the store once persisted
    event_id: Optional[str] = None
    entry_hash: Optional[str] = None

    @field_validator("action", "actor_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class ChainReport(BaseModel):
    category: AuditCategory
    status: str                 # "empty" | "intact" | "broken"
    total_entries: int
    chain_intact: bool
    breaks_found: int = 0
    breaks: list[dict] = Field(default_factory=list)
