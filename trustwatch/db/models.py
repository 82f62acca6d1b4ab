"""
TrustWatch SQLAlchemy Models.

Four append-only audit tables, one per category, plus the transaction tables
the fraud scorer reads and the transaction monitor writes.

Each audit table declares its retention once, as `__retention_seconds__`.
Rows carry `expires_at` stamped at insert; the store never returns a row past
that instant and its purge sweep deletes them.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from trustwatch.db.compat import GUID, JSONType, UTCDateTime
from trustwatch.db.engine import Base

RETENTION_90_DAYS = 90 * 24 * 3600           # 7_776_000
RETENTION_7_YEARS = 7 * 365 * 24 * 3600      # 220_752_000


def _genuuid():
    return uuid.uuid4()


class AuditRecordMixin:
    """Columns shared by every audit category table.

    NO UPDATE, NO DELETE except the retention purge.
    """

    __retention_seconds__: int

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)   # chain position
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    action: Mapped[str] = mapped_column(String(100), nullable=False)
    result: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    control_id: Mapped[Optional[str]] = mapped_column(String(20))
    source_address: Mapped[Optional[str]] = mapped_column(String(255))
    resource: Mapped[Optional[str]] = mapped_column(String(512))
    details: Mapped[Optional[dict]] = mapped_column(JSONType())

    previous_hash: Mapped[Optional[str]] = mapped_column(String(64))
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)


class SecurityAuditLog(AuditRecordMixin, Base):
    __tablename__ = "tw_security_audit_log"
    __retention_seconds__ = RETENTION_90_DAYS
    __table_args__ = (
        Index("ix_tw_security_timestamp", "timestamp"),
        Index("ix_tw_security_expires", "expires_at"),
        Index("ix_tw_security_actor", "actor_id"),
    )


class FinancialAuditLog(AuditRecordMixin, Base):
    __tablename__ = "tw_financial_audit_log"
    __retention_seconds__ = RETENTION_7_YEARS
    __table_args__ = (
        Index("ix_tw_financial_timestamp", "timestamp"),
        Index("ix_tw_financial_expires", "expires_at"),
        Index("ix_tw_financial_actor", "actor_id"),
    )


class ConfidentialAccessLog(AuditRecordMixin, Base):
    __tablename__ = "tw_confidential_access_log"
    __retention_seconds__ = RETENTION_90_DAYS
    __table_args__ = (
        Index("ix_tw_confidential_timestamp", "timestamp"),
        Index("ix_tw_confidential_expires", "expires_at"),
        Index("ix_tw_confidential_actor", "actor_id"),
    )


class PrivacyAuditLog(AuditRecordMixin, Base):
    __tablename__ = "tw_privacy_audit_log"
    __retention_seconds__ = RETENTION_7_YEARS
    __table_args__ = (
        Index("ix_tw_privacy_timestamp", "timestamp"),
        Index("ix_tw_privacy_expires", "expires_at"),
        Index("ix_tw_privacy_actor", "actor_id"),
    )


# ──────────────────────────────────────────────────────────────────────────────
# Transactions (owned by the payment layer; read here for fraud history)
# ──────────────────────────────────────────────────────────────────────────────


class TransactionRecord(Base):
    __tablename__ = "tw_transactions"
    __table_args__ = (
        Index("ix_tw_transactions_identity_created", "identity", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    identity: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="COMPLETED")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class TransactionReview(Base):
    """A transaction flagged for manual review by the transaction monitor."""

    __tablename__ = "tw_transaction_reviews"
    __table_args__ = (
        Index("ix_tw_reviews_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    transaction_id: Mapped[str] = mapped_column(String(128), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSONType())
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING_REVIEW")
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime())
    flagged_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
