"""TrustWatch schema — audit category tables and transaction tables.

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01

Creates:
1. Four audit tables (security, financial, confidential, privacy), each with
   the hash-chain columns and an expires_at column for retention
2. tw_transactions (fraud history) and tw_transaction_reviews (monitor flags)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from trustwatch.db.compat import GUID, JSONType

# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AUDIT_TABLES = {
    "tw_security_audit_log": "security",
    "tw_financial_audit_log": "financial",
    "tw_confidential_access_log": "confidential",
    "tw_privacy_audit_log": "privacy",
}


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("result", sa.String(20), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=False),
        sa.Column("control_id", sa.String(20), nullable=True),
        sa.Column("source_address", sa.String(255), nullable=True),
        sa.Column("resource", sa.String(512), nullable=True),
        sa.Column("details", JSONType(), nullable=True),
        sa.Column("previous_hash", sa.String(64), nullable=True),
        sa.Column("entry_hash", sa.String(64), nullable=False),
    ]


def upgrade() -> None:
    # =========================================================================
    # 1. Audit category tables
    # =========================================================================
    for table, short in AUDIT_TABLES.items():
        op.create_table(table, *_audit_columns())
        op.create_index(f"ix_tw_{short}_timestamp", table, ["timestamp"])
        op.create_index(f"ix_tw_{short}_expires", table, ["expires_at"])
        op.create_index(f"ix_tw_{short}_actor", table, ["actor_id"])

    # =========================================================================
    # 2. Transactions
    # =========================================================================
    op.create_table(
        "tw_transactions",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("identity", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(20), nullable=False, server_default="COMPLETED"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_tw_transactions_identity_created", "tw_transactions", ["identity", "created_at"]
    )

    op.create_table(
        "tw_transaction_reviews",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("transaction_id", sa.String(128), nullable=False),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("details", JSONType(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING_REVIEW"),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("flagged_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tw_reviews_status", "tw_transaction_reviews", ["status"])


def downgrade() -> None:
    op.drop_index("ix_tw_reviews_status", table_name="tw_transaction_reviews")
    op.drop_table("tw_transaction_reviews")
    op.drop_index("ix_tw_transactions_identity_created", table_name="tw_transactions")
    op.drop_table("tw_transactions")
    for table, short in AUDIT_TABLES.items():
        op.drop_index(f"ix_tw_{short}_actor", table_name=table)
        op.drop_index(f"ix_tw_{short}_expires", table_name=table)
        op.drop_index(f"ix_tw_{short}_timestamp", table_name=table)
        op.drop_table(table)
