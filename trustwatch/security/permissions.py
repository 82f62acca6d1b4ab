"""
Financial permission checks.

Every decision, granted or denied, leaves a SECURITY audit event.
"""

from typing import Iterable, Optional

import structlog

from trustwatch.audit import AuditLogger, AuditResult, AuditSeverity

logger = structlog.get_logger(__name__)

SUPER_ADMIN = "SUPER_ADMIN"

FINANCIAL_ROLES: dict[str, frozenset[str]] = {
    "PAYMENT_PROCESSOR": frozenset({"process_payment", "view_transaction"}),
    "FINANCIAL_REVIEWER": frozenset({"review_transaction", "approve_refund", "view_reports"}),
    "FINANCIAL_ADMIN": frozenset({"generate_report", "reconcile_accounts", "view_all_transactions"}),
}


def granting_role(roles: Iterable[str], action: str) -> Optional[str]:
    """The first role that allows `action`, or None."""
    roles = list(roles)
    if SUPER_ADMIN in roles:
        return SUPER_ADMIN
    for role in roles:
        if action in FINANCIAL_ROLES.get(role, ()):
            return role
    return None


async def check_financial_permission(
    audit: AuditLogger,
    actor_id: str,
    roles: Iterable[str],
    action: str,
    source_address: Optional[str] = None,
) -> bool:
    roles = list(roles)
    role = granting_role(roles, action)
    granted = role is not None

    await audit.log_security_event(
        action=f"CHECK_PERMISSION:{action}",
        result=AuditResult.GRANTED if granted else AuditResult.DENIED,
        severity=AuditSeverity.INFO if granted else AuditSeverity.MEDIUM,
        actor_id=actor_id,
        source_address=source_address or "127.0.0.1",
        resource="FINANCIAL_SYSTEM",
        metadata={"role": role} if granted else {"roles": roles},
    )
    if not granted:
        logger.info("financial_permission_denied", actor_id=actor_id, action=action)
    return granted
