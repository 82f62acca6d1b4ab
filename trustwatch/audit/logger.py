"""
Audit Logger — the write facade every component uses.

A failed audit write must never abort the operation that triggered it
(login, payment, check run). Every write here is bounded by a timeout, and
failures are logged and swallowed. The event still lands in the in-process
tail so recent activity stays visible while the database is down.
"""

import asyncio
from datetime import timedelta
from typing import Any, Optional

import structlog

from trustwatch.audit.schemas import (
    MAX_RESOURCE_LENGTH,
    SYSTEM_ACTOR,
    AuditCategory,
    AuditEvent,
    AuditResult,
    AuditSeverity,
)
from trustwatch.audit.store import AuditTrailStore
from trustwatch.errors import ValidationError

logger = structlog.get_logger(__name__)

RESTRICTED = "RESTRICTED"


class AuditLogger:
    """Fire-and-forget audit writes on top of the AuditTrailStore."""

    def __init__(
        self,
        store: AuditTrailStore,
        write_timeout_seconds: float = 5.0,
        restricted_access_limit: int = 10,
        restricted_access_window_seconds: int = 300,
    ):
        self.store = store
        self.write_timeout_seconds = write_timeout_seconds
        self.restricted_access_limit = restricted_access_limit
        self.restricted_access_window_seconds = restricted_access_window_seconds
        self.failed_writes = 0

    def _event(self, **fields: Any) -> AuditEvent:
        """Build an event, mapping schema violations to ValidationError."""
        return self.store.build_event(fields)

    async def record(self, event: AuditEvent | dict) -> Optional[AuditEvent]:
        """
        Persist an event. Returns the stored event, or None if the write failed.

        Malformed events raise ValidationError; that is a programming error in
        the caller, not a persistence failure.
        """
        event = self.store.build_event(event)
        try:
            return await asyncio.wait_for(
                self.store.append(event), timeout=self.write_timeout_seconds
            )
        except ValidationError:
            raise
        except Exception as e:
            self.failed_writes += 1
            self.store.tail.push(event)
            logger.error(
                "audit_write_failed",
                category=event.category.value,
                action=event.action,
                error=str(e) or type(e).__name__,
                failed_writes=self.failed_writes,
            )
            return None

    # ── Category helpers ──────────────────────────────────────────────

    async def log_security_event(
        self,
        action: str,
        result: AuditResult,
        severity: AuditSeverity = AuditSeverity.INFO,
        actor_id: str = SYSTEM_ACTOR,
        source_address: Optional[str] = None,
        resource: Optional[str] = None,
        control_id: str = "CC6.1",
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditEvent]:
        log = logger.warning if severity in (AuditSeverity.HIGH, AuditSeverity.CRITICAL) \
            else logger.info
        log(
            "security_event",
            action=action,
            result=result.value,
            severity=severity.value,
        )
        return await self.record(
            self._event(
                category=AuditCategory.SECURITY,
                action=action,
                result=result,
                severity=severity,
                actor_id=actor_id,
                source_address=source_address,
                resource=resource,
                control_id=control_id,
                metadata=metadata or {},
            )
        )

    async def log_unauthorized_access(
        self,
        path: str,
        method: str,
        reason: str,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditEvent]:
        return await self.log_security_event(
            action="UNAUTHORIZED_ACCESS",
            result=AuditResult.DENIED,
            severity=AuditSeverity.HIGH,
            actor_id="ANONYMOUS",
            source_address=source_address,
            resource=f"{method} {path}"[:MAX_RESOURCE_LENGTH],
            metadata={"reason": reason, "user_agent": user_agent},
        )

    async def log_financial_transaction(
        self,
        transaction_id: str,
        actor_id: str,
        amount: float,
        transaction_type: str,
        status: str,
        currency: str = "USD",
        source_address: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[AuditEvent]:
        logger.info(
            "financial_transaction",
            transaction_id=transaction_id,
            type=transaction_type,
            status=status,
        )
        failed = status.upper() in ("FAILED", "DECLINED", "BLOCKED")
        return await self.record(
            self._event(
                category=AuditCategory.FINANCIAL,
                action=f"TRANSACTION_{transaction_type.upper()}",
                result=AuditResult.FAILURE if failed else AuditResult.SUCCESS,
                severity=AuditSeverity.MEDIUM if failed else AuditSeverity.INFO,
                actor_id=actor_id,
                source_address=source_address,
                resource=transaction_id,
                control_id="CC2.1",
                metadata={
                    "transaction_id": transaction_id,
                    "amount": amount,
                    "currency": currency,
                    "status": status,
                    **(metadata or {}),
                },
            )
        )

    async def log_confidential_access(
        self,
        actor_id: str,
        action: str,
        data_type: str,
        data_id: str,
        classification: str,
        result: AuditResult = AuditResult.SUCCESS,
        source_address: Optional[str] = None,
    ) -> Optional[AuditEvent]:
        """
        Record access to classified data. RESTRICTED access logs at HIGH, and
        a burst of RESTRICTED reads by one actor raises SUSPICIOUS_ACCESS.
        """
        restricted = classification.upper() == RESTRICTED
        stored = await self.record(
            self._event(
                category=AuditCategory.CONFIDENTIAL,
                action=action,
                result=result,
                severity=AuditSeverity.HIGH if restricted else AuditSeverity.MEDIUM,
                actor_id=actor_id,
                source_address=source_address,
                resource=f"{data_type}:{data_id}",
                control_id="C1.2",
                metadata={
                    "data_type": data_type,
                    "data_id": data_id,
                    "classification": classification.upper(),
                },
            )
        )
        if restricted:
            await self._check_restricted_burst(actor_id, source_address)
        return stored

    async def _check_restricted_burst(
        self, actor_id: str, source_address: Optional[str]
    ) -> None:
        since = self.store.clock.now() - timedelta(
            seconds=self.restricted_access_window_seconds
        )
        try:
            recent = await asyncio.wait_for(
                self.store.count(
                    AuditCategory.CONFIDENTIAL,
                    since=since,
                    actor_id=actor_id,
                    severity=AuditSeverity.HIGH,
                ),
                timeout=self.write_timeout_seconds,
            )
        except Exception as e:
            logger.error("restricted_burst_check_failed", error=str(e))
            return

        if recent > self.restricted_access_limit:
            logger.warning("suspicious_access", actor_id=actor_id, count=recent)
            await self.log_security_event(
                action="SUSPICIOUS_ACCESS",
                result=AuditResult.ALERT,
                severity=AuditSeverity.CRITICAL,
                actor_id=actor_id,
                source_address=source_address,
                resource="CONFIDENTIAL_DATA",
                metadata={"count": recent},
            )

    async def log_privacy_event(
        self,
        event_type: str,
        actor_id: str,
        details: Optional[dict[str, Any]] = None,
        source_address: Optional[str] = None,
    ) -> Optional[AuditEvent]:
        return await self.record(
            self._event(
                category=AuditCategory.PRIVACY,
                action=event_type,
                result=AuditResult.SUCCESS,
                severity=AuditSeverity.INFO,
                actor_id=actor_id,
                source_address=source_address,
                control_id="P2.1" if event_type.upper().startswith("CONSENT") else "P3.1",
                metadata=details or {},
            )
        )
