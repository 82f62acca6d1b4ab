"""
TrustService — the single entry point request handlers and jobs call.

Owns every piece of trust state for one process:

    AuditTrailStore ◀── AuditLogger ◀──┬── ComplianceRunner ──▶ ComplianceAlerter
                                      ├── FraudRiskScorer / TransactionMonitor
                                      ├── lockout + rate-limit audit events
                                      └── HealthChecker

The lockout tracker and rate limiter are in-memory. Their decisions are
synchronous; only the audit writes that follow them are awaited.
"""

from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

import structlog

from trustwatch.alerting import ComplianceAlerter
from trustwatch.alerting.channels import ChannelDispatcher
from trustwatch.audit import (
    SYSTEM_ACTOR,
    AuditCategory,
    AuditEvent,
    AuditLogger,
    AuditResult,
    AuditSeverity,
    AuditTrailStore,
)
from trustwatch.clock import Clock, SystemClock
from trustwatch.compliance import (
    ComplianceCheck,
    ComplianceReport,
    ComplianceRun,
    ComplianceRunner,
    ReportPeriod,
    default_checks,
)
from trustwatch.config import Settings
from trustwatch.db.engine import Database
from trustwatch.errors import ValidationError, require
from trustwatch.fraud import (
    FraudAssessment,
    FraudRiskScorer,
    FraudThresholds,
    SqlTransactionHistory,
    TransactionHistorySource,
    TransactionInput,
    TransactionMonitor,
)
from trustwatch.fraud.schemas import ReviewFlag
from trustwatch.observability import mask_email
from trustwatch.reporting import HealthChecker, audit_analytics
from trustwatch.scheduler import TrustScheduler
from trustwatch.security.lockout import (
    AccountLockoutTracker,
    FailureOutcome,
    LockStatus,
    normalize_identity,
)
from trustwatch.security.permissions import check_financial_permission
from trustwatch.security.rate_limit import AdaptiveRateLimiter, RateLimitDecision

logger = structlog.get_logger(__name__)


class TrustService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        db: Optional[Database] = None,
        history: Optional[TransactionHistorySource] = None,
        checks: Optional[Sequence[ComplianceCheck]] = None,
        alert_channels: Optional[Sequence[ChannelDispatcher]] = None,
    ):
        if settings is None:
            from trustwatch.config import settings as default_settings
            settings = default_settings
        self.settings = settings
        self.clock = clock or SystemClock()
        self.db = db or Database(settings)

        # ── Audit ──
        self.store = AuditTrailStore(self.db, clock=self.clock, tail_size=settings.audit_tail_size)
        self.audit = AuditLogger(
            self.store,
            write_timeout_seconds=settings.audit_write_timeout_seconds,
            restricted_access_limit=settings.restricted_access_limit,
            restricted_access_window_seconds=settings.restricted_access_window_seconds,
        )

        # ── Request-path state machines ──
        self.lockout = AccountLockoutTracker(
            max_attempts=settings.lockout_max_attempts,
            lock_duration_seconds=settings.lockout_duration_seconds,
            reset_window_seconds=settings.lockout_reset_window_seconds,
            max_sources=settings.lockout_max_sources,
            clock=self.clock,
        )
        self.limiter = AdaptiveRateLimiter(settings.route_policies, clock=self.clock)

        # ── Fraud ──
        self.history = history or SqlTransactionHistory(self.db)
        self.scorer = FraudRiskScorer(
            self.history,
            self.audit,
            thresholds=FraudThresholds(
                velocity_count=settings.fraud_velocity_threshold,
                velocity_window_seconds=settings.fraud_velocity_window_seconds,
                high_value=Decimal(str(settings.fraud_high_value_threshold)),
                block_above=settings.fraud_block_threshold,
                review_above=settings.fraud_review_threshold,
            ),
            suspicious_networks=settings.fraud_suspicious_networks,
            history_timeout_seconds=settings.history_timeout_seconds,
            clock=self.clock,
        )
        self.monitor = TransactionMonitor(
            self.db, self.history, deviation_factor=settings.deviation_factor, clock=self.clock
        )

        # ── Compliance ──
        if alert_channels is not None:
            self.alerter = ComplianceAlerter(self.audit, alert_channels)
        else:
            self.alerter = ComplianceAlerter.from_settings(self.audit, settings)
        self.runner = ComplianceRunner(
            checks if checks is not None
            else default_checks(settings, self.db, self.store, self.limiter, clock=self.clock),
            self.audit,
            alerter=self.alerter,
            check_timeout_seconds=settings.check_timeout_seconds,
            history_size=settings.compliance_history_size,
            history_days=settings.compliance_history_days,
            clock=self.clock,
        )

        self.health = HealthChecker(
            self.db,
            self.audit,
            version=settings.app_version,
            environment=settings.environment,
            timeout_seconds=settings.health_check_timeout_seconds,
            memory_warning_mb=settings.memory_warning_mb,
            clock=self.clock,
        )
        self.scheduler = TrustScheduler(
            self.runner,
            self.lockout,
            self.limiter,
            self.store,
            compliance_interval_seconds=settings.compliance_interval_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self, schedule: bool = True) -> None:
        await self.db.init()
        if schedule:
            self.scheduler.start()
        logger.info("trust_service_started", scheduled=schedule)

    async def shutdown(self) -> None:
        self.scheduler.stop()
        await self.db.close()
        logger.info("trust_service_stopped")

    # ── Compliance ────────────────────────────────────────────────────

    async def run_checks(self) -> ComplianceRun:
        return await self.runner.run_checks()

    def generate_report(self, period: str | ReportPeriod = ReportPeriod.DAY) -> ComplianceReport:
        return self.runner.generate_report(period)

    # ── Account lockout ───────────────────────────────────────────────

    async def record_failed_attempt(
        self, identity: str, source: Optional[str] = None
    ) -> FailureOutcome:
        source = require(source, "source") if source and source.strip() else None
        outcome = self.lockout.record_failure(identity, source)
        key = normalize_identity(identity)

        await self.audit.log_security_event(
            action="LOGIN_FAILED",
            result=AuditResult.FAILURE,
            severity=AuditSeverity.MEDIUM,
            actor_id=key,
            source_address=source,
            resource="AUTH",
            metadata={"failure_count": outcome.failure_count, "state": outcome.state.value},
        )
        if outcome.newly_locked:
            await self.audit.log_security_event(
                action="ACCOUNT_LOCKED",
                result=AuditResult.BLOCKED,
                severity=AuditSeverity.HIGH,
                actor_id=key,
                source_address=source,
                resource="AUTH",
                metadata={
                    "attempts": outcome.failure_count,
                    "locked_until": outcome.locked_until.isoformat(),
                },
            )
        return outcome

    async def record_successful_login(self, identity: str, source: Optional[str] = None) -> None:
        key = normalize_identity(identity)
        source = require(source, "source") if source and source.strip() else None
        if self.lockout.record_success(key):
            logger.info("lockout_cleared", identity=mask_email(key))
        await self.audit.log_security_event(
            action="LOGIN_SUCCESS",
            result=AuditResult.SUCCESS,
            actor_id=key,
            source_address=source,
            resource="AUTH",
        )

    def is_locked(self, identity: str) -> LockStatus:
        return self.lockout.is_locked(identity)

    async def unlock_account(self, identity: str, actor_id: str = SYSTEM_ACTOR) -> bool:
        key = normalize_identity(identity)
        removed = self.lockout.unlock(key)
        await self.audit.log_security_event(
            action="ACCOUNT_UNLOCKED",
            result=AuditResult.SUCCESS,
            severity=AuditSeverity.LOW,
            actor_id=actor_id,
            resource=f"ACCOUNT:{key}",
            metadata={"had_record": removed},
        )
        return removed

    # ── Fraud ─────────────────────────────────────────────────────────

    async def assess_transaction(self, tx: TransactionInput | dict) -> FraudAssessment:
        return await self.scorer.assess_transaction(tx)

    async def monitor_transaction(self, tx: TransactionInput | dict) -> Optional[ReviewFlag]:
        if not isinstance(tx, TransactionInput):
            tx = TransactionInput.model_validate(tx)
        return await self.monitor.monitor(tx)

    async def check_financial_permission(
        self,
        actor_id: str,
        roles: Iterable[str],
        action: str,
        source_address: Optional[str] = None,
    ) -> bool:
        return await check_financial_permission(
            self.audit, actor_id, roles, action, source_address=source_address
        )

    # ── Rate limiting ─────────────────────────────────────────────────

    async def check_rate_limit(self, route_class: str, client_key: str) -> RateLimitDecision:
        client_key = require(client_key, "client_key")
        decision = self.limiter.check(route_class, client_key)
        if not decision.allowed:
            await self.audit.log_security_event(
                action="RATE_LIMIT_EXCEEDED",
                result=AuditResult.DENIED,
                severity=AuditSeverity.MEDIUM,
                actor_id=client_key,
                source_address=client_key,
                resource=route_class,
                metadata={"limit": decision.limit, "retry_after": decision.retry_after_sec},
            )
        return decision

    # ── Audit & reporting ─────────────────────────────────────────────

    async def recent_events(
        self, category: Optional[AuditCategory] = None, limit: int = 50
    ) -> list[AuditEvent]:
        """Newest events first. Served from the in-process tail if the store is down."""
        if limit < 1:
            raise ValidationError("limit must be positive", field="limit")
        if category is not None:
            try:
                category = AuditCategory(category)
            except ValueError:
                raise ValidationError(f"Unknown audit category '{category}'", field="category") from None
        try:
            return await self.store.recent_events(category, limit=limit)
        except Exception as e:
            logger.warning("recent_events_from_tail", error=str(e) or type(e).__name__)
            return self.store.tail.snapshot(limit=limit, category=category)

    async def health_check(self) -> dict[str, Any]:
        return await self.health.health_check()

    async def audit_analytics(self, period: str | ReportPeriod = ReportPeriod.DAY) -> dict[str, Any]:
        return await audit_analytics(self.store, period)
