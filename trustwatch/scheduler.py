"""
Trust Scheduler — periodic jobs on an APScheduler AsyncIOScheduler.

Jobs:
1. Compliance run (every `compliance_interval_seconds`, first run immediately).
   Runs are allowed to overlap; a slow run never delays the next tick.
2. Lockout sweep (hourly): drop idle lockout records
3. Rate counter sweep (hourly): drop expired windows
4. Audit retention purge (hourly): delete rows past their retention
"""

from datetime import datetime, timezone

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from trustwatch.audit import AuditTrailStore
from trustwatch.compliance.runner import ComplianceRunner
from trustwatch.security.lockout import AccountLockoutTracker
from trustwatch.security.rate_limit import AdaptiveRateLimiter

logger = structlog.get_logger(__name__)

COMPLIANCE_MAX_INSTANCES = 5


class TrustScheduler:
    def __init__(
        self,
        runner: ComplianceRunner,
        lockout: AccountLockoutTracker,
        limiter: AdaptiveRateLimiter,
        store: AuditTrailStore,
        compliance_interval_seconds: int = 60,
        sweep_interval_seconds: int = 3600,
    ):
        self.runner = runner
        self.lockout = lockout
        self.limiter = limiter
        self.store = store
        self.compliance_interval_seconds = compliance_interval_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Register and start all scheduled jobs. Must be called inside a running loop."""
        self.scheduler.add_job(
            self.run_compliance,
            IntervalTrigger(seconds=self.compliance_interval_seconds),
            id="compliance_checks",
            next_run_time=datetime.now(timezone.utc),
            max_instances=COMPLIANCE_MAX_INSTANCES,
            coalesce=False,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.sweep_lockouts,
            IntervalTrigger(seconds=self.sweep_interval_seconds),
            id="lockout_sweep",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.sweep_rate_counters,
            IntervalTrigger(seconds=self.sweep_interval_seconds),
            id="rate_counter_sweep",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.purge_audit,
            IntervalTrigger(seconds=self.sweep_interval_seconds),
            id="audit_purge",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            "trust_scheduler_started",
            compliance_interval=self.compliance_interval_seconds,
            sweep_interval=self.sweep_interval_seconds,
        )

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("trust_scheduler_stopped")

    async def run_compliance(self):
        try:
            await self.runner.run_checks()
        except Exception as e:
            logger.error("compliance_job_failed", error=str(e))

    async def sweep_lockouts(self):
        self.lockout.sweep()

    async def sweep_rate_counters(self):
        self.limiter.sweep()

    async def purge_audit(self):
        try:
            await self.store.purge_expired()
        except Exception as e:
            logger.error("audit_purge_failed", error=str(e))
