"""
Compliance Runner — executes the check battery and keeps run history.

Every run:
  1. Evaluates all checks concurrently, each bounded by a timeout
  2. Aggregates passed/failed counts into a ComplianceRun
  3. Writes a COMPLIANCE_CHECK security audit event
  4. Alerts when any control failed
  5. Appends the run to the in-process history (count- and age-bounded)
"""

import asyncio
from collections import deque
from datetime import timedelta
from typing import Optional, Protocol, Sequence

import structlog

from trustwatch.audit import AuditLogger, AuditResult, AuditSeverity
from trustwatch.clock import Clock, SystemClock
from trustwatch.compliance.checks import ComplianceCheck
from trustwatch.compliance.schemas import (
    PERIOD_SECONDS,
    ComplianceCheckResult,
    ComplianceReport,
    ComplianceRun,
    ComplianceStatus,
    ReportPeriod,
)
from trustwatch.errors import ValidationError

logger = structlog.get_logger(__name__)


class RunAlerter(Protocol):
    async def alert(self, run: ComplianceRun): ...


def run_severity(failed: int) -> AuditSeverity:
    if failed == 0:
        return AuditSeverity.LOW
    if failed <= 3:
        return AuditSeverity.MEDIUM
    return AuditSeverity.HIGH


class ComplianceRunner:
    def __init__(
        self,
        checks: Sequence[ComplianceCheck],
        audit: AuditLogger,
        alerter: Optional[RunAlerter] = None,
        check_timeout_seconds: float = 10.0,
        history_size: int = 1000,
        history_days: int = 30,
        clock: Optional[Clock] = None,
    ):
        self.checks = list(checks)
        self.audit = audit
        self.alerter = alerter
        self.check_timeout_seconds = check_timeout_seconds
        self.history_days = history_days
        self._history: deque[ComplianceRun] = deque(maxlen=history_size)
        self._clock = clock or SystemClock()

    @property
    def history(self) -> list[ComplianceRun]:
        return list(self._history)

    async def _evaluate(self, check: ComplianceCheck) -> ComplianceCheckResult:
        try:
            return await asyncio.wait_for(check.evaluate(), timeout=self.check_timeout_seconds)
        except asyncio.TimeoutError:
            issue = f"Check timed out after {self.check_timeout_seconds}s"
        except Exception as e:
            issue = str(e) or type(e).__name__
        logger.error("compliance_check_error", control_id=check.control_id, check=check.name, error=issue)
        return ComplianceCheckResult(
            control_id=check.control_id,
            name=check.name,
            passed=False,
            issues=[issue],
            checked_at=self._clock.now(),
        )

    async def run_checks(self) -> ComplianceRun:
        """Run every registered check once. Check failures never raise."""
        results = await asyncio.gather(*(self._evaluate(c) for c in self.checks))

        total = len(results)
        failed = sum(1 for r in results if not r.passed)
        passed = total - failed
        run = ComplianceRun(
            timestamp=self._clock.now(),
            total_checks=total,
            passed=passed,
            failed=failed,
            pass_rate=passed / total if total else 1.0,
            results=list(results),
        )

        logger.info(
            "compliance_run_complete",
            total=total,
            passed=passed,
            failed=failed,
            pass_rate=run.pass_rate_percent,
        )

        await self.audit.log_security_event(
            action="COMPLIANCE_CHECK",
            result=AuditResult.SUCCESS if failed == 0 else AuditResult.FAILURE,
            severity=run_severity(failed),
            control_id="CC4.1",
            metadata={
                "total_checks": total,
                "passed": passed,
                "failed": failed,
                "pass_rate": run.pass_rate_percent,
                "failed_checks": [r.name for r in run.failed_checks],
                "results": [r.model_dump(mode="json") for r in results],
            },
        )

        if failed and self.alerter is not None:
            try:
                await self.alerter.alert(run)
            except Exception as e:
                logger.error("compliance_alert_failed", error=str(e) or type(e).__name__)

        self._remember(run)
        return run

    def _remember(self, run: ComplianceRun) -> None:
        self._history.append(run)
        cutoff = self._clock.now() - timedelta(days=self.history_days)
        while self._history and self._history[0].timestamp < cutoff:
            self._history.popleft()

    def generate_report(self, period: str | ReportPeriod = ReportPeriod.DAY) -> ComplianceReport:
        """Summarize the runs inside the trailing `period` window."""
        try:
            period = ReportPeriod(period)
        except ValueError:
            raise ValidationError(
                f"Invalid report period '{period}'; expected one of "
                f"{', '.join(p.value for p in ReportPeriod)}",
                field="period",
            ) from None

        end = self._clock.now()
        start = end - timedelta(seconds=PERIOD_SECONDS[period])
        runs = [r for r in self._history if start <= r.timestamp <= end]

        if not runs:
            return ComplianceReport(
                period=period,
                start_time=start,
                end_time=end,
                compliance_status=ComplianceStatus.NO_DATA,
                message="No compliance checks recorded in this period",
            )

        total_checks = sum(r.total_checks for r in runs)
        total_passed = sum(r.passed for r in runs)
        total_failed = sum(r.failed for r in runs)
        return ComplianceReport(
            period=period,
            start_time=start,
            end_time=end,
            total_runs=len(runs),
            total_checks=total_checks,
            total_passed=total_passed,
            total_failed=total_failed,
            average_pass_rate=total_passed / total_checks if total_checks else 1.0,
            compliance_status=(
                ComplianceStatus.COMPLIANT if total_failed == 0 else ComplianceStatus.NON_COMPLIANT
            ),
            runs=runs,
        )
