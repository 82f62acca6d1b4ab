"""
Compliance Alerter.

Called by the runner whenever a run has at least one failed control:
  1. Log each failed control with its issues
  2. Record a COMPLIANCE_ALERT security audit event
  3. Dispatch the alert to every configured channel

Delivery failures are reported, never raised.
"""

from typing import Optional, Sequence

import structlog

from trustwatch.alerting.channels import ChannelDispatcher, LogDispatcher, WebhookDispatcher
from trustwatch.alerting.schemas import (
    AlertSeverity,
    ChannelDelivery,
    ComplianceAlert,
    FailedControl,
)
from trustwatch.audit import AuditLogger, AuditResult, AuditSeverity
from trustwatch.compliance.schemas import ComplianceRun
from trustwatch.config import Settings
from trustwatch.errors import ConfigurationError

logger = structlog.get_logger(__name__)


class ComplianceAlerter:
    def __init__(self, audit: AuditLogger, channels: Optional[Sequence[ChannelDispatcher]] = None):
        self.audit = audit
        self.channels = list(channels) if channels is not None else [LogDispatcher()]

    @classmethod
    def from_settings(cls, audit: AuditLogger, settings: Settings) -> "ComplianceAlerter":
        channels: list[ChannelDispatcher] = [LogDispatcher()]
        if settings.alert_webhook_url:
            if not settings.alert_webhook_url.startswith(("http://", "https://")):
                raise ConfigurationError(
                    f"ALERT_WEBHOOK_URL must be an http(s) URL, got '{settings.alert_webhook_url}'"
                )
            channels.append(
                WebhookDispatcher(
                    settings.alert_webhook_url,
                    timeout=settings.alert_webhook_timeout_seconds,
                )
            )
        return cls(audit, channels)

    @staticmethod
    def build_alert(run: ComplianceRun) -> ComplianceAlert:
        failures = [
            FailedControl(control_id=r.control_id, name=r.name, issues=list(r.issues))
            for r in run.failed_checks
        ]
        return ComplianceAlert(
            severity=AlertSeverity.CRITICAL if run.failed > 3 else AlertSeverity.HIGH,
            title=f"{run.failed} compliance check(s) failed",
            triggered_at=run.timestamp,
            failed_checks=run.failed,
            total_checks=run.total_checks,
            pass_rate=run.pass_rate_percent,
            failures=failures,
        )

    async def alert(self, run: ComplianceRun) -> list[ChannelDelivery]:
        alert = self.build_alert(run)
        for failure in alert.failures:
            logger.error(
                "control_failed",
                control_id=failure.control_id,
                check=failure.name,
                issues=failure.issues,
            )

        await self.audit.log_security_event(
            action="COMPLIANCE_ALERT",
            result=AuditResult.ALERT_SENT,
            severity=AuditSeverity.HIGH,
            control_id="CC7.3",
            metadata={
                "alert_id": alert.alert_id,
                "failed_checks": [f.name for f in alert.failures],
                "pass_rate": alert.pass_rate,
            },
        )

        deliveries = []
        for channel in self.channels:
            try:
                deliveries.append(await channel.dispatch(alert))
            except Exception as e:
                logger.error("alert_channel_error", channel=getattr(channel, "name", "?"), error=str(e))
                deliveries.append(
                    ChannelDelivery(channel=getattr(channel, "name", "unknown"), success=False, detail=str(e))
                )
        return deliveries
