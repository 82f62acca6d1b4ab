"""
Tests for Compliance Alerting.

Covers:
- Alert payload built from a failed run
- COMPLIANCE_ALERT audit event
- Channel failures reported, never raised
- WebhookDispatcher success / HTTP error / transport error
- Channel selection from settings
"""

import httpx
import pytest

from trustwatch.alerting import (
    AlertSeverity,
    ComplianceAlerter,
    LogDispatcher,
    WebhookDispatcher,
)
from trustwatch.audit import AuditCategory, AuditResult, AuditSeverity
from trustwatch.compliance.schemas import ComplianceCheckResult, ComplianceRun
from trustwatch.errors import ConfigurationError

from tests.conftest import RecordingChannel, make_settings


def _run(clock, failed=2, total=7) -> ComplianceRun:
    results = [
        ComplianceCheckResult(
            control_id=f"CC{i}",
            name=f"Check {i}",
            passed=i >= failed,
            issues=[] if i >= failed else [f"issue {i}"],
            checked_at=clock.now(),
        )
        for i in range(total)
    ]
    return ComplianceRun(
        timestamp=clock.now(),
        total_checks=total,
        passed=total - failed,
        failed=failed,
        pass_rate=(total - failed) / total,
        results=results,
    )


@pytest.mark.asyncio
class TestComplianceAlerter:
    async def test_alert_payload(self, audit, clock):
        alert = ComplianceAlerter.build_alert(_run(clock))
        assert alert.failed_checks == 2
        assert alert.severity == AlertSeverity.HIGH
        assert [f.control_id for f in alert.failures] == ["CC0", "CC1"]
        assert alert.pass_rate == "71.4%"

    async def test_many_failures_are_critical(self, clock):
        assert ComplianceAlerter.build_alert(_run(clock, failed=4)).severity == AlertSeverity.CRITICAL

    async def test_alert_audited_and_dispatched(self, audit, store, clock):
        channel = RecordingChannel()
        alerter = ComplianceAlerter(audit, [channel])

        deliveries = await alerter.alert(_run(clock))

        assert [d.success for d in deliveries] == [True]
        assert len(channel.alerts) == 1
        [event] = await store.query(AuditCategory.SECURITY, action="COMPLIANCE_ALERT")
        assert event.result == AuditResult.ALERT_SENT
        assert event.severity == AuditSeverity.HIGH
        assert event.metadata["failed_checks"] == ["Check 0", "Check 1"]

    async def test_channel_failure_reported_not_raised(self, audit, clock):
        alerter = ComplianceAlerter(audit, [RecordingChannel(fail=True), LogDispatcher()])
        deliveries = await alerter.alert(_run(clock))
        assert [d.success for d in deliveries] == [False, True]
        assert deliveries[0].detail == "channel down"


@pytest.mark.asyncio
class TestWebhookDispatcher:
    async def test_success(self, clock):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = WebhookDispatcher("https://hooks.example.com/x", client=client)
            delivery = await dispatcher.dispatch(ComplianceAlerter.build_alert(_run(clock)))

        assert delivery.success
        assert delivery.detail == "HTTP 204"
        assert seen[0].headers["content-type"] == "application/json"

    async def test_http_error(self, clock):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            dispatcher = WebhookDispatcher("https://hooks.example.com/x", client=client)
            delivery = await dispatcher.dispatch(ComplianceAlerter.build_alert(_run(clock)))
        assert not delivery.success
        assert delivery.detail == "HTTP 503"

    async def test_transport_error(self, clock):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = WebhookDispatcher("https://hooks.example.com/x", client=client)
            delivery = await dispatcher.dispatch(ComplianceAlerter.build_alert(_run(clock)))
        assert not delivery.success
        assert "refused" in delivery.detail


class TestFromSettings:
    def test_log_only_without_webhook(self, audit):
        alerter = ComplianceAlerter.from_settings(audit, make_settings())
        assert [c.name for c in alerter.channels] == ["log"]

    def test_webhook_added_when_configured(self, audit):
        alerter = ComplianceAlerter.from_settings(
            audit, make_settings(alert_webhook_url="https://hooks.example.com/x")
        )
        assert [c.name for c in alerter.channels] == ["log", "webhook"]

    def test_non_http_webhook_rejected(self, audit):
        with pytest.raises(ConfigurationError):
            ComplianceAlerter.from_settings(audit, make_settings(alert_webhook_url="ftp://x"))
