"""
Alert Channels — deliver compliance alerts.

Each channel is independent and fault-tolerant:
- Log: emits the alert as a structured log line (always configured)
- Webhook: POST JSON to the configured URL via httpx

A channel never raises; failures come back as an unsuccessful delivery.
"""

from typing import Optional, Protocol

import httpx
import structlog

from trustwatch.alerting.schemas import ChannelDelivery, ComplianceAlert

logger = structlog.get_logger(__name__)


class ChannelDispatcher(Protocol):
    name: str

    async def dispatch(self, alert: ComplianceAlert) -> ChannelDelivery:
        ...


class LogDispatcher:
    name = "log"

    async def dispatch(self, alert: ComplianceAlert) -> ChannelDelivery:
        logger.critical(
            "compliance_alert",
            alert_id=alert.alert_id,
            title=alert.title,
            failed=alert.failed_checks,
            total=alert.total_checks,
            pass_rate=alert.pass_rate,
            controls=[f.control_id for f in alert.failures],
        )
        return ChannelDelivery(channel=self.name, success=True, detail="logged")


class WebhookDispatcher:
    """POST the alert as JSON. Pass `client` to reuse a connection pool."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = client

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        return await client.post(self.url, json=payload, headers=self.headers)

    async def dispatch(self, alert: ComplianceAlert) -> ChannelDelivery:
        payload = alert.model_dump(mode="json")
        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._post(client, payload)
        except Exception as e:
            logger.error("webhook_dispatch_error", alert_id=alert.alert_id, error=str(e))
            return ChannelDelivery(channel=self.name, success=False, detail=str(e))

        if response.status_code < 400:
            logger.info("webhook_alert_sent", alert_id=alert.alert_id, status=response.status_code)
            return ChannelDelivery(
                channel=self.name, success=True, detail=f"HTTP {response.status_code}"
            )
        logger.warning("webhook_alert_failed", alert_id=alert.alert_id, status=response.status_code)
        return ChannelDelivery(
            channel=self.name, success=False, detail=f"HTTP {response.status_code}"
        )
