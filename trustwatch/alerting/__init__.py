from trustwatch.alerting.channels import LogDispatcher, WebhookDispatcher
from trustwatch.alerting.engine import ComplianceAlerter
from trustwatch.alerting.schemas import AlertSeverity, ChannelDelivery, ComplianceAlert

__all__ = [
    "AlertSeverity",
    "ChannelDelivery",
    "ComplianceAlert",
    "ComplianceAlerter",
    "LogDispatcher",
    "WebhookDispatcher",
]
