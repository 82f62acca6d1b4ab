"""
Alert Schemas.

A ComplianceAlert is the channel-neutral payload built from a failed run;
each channel reports a ChannelDelivery back.
"""

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class AlertSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


class FailedControl(BaseModel):
    control_id: str
    name: str
    issues: list[str] = Field(default_factory=list)


class ComplianceAlert(BaseModel):
    alert_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    severity: AlertSeverity = AlertSeverity.HIGH
    title: str
    triggered_at: datetime
    failed_checks: int
    total_checks: int
    pass_rate: str
    failures: list[FailedControl] = Field(default_factory=list)


class ChannelDelivery(BaseModel):
    channel: str
    success: bool
    detail: str = ""
