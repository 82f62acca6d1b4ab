"""
Compliance Schemas.

Results and runs are produced fresh on every cycle and never updated.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ComplianceStatus(StrEnum):
    COMPLIANT = "COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"
    NO_DATA = "NO_DATA"


class ReportPeriod(StrEnum):
    HOUR = "1h"
    DAY = "24h"
    WEEK = "7d"
    MONTH = "30d"


PERIOD_SECONDS: dict[ReportPeriod, int] = {
    ReportPeriod.HOUR: 3600,
    ReportPeriod.DAY: 86_400,
    ReportPeriod.WEEK: 604_800,
    ReportPeriod.MONTH: 2_592_000,
}


class ComplianceCheckResult(BaseModel):
    """Outcome of one control check."""

    model_config = ConfigDict(frozen=True)

    control_id: str
    name: str
    passed: bool
    issues: list[str] = Field(default_factory=list)
    checked_at: datetime
    details: dict[str, Any] = Field(default_factory=dict)


class ComplianceRun(BaseModel):
    """One execution of the full check battery."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    total_checks: int
    passed: int
    failed: int
    pass_rate: float                # passed / total, 1.0 when no checks ran
    results: list[ComplianceCheckResult]

    @property
    def failed_checks(self) -> list[ComplianceCheckResult]:
        return [r for r in self.results if not r.passed]

    @property
    def pass_rate_percent(self) -> str:
        return f"{self.pass_rate * 100:.1f}%"


class ComplianceReport(BaseModel):
    period: ReportPeriod
    start_time: datetime
    end_time: datetime
    total_runs: int = 0
    total_checks: int = 0
    total_passed: int = 0
    total_failed: int = 0
    average_pass_rate: Optional[float] = None
    compliance_status: ComplianceStatus
    runs: list[ComplianceRun] = Field(default_factory=list)
    message: Optional[str] = None
