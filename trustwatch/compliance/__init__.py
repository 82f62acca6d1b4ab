"""SOC control checks, the runner that executes them, and run reports."""

from trustwatch.compliance.checks import ComplianceCheck, default_checks
from trustwatch.compliance.runner import ComplianceRunner
from trustwatch.compliance.schemas import (
    ComplianceCheckResult,
    ComplianceReport,
    ComplianceRun,
    ComplianceStatus,
    ReportPeriod,
)

__all__ = [
    "ComplianceCheck",
    "ComplianceCheckResult",
    "ComplianceReport",
    "ComplianceRun",
    "ComplianceRunner",
    "ComplianceStatus",
    "ReportPeriod",
    "default_checks",
]
