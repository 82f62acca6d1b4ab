"""Operational reporting: audit analytics and health checks."""

from trustwatch.reporting.analytics import audit_analytics, parse_period
from trustwatch.reporting.health import HealthChecker

__all__ = ["HealthChecker", "audit_analytics", "parse_period"]
