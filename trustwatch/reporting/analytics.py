"""
Audit Analytics — per-category event counts over a trailing window.

Every category is grouped by action; FINANCIAL also sums the transaction
amounts carried in event metadata.
"""

from datetime import timedelta
from typing import Any

import structlog

from trustwatch.audit import AuditCategory, AuditTrailStore
from trustwatch.compliance.schemas import PERIOD_SECONDS, ReportPeriod
from trustwatch.errors import ValidationError

logger = structlog.get_logger(__name__)


def parse_period(period: str | ReportPeriod) -> ReportPeriod:
    try:
        return ReportPeriod(period)
    except ValueError:
        raise ValidationError(
            f"Invalid period '{period}'; expected one of "
            f"{', '.join(p.value for p in ReportPeriod)}",
            field="period",
        ) from None


async def audit_analytics(
    store: AuditTrailStore, period: str | ReportPeriod = ReportPeriod.DAY
) -> dict[str, Any]:
    period = parse_period(period)
    end = store.clock.now()
    start = end - timedelta(seconds=PERIOD_SECONDS[period])

    analytics: dict[str, Any] = {
        "period": period.value,
        "start_time": start.isoformat(),
        "end_time": end.isoformat(),
    }
    for category in AuditCategory:
        by_action = await store.count_by_action(category, since=start)
        analytics[category.value.lower()] = {
            "total_events": sum(by_action.values()),
            "by_action": by_action,
        }
    analytics["financial"]["total_amount"] = await store.sum_metadata(
        AuditCategory.FINANCIAL, "amount", since=start
    )

    logger.info(
        "audit_analytics_generated",
        period=period.value,
        **{c.value.lower(): analytics[c.value.lower()]["total_events"] for c in AuditCategory},
    )
    return analytics
