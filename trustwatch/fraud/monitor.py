"""
Transaction Monitor — flags amounts far outside an identity's norm.

Compares a transaction against the average of the identity's last ten
completed transactions; anything above `deviation_factor` times that average
is queued for manual review. Monitoring is advisory: failures are logged and
never reach the payment flow.
"""

from decimal import Decimal
from typing import Optional

import structlog

from trustwatch.clock import Clock, SystemClock
from trustwatch.db.engine import Database
from trustwatch.db.models import TransactionReview
from trustwatch.fraud.history import TransactionHistorySource
from trustwatch.fraud.schemas import ReviewFlag, TransactionInput

logger = structlog.get_logger(__name__)

AMOUNT_DEVIATION = "AMOUNT_DEVIATION"


class TransactionMonitor:
    def __init__(
        self,
        db: Database,
        history: TransactionHistorySource,
        deviation_factor: float = 3.0,
        history_size: int = 10,
        clock: Optional[Clock] = None,
    ):
        self._db = db
        self.history = history
        self.deviation_factor = Decimal(str(deviation_factor))
        self.history_size = history_size
        self._clock = clock or SystemClock()

    async def monitor(self, tx: TransactionInput) -> Optional[ReviewFlag]:
        """Return the review flag raised for `tx`, if any."""
        try:
            past = await self.history.completed_transactions(tx.identity, limit=self.history_size)
        except Exception as e:
            logger.warning("monitor_history_unavailable", identity=tx.identity, error=str(e))
            return None

        if not past:
            return None

        average = sum(Decimal(str(p.amount)) for p in past) / len(past)
        if average <= 0 or tx.amount <= average * self.deviation_factor:
            return None

        flag = ReviewFlag(
            transaction_id=tx.transaction_id,
            reason=AMOUNT_DEVIATION,
            details={
                "deviation": float(tx.amount / average),
                "user_average": float(average),
                "current_amount": float(tx.amount),
            },
        )
        logger.warning(
            "transaction_flagged",
            transaction_id=tx.transaction_id,
            average=round(float(average), 2),
            amount=float(tx.amount),
        )
        await self._flag_for_review(flag)
        return flag

    async def _flag_for_review(self, flag: ReviewFlag) -> None:
        try:
            async with self._db.session() as session:
                session.add(
                    TransactionReview(
                        transaction_id=flag.transaction_id,
                        reason=flag.reason,
                        details=flag.details,
                        status="PENDING_REVIEW",
                        flagged_at=self._clock.now(),
                    )
                )
        except Exception as e:
            logger.error(
                "review_flag_failed",
                transaction_id=flag.transaction_id,
                error=str(e),
            )
