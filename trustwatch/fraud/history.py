"""
Transaction history sources.

The fraud scorer and transaction monitor read history through this protocol,
so the payment layer can back it with whatever it stores transactions in.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from trustwatch.db.engine import Database
from trustwatch.db.models import TransactionRecord
from trustwatch.errors import DependencyError
from trustwatch.fraud.schemas import PastTransaction


class TransactionHistorySource(Protocol):
    async def recent_transactions(self, identity: str, since: datetime) -> list[PastTransaction]:
        """Transactions for `identity` created at or after `since`, newest first."""
        ...

    async def completed_transactions(self, identity: str, limit: int = 10) -> list[PastTransaction]:
        """The identity's last `limit` completed transactions, newest first."""
        ...


class SqlTransactionHistory:
    """History backed by the tw_transactions table. Raises DependencyError when unreachable."""

    def __init__(self, db: Database):
        self._db = db

    async def _fetch(self, stmt) -> list[PastTransaction]:
        try:
            async with self._db.session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise DependencyError("transaction_history", cause=e) from e
        return [self._to_past(r) for r in rows]

    async def recent_transactions(self, identity: str, since: datetime) -> list[PastTransaction]:
        return await self._fetch(
            select(TransactionRecord)
            .where(TransactionRecord.identity == identity)
            .where(TransactionRecord.created_at >= since)
            .order_by(TransactionRecord.created_at.desc())
        )

    async def completed_transactions(self, identity: str, limit: int = 10) -> list[PastTransaction]:
        return await self._fetch(
            select(TransactionRecord)
            .where(TransactionRecord.identity == identity)
            .where(TransactionRecord.status == "COMPLETED")
            .order_by(TransactionRecord.created_at.desc())
            .limit(limit)
        )

    async def record(self, row: TransactionRecord) -> None:
        """Persist a transaction so later scoring sees it as history."""
        try:
            async with self._db.session() as session:
                session.add(row)
        except SQLAlchemyError as e:
            raise DependencyError("transaction_history", cause=e) from e

    @staticmethod
    def _to_past(row: TransactionRecord) -> PastTransaction:
        return PastTransaction(
            amount=row.amount,
            created_at=row.created_at,
            transaction_id=row.id,
            status=row.status,
        )
