"""
Audit Trail Store.

Append-only, categorized persistence with per-category retention and a
SHA-256 hash chain per category for tamper detection.

- append(): validate, stamp, chain, insert. Never updates an existing row.
- query()/count(): time-filtered reads; expired rows are never returned.
- purge_expired(): the storage layer's expiry sweep, driven by each table's
  declared `__retention_seconds__`.
- verify_chain(): walk one category and report chain breaks.
"""

import asyncio
import hashlib
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select

from trustwatch.audit.schemas import (
    AuditCategory,
    AuditEvent,
    AuditResult,
    AuditSeverity,
    ChainReport,
)
from trustwatch.audit.tail import RecentEventsTail
from trustwatch.clock import Clock, SystemClock
from trustwatch.db.engine import Database
from trustwatch.db.models import (
    AuditRecordMixin,
    ConfidentialAccessLog,
    FinancialAuditLog,
    PrivacyAuditLog,
    SecurityAuditLog,
)
from trustwatch.errors import PersistenceError, ValidationError

logger = structlog.get_logger(__name__)

CATEGORY_MODELS: dict[AuditCategory, type[AuditRecordMixin]] = {
    AuditCategory.SECURITY: SecurityAuditLog,
    AuditCategory.FINANCIAL: FinancialAuditLog,
    AuditCategory.CONFIDENTIAL: ConfidentialAccessLog,
    AuditCategory.PRIVACY: PrivacyAuditLog,
}

MAX_QUERY_LIMIT = 1000


def _to_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _json_safe(metadata: Mapping[str, Any]) -> dict:
    """Round-trip through JSON so the stored and hashed forms agree."""
    return json.loads(json.dumps(dict(metadata), default=str, sort_keys=True))


def compute_entry_hash(
    entry_id: str,
    sequence: int,
    timestamp: str,
    category: str,
    action: str,
    result: str,
    severity: str,
    actor_id: str,
    details: dict,
    previous_hash: str,
) -> str:
    """SHA-256 of an audit entry, linked to the previous entry's hash."""
    payload = "|".join([
        entry_id,
        str(sequence),
        timestamp,
        category,
        action,
        result,
        severity,
        actor_id,
        json.dumps(details, sort_keys=True),
        previous_hash,
    ])
    return hashlib.sha256(payload.encode()).hexdigest()


class AuditTrailStore:
    """Durable, queryable audit record partitioned by category."""

    def __init__(
        self,
        db: Database,
        clock: Optional[Clock] = None,
        tail_size: int = 1000,
    ):
        self._db = db
        self._clock = clock or SystemClock()
        self.tail = RecentEventsTail(maxlen=tail_size)
        # Appends are serialized per category so the chain never forks
        self._chain_locks = {category: asyncio.Lock() for category in AuditCategory}

    @property
    def clock(self) -> Clock:
        return self._clock

    # ── Write path ────────────────────────────────────────────────────

    def build_event(self, event: Union[AuditEvent, Mapping[str, Any]]) -> AuditEvent:
        """Validate required fields and stamp the timestamp if absent."""
        if not isinstance(event, AuditEvent):
            try:
                event = AuditEvent.model_validate(dict(event))
            except PydanticValidationError as e:
                first = e.errors()[0]
                field = ".".join(str(p) for p in first.get("loc", ())) or None
                raise ValidationError(f"Invalid audit event: {first.get('msg')}", field=field)
        timestamp = _to_utc(event.timestamp) if event.timestamp else self._clock.now()
        return event.model_copy(update={"timestamp": timestamp})

    async def append(self, event: Union[AuditEvent, Mapping[str, Any]]) -> AuditEvent:
        """
        Persist one event. Returns the stored event (with id and hash).

        Raises ValidationError for malformed events and PersistenceError
        when the write fails.
        """
        event = self.build_event(event)
        model = CATEGORY_MODELS[event.category]
        details = _json_safe(event.metadata)

        async with self._chain_locks[event.category]:
            try:
                async with self._db.session() as session:
                    last = (
                        await session.execute(
                            select(model.sequence, model.entry_hash)
                            .order_by(model.sequence.desc())
                            .limit(1)
                        )
                    ).first()
                    sequence = (last.sequence + 1) if last else 1
                    previous_hash = last.entry_hash if last else None

                    entry_id = uuid.uuid4()
                    entry_hash = compute_entry_hash(
                        entry_id=str(entry_id),
                        sequence=sequence,
                        timestamp=event.timestamp.isoformat(),
                        category=event.category.value,
                        action=event.action,
                        result=event.result.value,
                        severity=event.severity.value,
                        actor_id=event.actor_id,
                        details=details,
                        previous_hash=previous_hash or "",
                    )
                    session.add(
                        model(
                            id=entry_id,
                            sequence=sequence,
                            timestamp=event.timestamp,
                            expires_at=event.timestamp
                            + timedelta(seconds=model.__retention_seconds__),
                            action=event.action,
                            result=event.result.value,
                            severity=event.severity.value,
                            actor_id=event.actor_id,
                            control_id=event.control_id,
                            source_address=event.source_address,
                            resource=event.resource,
                            details=details,
                            previous_hash=previous_hash,
                            entry_hash=entry_hash,
                        )
                    )
            except Exception as e:
                raise PersistenceError(event.category.value, cause=e) from e

        stored = event.model_copy(
            update={"event_id": str(entry_id), "entry_hash": entry_hash}
        )
        self.tail.push(stored)
        return stored

    # ── Read path ─────────────────────────────────────────────────────

    def _filtered(
        self,
        stmt,
        model,
        since: Optional[datetime],
        until: Optional[datetime],
        action: Optional[str],
        actor_id: Optional[str],
        severity: Optional[AuditSeverity],
        result: Optional[AuditResult],
    ):
        stmt = stmt.where(model.expires_at > self._clock.now())
        if since is not None:
            stmt = stmt.where(model.timestamp >= _to_utc(since))
        if until is not None:
            stmt = stmt.where(model.timestamp <= _to_utc(until))
        if action is not None:
            stmt = stmt.where(model.action == action)
        if actor_id is not None:
            stmt = stmt.where(model.actor_id == actor_id)
        if severity is not None:
            stmt = stmt.where(model.severity == AuditSeverity(severity).value)
        if result is not None:
            stmt = stmt.where(model.result == AuditResult(result).value)
        return stmt

    async def query(
        self,
        category: AuditCategory,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        result: Optional[AuditResult] = None,
        limit: int = 100,
        order: str = "desc",
    ) -> list[AuditEvent]:
        """Events of one category, most-recent-first unless order="asc"."""
        category = AuditCategory(category)
        if order not in ("asc", "desc"):
            raise ValidationError("order must be 'asc' or 'desc'", field="order")
        if limit < 1:
            raise ValidationError("limit must be positive", field="limit")
        limit = min(limit, MAX_QUERY_LIMIT)

        model = CATEGORY_MODELS[category]
        stmt = self._filtered(
            select(model), model, since, until, action, actor_id, severity, result
        )
        ordering = (model.timestamp.desc(), model.sequence.desc()) if order == "desc" \
            else (model.timestamp.asc(), model.sequence.asc())
        stmt = stmt.order_by(*ordering).limit(limit)

        async with self._db.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [self._to_event(category, row) for row in rows]

    async def count(
        self,
        category: AuditCategory,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        action: Optional[str] = None,
        actor_id: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        result: Optional[AuditResult] = None,
    ) -> int:
        category = AuditCategory(category)
        model = CATEGORY_MODELS[category]
        stmt = self._filtered(
            select(func.count()).select_from(model),
            model, since, until, action, actor_id, severity, result,
        )
        async with self._db.session_factory() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def count_by_action(
        self,
        category: AuditCategory,
        since: Optional[datetime] = None,
    ) -> dict[str, int]:
        category = AuditCategory(category)
        model = CATEGORY_MODELS[category]
        stmt = self._filtered(
            select(model.action, func.count()).select_from(model),
            model, since, None, None, None, None, None,
        ).group_by(model.action)
        async with self._db.session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return {action: int(n) for action, n in rows}

    async def sum_metadata(
        self,
        category: AuditCategory,
        key: str,
        since: Optional[datetime] = None,
    ) -> float:
        """Sum a numeric metadata field over the live events of one category."""
        category = AuditCategory(category)
        model = CATEGORY_MODELS[category]
        stmt = self._filtered(
            select(model.details), model, since, None, None, None, None, None,
        )
        total = 0.0
        async with self._db.session_factory() as session:
            for details in (await session.execute(stmt)).scalars():
                value = (details or {}).get(key)
                try:
                    total += float(value)
                except (TypeError, ValueError):
                    continue
        return total

    async def recent_events(
        self,
        category: Optional[AuditCategory] = None,
        limit: int = 50,
    ) -> list[AuditEvent]:
        """Most recent events of one category, or merged across all of them."""
        if category is not None:
            return await self.query(AuditCategory(category), limit=limit)

        merged: list[AuditEvent] = []
        for cat in AuditCategory:
            merged.extend(await self.query(cat, limit=limit))
        merged.sort(key=lambda e: e.timestamp, reverse=True)
        return merged[:limit]

    # ── Retention & integrity ─────────────────────────────────────────

    async def purge_expired(self) -> dict[str, int]:
        """Delete every row whose retention has elapsed."""
        now = self._clock.now()
        purged: dict[str, int] = {}
        async with self._db.session() as session:
            for category, model in CATEGORY_MODELS.items():
                result = await session.execute(
                    delete(model).where(model.expires_at <= now)
                )
                purged[category.value] = result.rowcount or 0

        total = sum(purged.values())
        if total:
            logger.info("audit_retention_purged", total=total, **purged)
        return purged

    async def verify_chain(self, category: AuditCategory) -> ChainReport:
        """
        Check that every entry's hash matches its content and links to its
        predecessor. The oldest surviving row is the anchor, since purged
        rows can no longer be checked.
        """
        category = AuditCategory(category)
        model = CATEGORY_MODELS[category]
        async with self._db.session_factory() as session:
            rows = (
                await session.execute(select(model).order_by(model.sequence))
            ).scalars().all()

        if not rows:
            return ChainReport(
                category=category, status="empty", total_entries=0, chain_intact=True
            )

        breaks: list[dict] = []
        previous_hash = rows[0].previous_hash
        for row in rows:
            if row.previous_hash != previous_hash:
                breaks.append({
                    "entry_id": str(row.id),
                    "sequence": row.sequence,
                    "issue": "previous_hash_mismatch",
                    "expected": previous_hash,
                    "actual": row.previous_hash,
                })
            expected = compute_entry_hash(
                entry_id=str(row.id),
                sequence=row.sequence,
                timestamp=row.timestamp.isoformat(),
                category=category.value,
                action=row.action,
                result=row.result,
                severity=row.severity,
                actor_id=row.actor_id,
                details=row.details or {},
                previous_hash=row.previous_hash or "",
            )
            if row.entry_hash != expected:
                breaks.append({
                    "entry_id": str(row.id),
                    "sequence": row.sequence,
                    "issue": "entry_hash_mismatch",
                    "expected": expected,
                    "actual": row.entry_hash,
                })
            previous_hash = row.entry_hash

        if breaks:
            logger.warning(
                "audit_chain_broken", category=category.value, breaks=len(breaks)
            )
        return ChainReport(
            category=category,
            status="intact" if not breaks else "broken",
            total_entries=len(rows),
            chain_intact=not breaks,
            breaks_found=len(breaks),
            breaks=breaks[:10],
        )

    @staticmethod
    def _to_event(category: AuditCategory, row: AuditRecordMixin) -> AuditEvent:
        return AuditEvent(
            category=category,
            action=row.action,
            result=AuditResult(row.result),
            severity=AuditSeverity(row.severity),
            actor_id=row.actor_id,
            timestamp=row.timestamp,
            control_id=row.control_id,
            source_address=row.source_address,
            resource=row.resource,
            metadata=row.details or {},
            event_id=str(row.id),
            entry_hash=row.entry_hash,
        )
