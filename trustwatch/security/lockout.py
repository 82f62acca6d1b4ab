"""
Account Lockout Tracker — per-identity failed-login state machine.

    CLEAN ──fail──▶ ACCUMULATING ──fail × max──▶ LOCKED
      ▲                  │                          │
      └──── success / reset window / lock expiry ───┘

- 5 failures within a 15 minute reset window lock the identity for 30 minutes.
- While LOCKED, further failures are ignored: the lock is neither extended
  nor shortened.
- Success deletes the record unconditionally.
- An expired lock is cleared the next time anyone looks at it.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Optional

import structlog

from trustwatch.clock import Clock, SystemClock
from trustwatch.errors import require
from trustwatch.observability import mask_email
from trustwatch.security.keyed_locks import KeyedLocks

logger = structlog.get_logger(__name__)


class LockoutState(StrEnum):
    CLEAN = "CLEAN"
    ACCUMULATING = "ACCUMULATING"
    LOCKED = "LOCKED"


def normalize_identity(identity: Optional[str]) -> str:
    return require(identity, "identity").lower()


@dataclass
class LockoutRecord:
    """Failed-attempt history for one identity."""

    failure_count: int
    last_failure_at: datetime
    locked_until: Optional[datetime] = None
    source_addresses: list[str] = field(default_factory=list)

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def lock_expired(self, now: datetime) -> bool:
        return self.locked_until is not None and now >= self.locked_until


@dataclass(frozen=True)
class FailureOutcome:
    state: LockoutState
    failure_count: int
    locked_until: Optional[datetime] = None
    newly_locked: bool = False


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    remaining_minutes: Optional[int] = None
    unlock_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        if not self.locked:
            return {"locked": False}
        return {
            "locked": True,
            "remaining_minutes": self.remaining_minutes,
            "unlock_at": self.unlock_at.isoformat() if self.unlock_at else None,
        }


class AccountLockoutTracker:
    """In-memory lockout state, owned by one TrustService."""

    def __init__(
        self,
        max_attempts: int = 5,
        lock_duration_seconds: float = 30 * 60,
        reset_window_seconds: float = 15 * 60,
        max_sources: int = 20,
        clock: Optional[Clock] = None,
    ):
        self.max_attempts = max_attempts
        self.lock_duration = timedelta(seconds=lock_duration_seconds)
        self.reset_window = timedelta(seconds=reset_window_seconds)
        self.max_sources = max_sources
        self._clock = clock or SystemClock()
        self._records: dict[str, LockoutRecord] = {}
        self._locks = KeyedLocks()

    def record_failure(self, identity: str, source: Optional[str] = None) -> FailureOutcome:
        """Count a failed authentication for `identity`."""
        key = normalize_identity(identity)
        source = require(source, "source") if source and source.strip() else None
        now = self._clock.now()

        with self._locks.hold(key):
            record = self._records.get(key)

            if record is not None and record.is_locked(now):
                return FailureOutcome(
                    state=LockoutState.LOCKED,
                    failure_count=record.failure_count,
                    locked_until=record.locked_until,
                )

            if (
                record is None
                or record.lock_expired(now)
                or now - record.last_failure_at > self.reset_window
            ):
                record = LockoutRecord(failure_count=1, last_failure_at=now)
                self._records[key] = record
            else:
                record.failure_count += 1
                record.last_failure_at = now

            if source:
                record.source_addresses.append(source)
                del record.source_addresses[:-self.max_sources]

            if record.failure_count >= self.max_attempts:
                record.locked_until = now + self.lock_duration
                logger.warning(
                    "account_locked",
                    identity=mask_email(key),
                    failures=record.failure_count,
                    locked_until=record.locked_until.isoformat(),
                )
                return FailureOutcome(
                    state=LockoutState.LOCKED,
                    failure_count=record.failure_count,
                    locked_until=record.locked_until,
                    newly_locked=True,
                )

            return FailureOutcome(
                state=LockoutState.ACCUMULATING,
                failure_count=record.failure_count,
            )

    def record_success(self, identity: str) -> bool:
        """Clear all history for `identity`. Returns True if a record existed."""
        key = normalize_identity(identity)
        with self._locks.hold(key):
            return self._records.pop(key, None) is not None

    def is_locked(self, identity: str) -> LockStatus:
        key = normalize_identity(identity)
        now = self._clock.now()

        with self._locks.hold(key):
            record = self._records.get(key)
            if record is None or record.locked_until is None:
                return LockStatus(locked=False)

            if record.is_locked(now):
                remaining = (record.locked_until - now).total_seconds()
                return LockStatus(
                    locked=True,
                    remaining_minutes=max(1, math.ceil(remaining / 60)),
                    unlock_at=record.locked_until,
                )

            del self._records[key]
            logger.info("lock_expired", identity=mask_email(key))
            return LockStatus(locked=False)

    def state(self, identity: str) -> LockoutState:
        key = normalize_identity(identity)
        now = self._clock.now()
        with self._locks.hold(key):
            record = self._records.get(key)
            if record is None or record.lock_expired(now):
                return LockoutState.CLEAN
            if record.is_locked(now):
                return LockoutState.LOCKED
            return LockoutState.ACCUMULATING

    def failure_count(self, identity: str) -> int:
        key = normalize_identity(identity)
        with self._locks.hold(key):
            record = self._records.get(key)
            return record.failure_count if record else 0

    def unlock(self, identity: str) -> bool:
        """Administrative unlock. Returns True if the identity had a record."""
        key = normalize_identity(identity)
        with self._locks.hold(key):
            removed = self._records.pop(key, None) is not None
        if removed:
            logger.info("account_unlocked", identity=mask_email(key))
        return removed

    def locked_accounts(self) -> list[dict]:
        now = self._clock.now()
        locked = []
        for key in list(self._records):
            with self._locks.hold(key):
                record = self._records.get(key)
                if record is None or not record.is_locked(now):
                    continue
                locked.append({
                    "identity": key,
                    "attempts": record.failure_count,
                    "locked_until": record.locked_until.isoformat(),
                    "remaining_minutes": math.ceil(
                        (record.locked_until - now).total_seconds() / 60
                    ),
                })
        return locked

    def sweep(self) -> int:
        """
        Garbage-collect idle records: expired locks, and unlocked records whose
        reset window has passed. Returns the number removed.
        """
        now = self._clock.now()
        cleaned = 0
        for key in list(self._records):
            with self._locks.hold(key):
                record = self._records.get(key)
                if record is None:
                    continue
                idle = now - record.last_failure_at > self.reset_window
                if record.locked_until is None:
                    stale = idle
                else:
                    stale = record.lock_expired(now) and idle
                if stale:
                    del self._records[key]
                    cleaned += 1
        if cleaned:
            logger.info("lockout_records_swept", cleaned=cleaned)
        return cleaned

    def __len__(self) -> int:
        return len(self._records)
