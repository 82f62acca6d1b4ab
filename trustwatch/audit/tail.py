"""
In-process audit tail.

A bounded ring buffer of the most recent audit events, for low-latency
"recent activity" reads. Best-effort only; the database is authoritative.
"""

import threading
from collections import deque
from typing import Optional

from trustwatch.audit.schemas import AuditCategory, AuditEvent


class RecentEventsTail:
    def __init__(self, maxlen: int = 1000):
        self._events: deque[AuditEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def push(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def snapshot(
        self,
        limit: int = 50,
        category: Optional[AuditCategory] = None,
    ) -> list[AuditEvent]:
        """Newest-first copy of the buffer, optionally for one category."""
        with self._lock:
            events = list(self._events)
        events.reverse()
        if category is not None:
            events = [e for e in events if e.category == category]
        return events[:limit]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
