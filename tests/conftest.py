"""
Test fixtures for TrustWatch.

Provides:
- A ManualClock so time-based transitions never need sleeping
- Settings with a compliant security posture
- A fresh in-memory SQLite database per test
- Audit store/logger and a fully wired TrustService
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from trustwatch.alerting.schemas import ChannelDelivery, ComplianceAlert
from trustwatch.audit import AuditLogger, AuditTrailStore
from trustwatch.clock import ManualClock
from trustwatch.config import Settings
from trustwatch.db.engine import Database
from trustwatch.service import TrustService

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class RecordingChannel:
    """Alert channel that keeps what it was sent."""

    name = "recording"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.alerts: list[ComplianceAlert] = []

    async def dispatch(self, alert: ComplianceAlert) -> ChannelDelivery:
        self.alerts.append(alert)
        if self.fail:
            raise RuntimeError("channel down")
        return ChannelDelivery(channel=self.name, success=True)


def make_settings(**overrides) -> Settings:
    values = dict(
        environment="test",
        database_url=TEST_DB_URL,
        jwt_secret="s" * 48,
        jwt_access_token_expire_minutes=60,
        jwt_refresh_enabled=True,
        encryption_key="ab" * 32,
        allowed_origins=["https://app.example.com"],
        alert_webhook_url="",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    db = Database(settings)
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def store(database, clock) -> AuditTrailStore:
    return AuditTrailStore(database, clock=clock)


@pytest.fixture
def audit(store) -> AuditLogger:
    return AuditLogger(store, write_timeout_seconds=2.0)


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def service(settings, clock, database, channel) -> TrustService:
    return TrustService(settings, clock=clock, db=database, alert_channels=[channel])
