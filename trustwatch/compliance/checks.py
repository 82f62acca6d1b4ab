"""
Compliance Checks — one class per SOC control.

Each check is a read-only async predicate: it may look at configuration or
query shared infrastructure, but never writes. The runner registers them in
an explicit ordered list (see `default_checks`), so adding or removing a
control never touches the runner.
"""

import asyncio
import base64
import binascii
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Iterable, Optional

import structlog

from trustwatch.audit import AuditCategory, AuditTrailStore
from trustwatch.clock import Clock, SystemClock
from trustwatch.compliance.schemas import ComplianceCheckResult
from trustwatch.config import Settings
from trustwatch.db.engine import Database
from trustwatch.security.rate_limit import AdaptiveRateLimiter

logger = structlog.get_logger(__name__)

MIN_SECRET_LENGTH = 32
MIN_KEY_BYTES = 32


class ComplianceCheck(ABC):
    """A named policy control that evaluates to pass/fail with issues."""

    control_id: str
    name: str

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()

    @abstractmethod
    async def evaluate(self) -> ComplianceCheckResult:
        ...

    def result(
        self, issues: list[str], details: Optional[dict[str, Any]] = None
    ) -> ComplianceCheckResult:
        return ComplianceCheckResult(
            control_id=self.control_id,
            name=self.name,
            passed=not issues,
            issues=issues,
            checked_at=self._clock.now(),
            details=details or {},
        )


class AuthenticationControlsCheck(ComplianceCheck):
    control_id = "CC6.1"
    name = "Authentication Controls"

    def __init__(self, jwt_secret: str, clock: Optional[Clock] = None):
        super().__init__(clock)
        self.jwt_secret = jwt_secret

    async def evaluate(self) -> ComplianceCheckResult:
        issues = []
        if not self.jwt_secret or len(self.jwt_secret) < MIN_SECRET_LENGTH:
            issues.append("JWT secret not configured or too weak")
        return self.result(issues)


def _decode_key(key: str) -> bytes:
    try:
        return bytes.fromhex(key)
    except ValueError:
        pass
    try:
        return base64.urlsafe_b64decode(key.encode())
    except (binascii.Error, ValueError):
        return b""


class EncryptionControlsCheck(ComplianceCheck):
    control_id = "CC6.3/CC6.4"
    name = "Encryption Controls"

    def __init__(self, encryption_key: str, clock: Optional[Clock] = None):
        super().__init__(clock)
        self.encryption_key = encryption_key

    async def evaluate(self) -> ComplianceCheckResult:
        issues = []
        if not self.encryption_key:
            issues.append("Encryption key not configured")
        elif len(_decode_key(self.encryption_key)) < MIN_KEY_BYTES:
            issues.append(f"Encryption key shorter than {MIN_KEY_BYTES * 8} bits")
        return self.result(issues)


class DatabaseConnectivityCheck(ComplianceCheck):
    control_id = "A1.2"
    name = "Database Connectivity"

    def __init__(
        self,
        db: Database,
        store: AuditTrailStore,
        timeout_seconds: float = 5.0,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self.db = db
        self.store = store
        self.timeout_seconds = timeout_seconds

    async def evaluate(self) -> ComplianceCheckResult:
        issues = []
        details: dict[str, Any] = {}
        try:
            await asyncio.wait_for(self.db.ping(), timeout=self.timeout_seconds)
            details["security_events"] = await asyncio.wait_for(
                self.store.count(AuditCategory.SECURITY), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            issues.append(f"Database did not respond within {self.timeout_seconds}s")
        except Exception as e:
            issues.append(f"Database connectivity error: {e}")
        return self.result(issues, details)


class AccessLogCheck(ComplianceCheck):
    """Silence in the security log usually means logging itself broke."""

    control_id = "C1.2"
    name = "Access Log Controls"

    def __init__(
        self,
        store: AuditTrailStore,
        quiet_window_seconds: int = 3600,
        min_history: int = 10,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self.store = store
        self.quiet_window_seconds = quiet_window_seconds
        self.min_history = min_history

    async def evaluate(self) -> ComplianceCheckResult:
        issues = []
        since = self._clock.now() - timedelta(seconds=self.quiet_window_seconds)
        try:
            recent = await self.store.count(AuditCategory.SECURITY, since=since)
            if recent == 0:
                total = await self.store.count(AuditCategory.SECURITY)
                if total > self.min_history:
                    issues.append(
                        "No security audit logs in the last hour (may indicate logging failure)"
                    )
        except Exception as e:
            issues.append(f"Error checking logs: {e}")
        return self.result(issues)


class RateLimitingControlsCheck(ComplianceCheck):
    control_id = "CC6.1"
    name = "Rate Limiting Controls"

    def __init__(self, limiter: AdaptiveRateLimiter, clock: Optional[Clock] = None):
        super().__init__(clock)
        self.limiter = limiter

    async def evaluate(self) -> ComplianceCheckResult:
        issues = []
        policies = self.limiter.policies
        if "auth" not in policies:
            issues.append("No rate limit policy for authentication routes")
        for name, policy in policies.items():
            if policy.max_requests <= 0 or policy.window_seconds <= 0:
                issues.append(f"Rate limit policy '{name}' has no effective ceiling")
        return self.result(issues, {"route_classes": sorted(policies)})


class CorsConfigurationCheck(ComplianceCheck):
    control_id = "CC6.2"
    name = "CORS Configuration"

    def __init__(self, allowed_origins: Iterable[str], clock: Optional[Clock] = None):
        super().__init__(clock)
        self.allowed_origins = list(allowed_origins)

    async def evaluate(self) -> ComplianceCheckResult:
        issues = []
        if not self.allowed_origins:
            issues.append("CORS whitelist is empty")
        if any(o.strip() == "*" for o in self.allowed_origins):
            issues.append("CORS uses wildcard")
        return self.result(issues, {"allowed_origins": self.allowed_origins})


class TokenExpirationCheck(ComplianceCheck):
    control_id = "CC6.1"
    name = "Token Expiration Policy"

    def __init__(
        self,
        expire_minutes: int,
        refresh_enabled: bool,
        max_hours: int = 6,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self.expire_minutes = expire_minutes
        self.refresh_enabled = refresh_enabled
        self.max_hours = max_hours

    async def evaluate(self) -> ComplianceCheckResult:
        issues = []
        hours = self.expire_minutes / 60
        if hours > self.max_hours:
            issues.append(
                f"Token expiration exceeds recommendation: {hours:g}h > {self.max_hours}h"
            )
        if not self.refresh_enabled and hours > 12:
            issues.append("Long token expiration without refresh token system")
        return self.result(
            issues,
            {"current_expiration": f"{hours:g}h", "recommended": f"{self.max_hours}h"},
        )


def default_checks(
    settings: Settings,
    db: Database,
    store: AuditTrailStore,
    limiter: AdaptiveRateLimiter,
    clock: Optional[Clock] = None,
) -> list[ComplianceCheck]:
    """The standard control battery, in reporting order."""
    return [
        AuthenticationControlsCheck(settings.jwt_secret, clock=clock),
        EncryptionControlsCheck(settings.encryption_key, clock=clock),
        DatabaseConnectivityCheck(
            db, store, timeout_seconds=settings.health_check_timeout_seconds, clock=clock
        ),
        AccessLogCheck(store, clock=clock),
        RateLimitingControlsCheck(limiter, clock=clock),
        CorsConfigurationCheck(settings.allowed_origins, clock=clock),
        TokenExpirationCheck(
            settings.jwt_access_token_expire_minutes,
            settings.jwt_refresh_enabled,
            max_hours=settings.max_token_expiry_hours,
            clock=clock,
        ),
    ]
