"""
Health Check.

Reports database reachability plus process memory, uptime and CPU times
(via psutil). The overall status is UP unless the database is unreachable,
in which case it is DEGRADED. Each check is itself audited.
"""

import asyncio
import time
from typing import Any, Optional

import psutil
import structlog

from trustwatch.audit import AuditLogger, AuditResult, AuditSeverity
from trustwatch.clock import Clock, SystemClock
from trustwatch.db.engine import Database

logger = structlog.get_logger(__name__)


class HealthChecker:
    def __init__(
        self,
        db: Database,
        audit: AuditLogger,
        version: str = "1.0.0",
        environment: str = "development",
        timeout_seconds: float = 5.0,
        memory_warning_mb: int = 500,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.audit = audit
        self.version = version
        self.environment = environment
        self.timeout_seconds = timeout_seconds
        self.memory_warning_mb = memory_warning_mb
        self._clock = clock or SystemClock()
        self._process = psutil.Process()

    async def check_database(self) -> dict[str, Any]:
        start = time.perf_counter()
        try:
            await asyncio.wait_for(self.db.ping(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return {"status": "DOWN", "error": f"no response within {self.timeout_seconds}s"}
        except Exception as e:
            return {"status": "DOWN", "error": str(e) or type(e).__name__}
        return {
            "status": "UP",
            "dialect": self.db.engine.dialect.name,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
        }

    def check_memory(self) -> dict[str, Any]:
        rss_mb = round(self._process.memory_info().rss / 1024 / 1024)
        return {
            "status": "UP" if rss_mb < self.memory_warning_mb else "WARNING",
            "rss_mb": rss_mb,
            "system_percent": psutil.virtual_memory().percent,
        }

    def check_cpu(self) -> dict[str, Any]:
        cpu = self._process.cpu_times()
        return {
            "status": "UP",
            "user_ms": round(cpu.user * 1000),
            "system_ms": round(cpu.system * 1000),
        }

    async def health_check(self) -> dict[str, Any]:
        checks = {
            "database": await self.check_database(),
            "memory": self.check_memory(),
            "cpu": self.check_cpu(),
        }
        status = AuditResult.UP if checks["database"]["status"] == "UP" else AuditResult.DEGRADED
        health = {
            "status": status.value,
            "timestamp": self._clock.now().isoformat(),
            "uptime_seconds": round(time.time() - self._process.create_time(), 1),
            "version": self.version,
            "environment": self.environment,
            "checks": checks,
        }

        if status == AuditResult.UP:
            logger.info("health_check", status=status.value, rss_mb=checks["memory"]["rss_mb"])
        else:
            logger.warning("health_check", status=status.value, database=checks["database"])

        await self.audit.log_security_event(
            action="HEALTH_CHECK",
            result=status,
            severity=AuditSeverity.INFO if status == AuditResult.UP else AuditSeverity.MEDIUM,
            resource="SYSTEM",
            control_id="A1.2",
            metadata=health,
        )
        return health
