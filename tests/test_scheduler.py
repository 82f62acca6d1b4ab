"""
Scheduler tests: job registration and the job bodies themselves.
"""

import pytest

from trustwatch.audit import AuditCategory, AuditEvent, AuditResult
from trustwatch.scheduler import COMPLIANCE_MAX_INSTANCES


@pytest.mark.asyncio
class TestTrustScheduler:
    async def test_jobs_registered(self, service, monkeypatch):
        scheduler = service.scheduler

        async def idle():
            return None

        for job in ("run_compliance", "sweep_lockouts", "sweep_rate_counters", "purge_audit"):
            monkeypatch.setattr(scheduler, job, idle)
        scheduler.start()
        try:
            assert scheduler.running
            jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}
            assert set(jobs) == {
                "compliance_checks", "lockout_sweep", "rate_counter_sweep", "audit_purge",
            }
            assert jobs["compliance_checks"].max_instances == COMPLIANCE_MAX_INSTANCES
            assert jobs["compliance_checks"].trigger.interval.total_seconds() == 60
            assert jobs["audit_purge"].trigger.interval.total_seconds() == 3600
        finally:
            scheduler.stop()
        assert not scheduler.running

    async def test_stop_without_start(self, service):
        service.scheduler.stop()
        assert not service.scheduler.running

    async def test_compliance_job_records_run(self, service):
        await service.scheduler.run_compliance()
        assert len(service.runner.history) == 1

    async def test_compliance_job_survives_runner_failure(self, service, monkeypatch):
        async def broken():
            raise RuntimeError("runner exploded")

        monkeypatch.setattr(service.runner, "run_checks", broken)
        await service.scheduler.run_compliance()

    async def test_sweeps_drop_stale_state(self, service, clock):
        await service.record_failed_attempt("alice")
        service.limiter.check("api", "1.1.1.1")
        clock.advance(days=2)

        await service.scheduler.sweep_lockouts()
        await service.scheduler.sweep_rate_counters()

        assert len(service.lockout) == 0
        assert len(service.limiter) == 0

    async def test_purge_job(self, service, store, clock):
        await store.append(AuditEvent(
            category=AuditCategory.SECURITY, action="OLD", result=AuditResult.SUCCESS, actor_id="a",
        ))
        clock.advance(days=91)
        await service.scheduler.purge_audit()
        assert await store.recent_events(AuditCategory.SECURITY) == []
