"""
Account Lockout Tests.

Tests: accumulation, lock at threshold, lock immutability, expiry,
success reset, reset window, sweep, identity validation.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from trustwatch.clock import ManualClock
from trustwatch.errors import ValidationError
from trustwatch.security.lockout import AccountLockoutTracker, LockoutState


@pytest.fixture
def tracker(clock) -> AccountLockoutTracker:
    return AccountLockoutTracker(clock=clock)


class TestFailureAccumulation:
    def test_first_failures_accumulate(self, tracker):
        for expected in range(1, 5):
            outcome = tracker.record_failure("alice@example.com", "1.2.3.4")
            assert outcome.state == LockoutState.ACCUMULATING
            assert outcome.failure_count == expected
        assert not tracker.is_locked("alice@example.com").locked

    def test_fifth_failure_locks_for_thirty_minutes(self, tracker, clock):
        for _ in range(4):
            tracker.record_failure("alice@example.com")
        outcome = tracker.record_failure("alice@example.com")

        assert outcome.state == LockoutState.LOCKED
        assert outcome.newly_locked is True
        assert (outcome.locked_until - clock.now()).total_seconds() == 30 * 60

        status = tracker.is_locked("alice@example.com")
        assert status.locked
        assert status.remaining_minutes == 30

    def test_failure_while_locked_does_not_extend_lock(self, tracker, clock):
        for _ in range(5):
            tracker.record_failure("alice@example.com")
        locked_until = tracker.is_locked("alice@example.com").unlock_at

        clock.advance(minutes=10)
        outcome = tracker.record_failure("alice@example.com")

        assert outcome.state == LockoutState.LOCKED
        assert outcome.newly_locked is False
        assert outcome.locked_until == locked_until
        assert tracker.failure_count("alice@example.com") == 5

    def test_identity_is_case_insensitive(self, tracker):
        tracker.record_failure("Alice@Example.com")
        tracker.record_failure("alice@example.com")
        assert tracker.failure_count("ALICE@EXAMPLE.COM") == 2

    @pytest.mark.parametrize("identity", ["", "   ", None])
    def test_blank_identity_rejected(self, tracker, identity):
        with pytest.raises(ValidationError):
            tracker.record_failure(identity)


class TestLockExpiry:
    def test_lock_expires_and_record_is_cleared(self, tracker, clock):
        for _ in range(5):
            tracker.record_failure("bob@example.com")

        clock.advance(minutes=29)
        assert tracker.is_locked("bob@example.com").remaining_minutes == 1

        clock.advance(minutes=1)
        assert not tracker.is_locked("bob@example.com").locked
        assert len(tracker) == 0
        assert tracker.state("bob@example.com") == LockoutState.CLEAN

    def test_failure_after_expiry_starts_fresh(self, tracker, clock):
        for _ in range(5):
            tracker.record_failure("bob@example.com")
        clock.advance(minutes=31)

        outcome = tracker.record_failure("bob@example.com")
        assert outcome.failure_count == 1
        assert outcome.state == LockoutState.ACCUMULATING

    def test_remaining_minutes_rounds_up(self, tracker, clock):
        for _ in range(5):
            tracker.record_failure("bob@example.com")
        clock.advance(minutes=5, seconds=30)
        assert tracker.is_locked("bob@example.com").remaining_minutes == 25


class TestResets:
    def test_success_clears_failures(self, tracker):
        for _ in range(3):
            tracker.record_failure("carol@example.com")
        assert tracker.record_success("carol@example.com") is True
        assert tracker.failure_count("carol@example.com") == 0
        assert tracker.state("carol@example.com") == LockoutState.CLEAN

    def test_success_clears_lock(self, tracker):
        for _ in range(5):
            tracker.record_failure("carol@example.com")
        tracker.record_success("carol@example.com")
        assert not tracker.is_locked("carol@example.com").locked

    def test_reset_window_restarts_count(self, tracker, clock):
        for _ in range(4):
            tracker.record_failure("dave@example.com")
        clock.advance(minutes=16)
        outcome = tracker.record_failure("dave@example.com")
        assert outcome.failure_count == 1

    def test_admin_unlock(self, tracker):
        for _ in range(5):
            tracker.record_failure("erin@example.com")
        assert tracker.unlock("erin@example.com") is True
        assert not tracker.is_locked("erin@example.com").locked
        assert tracker.unlock("erin@example.com") is False

    def test_locked_accounts_lists_only_active_locks(self, tracker):
        for _ in range(5):
            tracker.record_failure("frank@example.com")
        tracker.record_failure("grace@example.com")

        locked = tracker.locked_accounts()
        assert [a["identity"] for a in locked] == ["frank@example.com"]
        assert locked[0]["remaining_minutes"] == 30


class TestSweep:
    def test_sweep_removes_idle_and_expired_records(self, tracker, clock):
        tracker.record_failure("idle@example.com")
        for _ in range(5):
            tracker.record_failure("locked@example.com")

        clock.advance(minutes=20)
        assert tracker.sweep() == 1      # idle record past the reset window
        assert len(tracker) == 1

        clock.advance(minutes=15)
        assert tracker.sweep() == 1      # lock expired and idle
        assert len(tracker) == 0

    def test_source_addresses_are_bounded(self, clock):
        tracker = AccountLockoutTracker(max_attempts=100, max_sources=3, clock=clock)
        for i in range(10):
            tracker.record_failure("henry@example.com", f"10.0.0.{i}")
        record = tracker._records["henry@example.com"]
        assert record.source_addresses == ["10.0.0.7", "10.0.0.8", "10.0.0.9"]


class TestLockoutProperties:
    @given(ops=st.lists(st.booleans(), min_size=1, max_size=30))
    @hyp_settings(max_examples=100, deadline=None)
    def test_success_always_resets_to_zero(self, ops):
        """True = failure, False = success. After any success the count is zero."""
        tracker = AccountLockoutTracker(clock=ManualClock())
        for failed in ops:
            if failed:
                tracker.record_failure("prop@example.com")
            else:
                tracker.record_success("prop@example.com")
                assert tracker.failure_count("prop@example.com") == 0

    @given(failures=st.integers(min_value=0, max_value=20))
    @hyp_settings(max_examples=50, deadline=None)
    def test_count_never_exceeds_threshold(self, failures):
        tracker = AccountLockoutTracker(clock=ManualClock())
        for _ in range(failures):
            tracker.record_failure("prop@example.com")
        assert tracker.failure_count("prop@example.com") == min(failures, 5)
        assert tracker.is_locked("prop@example.com").locked == (failures >= 5)


class TestBoundedInput:
    def test_over_long_identity_rejected_before_state_change(self, tracker):
        with pytest.raises(ValidationError):
            tracker.record_failure("x" * 300 + "@example.com", "1.2.3.4")
        assert len(tracker) == 0

    def test_over_long_source_rejected_before_state_change(self, tracker):
        with pytest.raises(ValidationError):
            tracker.record_failure("alice@example.com", "9" * 300)
        assert tracker.failure_count("alice@example.com") == 0

    def test_identity_at_limit_accepted(self, tracker):
        identity = "a" * 255
        assert tracker.record_failure(identity).failure_count == 1


class TestConcurrentFailures:
    def _burst(self, tracker, identity, n):
        barrier = threading.Barrier(n)

        def fail():
            barrier.wait()
            return tracker.record_failure(identity, "10.0.0.1")

        with ThreadPoolExecutor(max_workers=n) as pool:
            return [f.result() for f in [pool.submit(fail) for _ in range(n)]]

    def test_burst_on_one_identity_locks_exactly_once(self, tracker):
        outcomes = self._burst(tracker, "alice@example.com", 20)

        assert tracker.failure_count("alice@example.com") == 5
        assert sum(o.newly_locked for o in outcomes) == 1
        assert sorted(o.failure_count for o in outcomes if o.state == LockoutState.ACCUMULATING) \
            == [1, 2, 3, 4]

    def test_burst_below_threshold_loses_no_updates(self, tracker):
        outcomes = self._burst(tracker, "bob@example.com", 4)

        assert tracker.failure_count("bob@example.com") == 4
        assert sorted(o.failure_count for o in outcomes) == [1, 2, 3, 4]
        assert not tracker.is_locked("bob@example.com").locked

    def test_identities_counted_independently(self, tracker):
        barrier = threading.Barrier(8)

        def fail(i):
            barrier.wait()
            for _ in range(3):
                tracker.record_failure(f"user{i % 4}@example.com")

        with ThreadPoolExecutor(max_workers=8) as pool:
            for future in [pool.submit(fail, i) for i in range(8)]:
                future.result()

        # two threads x three failures per identity reaches the threshold
        for i in range(4):
            assert tracker.failure_count(f"user{i}@example.com") == 5
        assert len(tracker._locks) == 0
