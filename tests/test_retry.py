"""Tests for the per-file retry policy."""
import threading

import pytest

from ucx_sync.retry import RetryPolicy, TransferCancelled, linear_backoff

NO_WAIT = RetryPolicy(max_attempts=3, backoff=linear_backoff(0))


class Flaky:
    """Fails with *error* for the first *failures* calls."""

    def __init__(self, failures, error=OSError("share dropped")):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"


class TestLinearBackoff:
    def test_grows_with_attempt(self):
        delay = linear_backoff(1.0)
        assert [delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_policy_default_backoff(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delay(1) == 1.0
        assert policy.delay(2) == 2.0


class TestRetryPolicy:
    def test_succeeds_first_time(self):
        op = Flaky(0)
        assert NO_WAIT.run(op) == "done"
        assert op.calls == 1

    def test_recovers_after_transient_errors(self):
        op = Flaky(2)
        retries = []
        assert NO_WAIT.run(op, on_retry=lambda n, exc: retries.append(n)) == "done"
        assert op.calls == 3
        assert retries == [1, 2]

    def test_reraises_last_error_when_exhausted(self):
        op = Flaky(5)
        with pytest.raises(OSError, match="share dropped"):
            NO_WAIT.run(op)
        assert op.calls == 3

    def test_other_errors_are_not_retried(self):
        op = Flaky(1, error=ValueError("bad"))
        with pytest.raises(ValueError):
            NO_WAIT.run(op)
        assert op.calls == 1

    def test_cancelled_before_first_attempt(self):
        cancel = threading.Event()
        cancel.set()
        op = Flaky(0)
        with pytest.raises(TransferCancelled):
            NO_WAIT.run(op, cancel=cancel)
        assert op.calls == 0

    def test_cancel_interrupts_backoff(self):
        cancel = threading.Event()
        policy = RetryPolicy(max_attempts=3, backoff=linear_backoff(30))

        def op():
            cancel.set()
            raise OSError("gone")

        with pytest.raises(TransferCancelled):
            policy.run(op, cancel=cancel)

    def test_at_least_one_attempt(self):
        op = Flaky(0)
        assert RetryPolicy(max_attempts=0).run(op) == "done"
