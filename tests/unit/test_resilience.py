"""
Tests for retry classification, backoff, retry executor, circuit breaker,
rate limiter and memory monitor
"""

import asyncio
import pytest
from unittest.mock import AsyncMock
from core.exceptions import (
    AuthenticationError,
    CircuitOpenError,
    NetworkError,
    OperationTimeoutError,
    RateLimitExceededError,
    SchemaValidationError,
)
from core.resilience import (
    CircuitBreaker,
    CircuitState,
    MemoryMonitor,
    RateLimiter,
    RetryContext,
    RetryExecutor,
    backoff_delay,
    is_retryable,
)
from models.base import ActivityStatus, PullStatus, ReportPeriod


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


# ============================================================================
# Classification
# ============================================================================

class TestIsRetryable:

    @pytest.mark.parametrize("error", [
        NetworkError("socket closed"),
        {"status": 429, "message": "Too Many Requests"},
        {"status": 503},
        {"status_code": 500},
        Exception("ECONNRESET while reading body"),
        Exception("Request timed out"),
        Exception("Service temporarily unavailable"),
        asyncio.TimeoutError(),
        ConnectionError(),
    ])
    def test_transient_errors_are_retried(self, error):
        assert is_retryable(error) is True

    @pytest.mark.parametrize("error", [
        AuthenticationError("token rejected"),
        SchemaValidationError("every record failed"),
        {"status": 401},
        {"status": 404, "message": "timeout"},
        Exception("Invalid report type"),
        Exception("Access denied"),
        ValueError("boom"),
    ])
    def test_permanent_errors_are_not_retried(self, error):
        assert is_retryable(error) is False

    def test_status_wins_over_message(self):
        assert is_retryable({"status": 403, "message": "network glitch"}) is False
        assert is_retryable({"status": 502, "message": "invalid gateway"}) is True

    def test_non_retryable_message_wins_over_retryable_message(self):
        assert is_retryable(Exception("Unauthorized: request timed out")) is False


class TestBackoff:

    def test_exponential_growth_without_jitter(self):
        delays = [backoff_delay(n, base_delay=1.0, max_delay=100.0, jitter=lambda: 0.0) for n in (1, 2, 3, 4)]
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_jitter_adds_at_most_ten_percent(self):
        assert backoff_delay(1, base_delay=2.0, max_delay=100.0, jitter=lambda: 1.0) == pytest.approx(2.2)

    def test_capped_by_configured_max(self):
        assert backoff_delay(10, base_delay=1.0, max_delay=30.0, jitter=lambda: 0.0) == 30.0

    def test_hard_ceiling_applies_to_large_configuration(self):
        assert backoff_delay(20, base_delay=1.0, max_delay=10_000.0, jitter=lambda: 0.5) == 300.0


# ============================================================================
# Retry executor
# ============================================================================

def make_tracker():
    tracker = AsyncMock()
    tracker.increment_retry_count.side_effect = [1, 2, 3, 4]
    return tracker


def statuses_logged(tracker):
    return [c.kwargs["status"] for c in tracker.log_activity.call_args_list]


class TestRetryExecutor:

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        tracker = make_tracker()
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[NetworkError("reset"), NetworkError("reset"), "ok"])
        executor = RetryExecutor(tracker, sleep=sleep, base_delay=0.5, max_delay=10.0)
        context = RetryContext(cron_job_id=1, period=ReportPeriod.WEEK, action="import_document")

        result = await executor.execute(operation, max_attempts=3, context=context)

        assert result.success is True
        assert result.data == "ok"
        assert result.attempts == 3
        assert result.retry_count == 2
        assert sleep.await_count == 2
        retry_writes = [c.args[2] for c in tracker.update_report_status.call_args_list]
        assert retry_writes == [PullStatus.RETRY_FAILED, PullStatus.RETRY_FAILED]
        assert statuses_logged(tracker) == [
            ActivityStatus.STARTED, ActivityStatus.WILL_RETRY,
            ActivityStatus.STARTED, ActivityStatus.WILL_RETRY,
            ActivityStatus.STARTED, ActivityStatus.SUCCESS,
        ]

    @pytest.mark.asyncio
    async def test_non_retryable_error_aborts_immediately(self):
        tracker = make_tracker()
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=AuthenticationError("401 Unauthorized"))
        executor = RetryExecutor(tracker, sleep=sleep)

        result = await executor.execute(
            operation, max_attempts=5, context=RetryContext(cron_job_id=1, period=ReportPeriod.MONTH)
        )

        assert result.success is False
        assert result.non_retryable is True
        assert result.attempts == 1
        assert operation.await_count == 1
        sleep.assert_not_awaited()
        tracker.increment_retry_count.assert_not_awaited()
        tracker.update_report_status.assert_awaited_once_with(
            1, ReportPeriod.MONTH, PullStatus.FAILED, error_message="401 Unauthorized"
        )

    @pytest.mark.asyncio
    async def test_exhausted_attempts_write_failed(self):
        tracker = make_tracker()
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=NetworkError("connection refused"))
        executor = RetryExecutor(tracker, sleep=sleep)

        result = await executor.execute(
            operation, max_attempts=2, context=RetryContext(cron_job_id=7, period=ReportPeriod.WEEK)
        )

        assert result.success is False
        assert result.non_retryable is False
        assert result.attempts == 2
        assert result.error_message == "connection refused"
        assert sleep.await_count == 1
        last_status = tracker.update_report_status.call_args_list[-1].args[2]
        assert last_status == PullStatus.FAILED
        assert statuses_logged(tracker)[-1] == ActivityStatus.FAILED

    @pytest.mark.asyncio
    async def test_terminal_period_is_not_rewritten(self):
        tracker = make_tracker()
        operation = AsyncMock(side_effect=[NetworkError("reset"), NetworkError("reset")])
        executor = RetryExecutor(tracker, sleep=AsyncMock())
        context = RetryContext(cron_job_id=1, period=ReportPeriod.WEEK, record_status=False)

        result = await executor.execute(operation, max_attempts=2, context=context)

        assert result.success is False
        tracker.update_report_status.assert_not_awaited()
        assert tracker.log_activity.await_count == 4

    @pytest.mark.asyncio
    async def test_without_tracker_counts_retries_locally(self):
        operation = AsyncMock(side_effect=[asyncio.TimeoutError(), "done"])
        executor = RetryExecutor(sleep=AsyncMock())

        result = await executor.execute(operation, max_attempts=3)

        assert result.success is True
        assert result.retry_count == 1

    @pytest.mark.asyncio
    async def test_total_budget_exhausted_before_attempt(self):
        clock = FakeClock()
        tracker = make_tracker()

        async def slow_failure():
            clock.advance(6)
            raise NetworkError("reset")

        executor = RetryExecutor(tracker, sleep=AsyncMock(), total_timeout=10, clock=clock)
        result = await executor.execute(
            slow_failure, max_attempts=5, context=RetryContext(cron_job_id=1, period=ReportPeriod.WEEK)
        )

        assert result.success is False
        assert result.timed_out is True
        assert isinstance(result.error, OperationTimeoutError)
        assert result.attempts == 2


# ============================================================================
# Circuit breaker
# ============================================================================

class TestCircuitBreaker:

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2, reset_timeout=30, clock=FakeClock())
        failing = AsyncMock(side_effect=NetworkError("down"))

        for _ in range(2):
            with pytest.raises(NetworkError):
                await breaker.call(failing)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call(AsyncMock(return_value="ok"))
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_probe_success_closes_circuit(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30, clock=clock)
        with pytest.raises(NetworkError):
            await breaker.call(AsyncMock(side_effect=NetworkError("down")))

        clock.advance(31)
        assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
        assert breaker.get_state() == {
            "name": "test",
            "state": "CLOSED",
            "failure_count": 0,
            "failure_threshold": 1,
        }

    @pytest.mark.asyncio
    async def test_probe_failure_reopens_circuit(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30, clock=clock)
        with pytest.raises(NetworkError):
            await breaker.call(AsyncMock(side_effect=NetworkError("down")))

        clock.advance(31)
        with pytest.raises(NetworkError):
            await breaker.call(AsyncMock(side_effect=NetworkError("still down")))

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call(AsyncMock(return_value="ok"))

    @pytest.mark.asyncio
    async def test_only_one_probe_while_half_open(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30, clock=clock)
        with pytest.raises(NetworkError):
            await breaker.call(AsyncMock(side_effect=NetworkError("down")))
        clock.advance(31)

        release = asyncio.Event()

        async def slow_probe():
            await release.wait()
            return "probe"

        probe = asyncio.ensure_future(breaker.call(slow_probe))
        await asyncio.sleep(0)

        with pytest.raises(CircuitOpenError):
            await breaker.call(AsyncMock(return_value="second"))

        release.set()
        assert await probe == "probe"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reset(self):
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=30, clock=FakeClock())
        with pytest.raises(NetworkError):
            await breaker.call(AsyncMock(side_effect=NetworkError("down")))

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(AsyncMock(return_value=1)) == 1


# ============================================================================
# Rate limiter
# ============================================================================

class TestRateLimiter:

    def test_limit_per_window(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=2, window_seconds=60, clock=clock)

        limiter.check_limit("seller-a")
        limiter.check_limit("seller-a")
        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.check_limit("seller-a")

        assert exc_info.value.context["retry_after"] == 60
        assert limiter.remaining("seller-a") == 0

    def test_keys_are_independent(self):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

        limiter.check_limit("seller-a")
        limiter.check_limit("seller-b")

        assert limiter.remaining("seller-a") == 0
        assert limiter.remaining("seller-b") == 0

    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)

        limiter.check_limit("seller-a")
        clock.advance(60)
        limiter.check_limit("seller-a")

    def test_stale_keys_are_swept(self):
        clock = FakeClock()
        limiter = RateLimiter(max_requests=5, window_seconds=60, clock=clock)
        limiter.check_limit("seller-a")
        limiter.check_limit("seller-b")
        assert limiter.tracked_keys == 2

        clock.advance(120)
        limiter.check_limit("seller-c")

        assert limiter.tracked_keys == 1

    @pytest.mark.asyncio
    async def test_acquire_waits_for_free_slot(self):
        clock = FakeClock()

        async def fake_sleep(seconds):
            clock.advance(seconds)

        limiter = RateLimiter(max_requests=1, window_seconds=10, clock=clock, sleep=fake_sleep)
        await limiter.acquire("seller-a")
        await limiter.acquire("seller-a")

        assert clock.now == pytest.approx(1010.0)


# ============================================================================
# Memory monitor
# ============================================================================

class TestMemoryMonitor:

    def test_reports_usage(self):
        monitor = MemoryMonitor(threshold_mb=100, rss_reader=lambda: 50 * 1024 * 1024)

        assert monitor.usage()["rss_mb"] == 50.0
        assert monitor.is_memory_high() is False

    def test_high_water_mark(self):
        monitor = MemoryMonitor(threshold_mb=100, rss_reader=lambda: 150 * 1024 * 1024)

        assert monitor.is_memory_high() is True
        assert monitor.is_memory_high(threshold_mb=200) is False
        assert monitor.relieve_pressure() is True

    def test_unreadable_rss_is_never_high(self):
        monitor = MemoryMonitor(threshold_mb=1, rss_reader=lambda: None)

        assert monitor.is_memory_high() is False
        assert monitor.usage()["rss_mb"] is None
