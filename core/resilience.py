"""
Resilience primitives shared by every stage that talks to the reporting API
or does bulk I/O.

This module provides:
- Retryable-error classification by status code and message pattern
- Exponential backoff with jitter and a hard ceiling
- A retry executor that records every attempt through the cron job tracker
- Circuit breaker (CLOSED -> OPEN -> HALF_OPEN -> CLOSED)
- Sliding-window rate limiter keyed by caller identity
- Best-effort memory pressure monitor

Breaker and limiter state is process-wide and scoped per logical
dependency, never per tenant.
"""

import asyncio
import gc
import logging
import os
import random
import re
import sys
import time
import tracemalloc
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

import httpx

from core.config import settings
from models.base import ActivityStatus, PullStatus
from core.exceptions import (
    CircuitOpenError,
    NonRetryableError,
    OperationTimeoutError,
    RateLimitExceededError,
    RetryableError,
)

logger = logging.getLogger(__name__)

# Any single backoff wait is capped here regardless of configuration
MAX_BACKOFF_CEILING_SECONDS = 300.0

NON_RETRYABLE_PATTERNS = re.compile(
    r"unauthori[sz]ed|forbidden|authentication|invalid|validation|not found|access denied",
    re.IGNORECASE,
)

RETRYABLE_PATTERNS = re.compile(
    r"timeout|timed out|econnrefused|connection refused|econnreset|connection reset|"
    r"network|rate limit|too many requests|throttl|temporarily unavailable|"
    r"service unavailable|socket hang up|deadlock",
    re.IGNORECASE,
)


# ============================================================================
# Error classification
# ============================================================================

def _status_of(error: Any) -> Optional[int]:
    if isinstance(error, dict):
        status = error.get("status", error.get("status_code"))
    else:
        status = getattr(error, "status", None)
        if status is None:
            status = getattr(error, "status_code", None)
        if status is None:
            context = getattr(error, "context", None)
            if isinstance(context, dict):
                status = context.get("status_code")
        if status is None:
            response = getattr(error, "response", None)
            status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _message_of(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message", ""))
    message = getattr(error, "message", None)
    return str(message) if message else str(error)


def is_retryable(error: Any) -> bool:
    """
    Classify an error (exception or ``{"status": .., "message": ..}`` dict)
    as transient.

    Precedence: explicit retry mixins, HTTP status, message patterns
    (non-retryable first), then known transport exception types.
    Anything unclassified is not retried.
    """
    if isinstance(error, NonRetryableError):
        return False
    if isinstance(error, RetryableError):
        return True

    status = _status_of(error)
    if status is not None:
        if status == 429 or 500 <= status <= 599:
            return True
        if 400 <= status <= 499:
            return False

    message = _message_of(error)
    if NON_RETRYABLE_PATTERNS.search(message):
        return False
    if RETRYABLE_PATTERNS.search(message):
        return True

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError, httpx.TransportError)):
        return True

    return False


def backoff_delay(
    attempt: int,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    jitter: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait before retry ``attempt`` (1-based)"""
    base = settings.RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
    cap = settings.RETRY_MAX_DELAY_SECONDS if max_delay is None else max_delay
    cap = min(cap, MAX_BACKOFF_CEILING_SECONDS)

    exponent = max(attempt, 1) - 1
    delay = base * (2 ** exponent) * (1 + jitter() * 0.1)
    return max(0.0, min(delay, cap))


# ============================================================================
# Retry executor
# ============================================================================

@dataclass
class RetryResult:
    success: bool
    attempts: int
    retry_count: int = 0
    data: Any = None
    error: Optional[BaseException] = None
    non_retryable: bool = False
    timed_out: bool = False

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return _message_of(self.error) or type(self.error).__name__


@dataclass
class RetryContext:
    """Where attempt outcomes are recorded"""
    cron_job_id: Optional[int] = None
    period: Any = None
    action: str = "operation"
    amazon_seller_id: Optional[str] = None
    report_id: Optional[str] = None
    # False when the period is already terminal and must not be rewritten
    record_status: bool = True


class RetryExecutor:
    """
    Runs an async operation with bounded retries.

    Every attempt is recorded through ``tracker`` (a CronJobTracker, or any
    object with ``log_activity``, ``increment_retry_count`` and
    ``update_report_status``). Retry bookkeeping is skipped when the context
    has no cron job.
    """

    def __init__(
        self,
        tracker=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        total_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tracker = tracker
        self.sleep = sleep
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.total_timeout = settings.RETRY_TOTAL_TIMEOUT_SECONDS if total_timeout is None else total_timeout
        self.clock = clock

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        max_attempts: int = 3,
        context: Optional[RetryContext] = None,
    ) -> RetryResult:
        context = context or RetryContext()
        max_attempts = max(1, max_attempts)
        started = self.clock()
        retry_count = 0
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_attempts + 1):
            remaining = self.total_timeout - (self.clock() - started)
            if remaining <= 0:
                return await self._timed_out(context, attempt - 1, retry_count, last_error)

            attempt_started = self.clock()
            await self._log(context, ActivityStatus.STARTED, f"Attempt {attempt}/{max_attempts}", retry_count)

            try:
                data = await asyncio.wait_for(operation(), timeout=remaining)
            except asyncio.TimeoutError as e:
                if self.clock() - started >= self.total_timeout:
                    return await self._timed_out(context, attempt, retry_count, e)
                last_error = e
            except Exception as e:
                last_error = e
            else:
                await self._log(
                    context,
                    ActivityStatus.SUCCESS,
                    f"{context.action} succeeded on attempt {attempt}",
                    retry_count,
                    execution_time=self.clock() - attempt_started,
                )
                return RetryResult(success=True, attempts=attempt, retry_count=retry_count, data=data)

            message = _message_of(last_error) or type(last_error).__name__

            if not is_retryable(last_error):
                logger.error(f"{context.action} failed with non-retryable error: {message}")
                await self._fail(context, message, retry_count, self.clock() - attempt_started)
                return RetryResult(
                    success=False,
                    attempts=attempt,
                    retry_count=retry_count,
                    error=last_error,
                    non_retryable=True,
                )

            if attempt >= max_attempts:
                logger.error(f"{context.action} failed after {attempt} attempts: {message}")
                await self._fail(context, message, retry_count, self.clock() - attempt_started)
                return RetryResult(success=False, attempts=attempt, retry_count=retry_count, error=last_error)

            delay = backoff_delay(attempt, self.base_delay, self.max_delay)
            logger.warning(
                f"{context.action} attempt {attempt}/{max_attempts} failed: {message}. "
                f"Retrying in {delay:.2f}s"
            )
            if self.tracker is not None and context.cron_job_id is not None:
                retry_count = await self.tracker.increment_retry_count(context.cron_job_id, context.period)
                if context.record_status:
                    await self.tracker.update_report_status(
                        context.cron_job_id, context.period, PullStatus.RETRY_FAILED, error_message=message
                    )
            else:
                retry_count += 1
            await self._log(
                context,
                ActivityStatus.WILL_RETRY,
                message,
                retry_count,
                execution_time=self.clock() - attempt_started,
            )
            await self.sleep(delay)

        # Unreachable: the loop always returns
        return RetryResult(success=False, attempts=max_attempts, retry_count=retry_count, error=last_error)

    async def _timed_out(self, context, attempts, retry_count, cause) -> RetryResult:
        error = OperationTimeoutError(
            f"{context.action} exceeded {self.total_timeout}s total budget",
            context={"attempts": attempts},
            original_exception=cause if isinstance(cause, Exception) else None,
        )
        logger.error(error.message)
        await self._fail(context, error.message, retry_count, None)
        return RetryResult(
            success=False,
            attempts=attempts,
            retry_count=retry_count,
            error=error,
            timed_out=True,
        )

    async def _fail(self, context, message, retry_count, execution_time) -> None:
        if self.tracker is not None and context.cron_job_id is not None and context.record_status:
            await self.tracker.update_report_status(
                context.cron_job_id, context.period, PullStatus.FAILED, error_message=message
            )
        await self._log(context, ActivityStatus.FAILED, message, retry_count, execution_time=execution_time)

    async def _log(self, context, status, message, retry_count, execution_time=None) -> None:
        if self.tracker is None or context.cron_job_id is None:
            return
        await self.tracker.log_activity(
            cron_job_id=context.cron_job_id,
            period=context.period,
            action=context.action,
            status=status,
            message=message,
            report_id=context.report_id,
            retry_count=retry_count,
            execution_time=execution_time,
            amazon_seller_id=context.amazon_seller_id,
        )


# ============================================================================
# Circuit breaker
# ============================================================================

class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Stops calling a failing dependency for a cool-down period.

    Attributes:
        name: Dependency this breaker guards
        failure_threshold: Consecutive failures before the circuit opens
        reset_timeout: Seconds the circuit stays open before a probe is allowed
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: Optional[int] = None,
        reset_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold or settings.CIRCUIT_BREAKER_THRESHOLD
        self.reset_timeout = (
            reset_timeout if reset_timeout is not None else settings.CIRCUIT_BREAKER_TIMEOUT_MS / 1000.0
        )
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self._probe_in_flight = False

    async def call(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        is_probe = self._before_call()
        try:
            result = await operation()
        except Exception:
            self._on_failure(is_probe)
            raise
        except BaseException:
            # Cancelled probe: let the next caller probe again
            if is_probe:
                self._probe_in_flight = False
            raise
        self._on_success()
        return result

    def _before_call(self) -> bool:
        if self.state == CircuitState.CLOSED:
            return False

        if self.state == CircuitState.OPEN:
            if self._clock() - (self.opened_at or 0.0) < self.reset_timeout:
                raise self._open_error()
            self.state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
            logger.info(f"Circuit breaker {self.name} half-open; allowing probe")

        if self._probe_in_flight:
            raise self._open_error()
        self._probe_in_flight = True
        return True

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker {self.name} closed after successful probe")
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None
        self._probe_in_flight = False

    def _on_failure(self, is_probe: bool) -> None:
        self._probe_in_flight = False
        if is_probe or self.state == CircuitState.HALF_OPEN:
            self._open()
            return
        self.failure_count += 1
        if self.failure_count >= self.failure_threshold:
            self._open()

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = self._clock()
        logger.warning(
            f"Circuit breaker {self.name} opened after {self.failure_count} failures. "
            f"Will allow a probe after {self.reset_timeout} seconds."
        )

    def _open_error(self) -> CircuitOpenError:
        return CircuitOpenError(
            f"Circuit breaker is open for {self.name}",
            context={"breaker": self.name, "failure_count": self.failure_count}
        )

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None
        self._probe_in_flight = False

    def get_state(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
        }


# ============================================================================
# Rate limiter
# ============================================================================

class RateLimiter:
    """Sliding-window request counter keyed by caller identity"""

    def __init__(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_requests = max_requests or settings.API_RATE_LIMIT_PER_MINUTE
        self.window = window_seconds if window_seconds is not None else settings.RATE_LIMIT_WINDOW_MS / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._requests: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def check_limit(self, key: str) -> None:
        """Record one request for ``key`` or raise RateLimitExceededError"""
        now = self._clock()
        self._maybe_sweep(now)

        window = self._prune(key, now)
        if len(window) >= self.max_requests:
            retry_after = self.window - (now - window[0])
            raise RateLimitExceededError(
                f"Rate limit exceeded for {key}",
                context={"key": key, "max_requests": self.max_requests, "retry_after": round(retry_after, 3)}
            )
        window.append(now)

    async def acquire(self, key: str) -> None:
        """Wait until a slot is free for ``key``, then take it"""
        while True:
            try:
                self.check_limit(key)
                return
            except RateLimitExceededError as e:
                wait = max(float(e.context.get("retry_after", 0.0)), 0.01)
                logger.debug(f"Rate limit reached for {key}; waiting {wait:.2f}s")
                await self._sleep(wait)

    def remaining(self, key: str) -> int:
        return max(0, self.max_requests - len(self._prune(key, self._clock())))

    def _prune(self, key: str, now: float) -> Deque[float]:
        window = self._requests.setdefault(key, deque())
        while window and now - window[0] >= self.window:
            window.popleft()
        return window

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep < self.window:
            return
        self._last_sweep = now
        stale = [k for k, w in self._requests.items() if not w or now - w[-1] >= self.window]
        for k in stale:
            del self._requests[k]

    @property
    def tracked_keys(self) -> int:
        return len(self._requests)


# ============================================================================
# Memory monitor
# ============================================================================

def _read_rss_bytes() -> Optional[int]:
    try:
        with open("/proc/self/statm") as f:
            pages = int(f.read().split()[1])
        return pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, IndexError, AttributeError):
        pass
    try:
        import resource
        usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # ru_maxrss is bytes on macOS, kilobytes elsewhere
        return usage if sys.platform == "darwin" else usage * 1024
    except (ImportError, OSError):
        return None


class MemoryMonitor:
    """Best-effort process memory reporting and high-water-mark check"""

    def __init__(self, threshold_mb: Optional[int] = None, rss_reader: Callable[[], Optional[int]] = _read_rss_bytes):
        self.threshold_mb = threshold_mb or settings.MAX_MEMORY_USAGE_MB
        self._rss_reader = rss_reader

    def usage(self) -> Dict[str, Any]:
        rss = self._rss_reader()
        heap_current = heap_peak = None
        if tracemalloc.is_tracing():
            heap_current, heap_peak = tracemalloc.get_traced_memory()
        return {
            "rss_mb": round(rss / (1024 * 1024), 2) if rss is not None else None,
            "heap_mb": round(heap_current / (1024 * 1024), 2) if heap_current is not None else None,
            "heap_peak_mb": round(heap_peak / (1024 * 1024), 2) if heap_peak is not None else None,
            "gc_counts": gc.get_count(),
        }

    def is_memory_high(self, threshold_mb: Optional[int] = None) -> bool:
        rss = self._rss_reader()
        if rss is None:
            return False
        limit = threshold_mb or self.threshold_mb
        return rss / (1024 * 1024) > limit

    def relieve_pressure(self) -> bool:
        """Collect garbage if above the high-water mark; True if still high"""
        if not self.is_memory_high():
            return False
        collected = gc.collect()
        logger.warning(f"Memory above {self.threshold_mb}MB; gc collected {collected} objects")
        return self.is_memory_high()


# Process-wide instances, one per logical dependency
report_api_breaker = CircuitBreaker(name="report_api")
report_api_limiter = RateLimiter()
memory_monitor = MemoryMonitor()
