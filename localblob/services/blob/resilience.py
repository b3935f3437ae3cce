"""
Resilience Utilities for Blob Storage

Timeout handling, bounded retry with exponential backoff for transient
failures, and transient-fault injection for exercising client retry logic.

Author: LocalBlob Team
Date: 2026-10-17
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from localblob.core.config_manager import FaultInjectionConfig, FaultPattern, RetryConfig
from localblob.core.logging_config import log_with_context
from localblob.exceptions import OperationTimeoutError, ServerBusyError, is_transient_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ========== Timeout Handling ==========

async def run_with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout: Optional[float],
    operation_name: str,
) -> T:
    """
    Await ``operation()``, cancelling it after ``timeout`` seconds.

    Args:
        operation: Zero-argument coroutine factory
        timeout: Seconds, or None for no limit
        operation_name: Name for errors and logs

    Raises:
        OperationTimeoutError: If the timeout elapses first
    """
    if timeout is None:
        return await operation()
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError:
        log_with_context(
            logger,
            logging.ERROR,
            f"Operation timeout: {operation_name}",
            operation_name=operation_name,
            timeout_seconds=timeout,
        )
        raise OperationTimeoutError(operation_name, timeout) from None


# ========== Retry Logic ==========

async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation_name: str,
    retry_on: Optional[Callable[[Exception], bool]] = None,
) -> T:
    """
    Run ``operation()`` with exponential backoff on retryable errors.

    Only transient errors are retried unless ``retry_on`` says otherwise.
    Every other error propagates on the first attempt.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        config: Attempt count and backoff settings
        operation_name: Name for logs
        retry_on: Custom function to determine if an error is retryable
    """
    attempts = config.max_attempts
    for attempt in range(1, attempts + 1):
        try:
            result = await operation()
        except Exception as e:
            should_retry = retry_on(e) if retry_on else is_transient_error(e)
            if not should_retry or attempt >= attempts:
                if should_retry:
                    log_with_context(
                        logger,
                        logging.ERROR,
                        f"Operation failed after {attempt} attempts: {operation_name}",
                        operation_name=operation_name,
                        attempt=attempt,
                        error_type=type(e).__name__,
                    )
                raise

            delay = min(
                config.initial_backoff * (config.backoff_multiplier ** (attempt - 1)),
                config.max_backoff,
            )
            log_with_context(
                logger,
                logging.WARNING,
                f"Operation failed, retrying: {operation_name}",
                operation_name=operation_name,
                attempt=attempt,
                max_attempts=attempts,
                error_type=type(e).__name__,
                retry_delay_seconds=delay,
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 1:
            logger.info(f"Operation succeeded after {attempt} attempts: {operation_name}")
        return result

    raise RuntimeError(f"Retry loop exited without a result: {operation_name}")


# ========== Fault Injection ==========

class FaultInjector:
    """
    Injects ``ServerBusyError`` into service calls.

    ``random`` fails each call with probability ``failure_rate`` (seeded for
    determinism); ``sequential`` fails every ``every_n``-th call.
    """

    def __init__(self, config: Optional[FaultInjectionConfig] = None):
        self.config = config or FaultInjectionConfig()
        self._random = random.Random(self.config.seed)
        self._call_counter = 0
        self.injected = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def should_fail(self) -> bool:
        if not self.config.enabled:
            return False
        self._call_counter += 1
        if self.config.pattern == FaultPattern.SEQUENTIAL:
            return self._call_counter % self.config.every_n == 0
        return self._random.random() < self.config.failure_rate

    def maybe_fail(self, operation_name: str) -> None:
        """
        Raise ``ServerBusyError`` if this call is chosen to fail.

        Raises:
            ServerBusyError: Injected transient failure
        """
        if self.should_fail():
            self.injected += 1
            logger.debug(
                f"Injecting transient failure into {operation_name} "
                f"(pattern={self.config.pattern}, counter={self._call_counter})"
            )
            raise ServerBusyError(
                "The server is busy. Retry the operation.",
                details={"operation": operation_name},
            )

    def reset(self) -> None:
        self._random = random.Random(self.config.seed)
        self._call_counter = 0
        self.injected = 0


async def call_with_faults(
    operation: Callable[[], Awaitable[Any]],
    injector: FaultInjector,
    operation_name: str,
) -> Any:
    """Run ``operation()`` after giving the injector a chance to fail the call."""
    injector.maybe_fail(operation_name)
    return await operation()
