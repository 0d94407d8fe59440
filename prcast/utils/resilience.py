"""
Resilience utilities for error handling and fault tolerance.

This module provides:
- retry_with_backoff decorator for transient errors
- CircuitBreaker class for external service calls (OpenAI, GitHub)
- Helpers for best-effort persistence and partial failures
"""

import asyncio
import time
import logging
from typing import Callable, Any, Awaitable, Optional, TypeVar, ParamSpec
from functools import wraps
from enum import Enum

logger = logging.getLogger(__name__)

P = ParamSpec('P')
T = TypeVar('T')


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerOpenError(Exception):
    """Raised when circuit breaker is open."""
    pass


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (Exception,)
):
    """
    Decorator for retrying coroutines with exponential backoff.

    Args:
        max_retries: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds between attempts (default: 1.0)
        max_delay: Maximum delay in seconds between attempts (default: 60.0)
        exponential_base: Base for exponential backoff calculation (default: 2.0)
        exceptions: Exception types that trigger a retry (default: all exceptions)

    Returns:
        Decorated coroutine function with retry logic

    Example:
        @retry_with_backoff(max_retries=3, exceptions=(httpx.TransportError,))
        async def fetch_commits():
            return await client.get(url)
    """
    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_retries):
                try:
                    result = await func(*args, **kwargs)

                    if attempt > 0:
                        logger.info(
                            f"{func.__name__} succeeded on attempt {attempt + 1}/{max_retries}"
                        )

                    return result

                except exceptions as e:
                    if attempt == max_retries - 1:
                        logger.error(
                            f"{func.__name__} failed after {max_retries} attempts: {e}"
                        )
                        raise

                    delay = min(base_delay * (exponential_base ** attempt), max_delay)

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt + 1}/{max_retries}: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )

                    await asyncio.sleep(delay)

            raise RuntimeError(f"{func.__name__} called with max_retries={max_retries}")

        return wrapper

    return decorator


class CircuitBreaker:
    """
    Circuit breaker for external service calls.

    After ``failure_threshold`` consecutive failures the breaker opens and
    rejects calls for ``timeout`` seconds. It then lets up to
    ``half_open_max_calls`` trial calls through; enough successes close it
    again, a single failure re-opens it.

    Example:
        breaker = CircuitBreaker(failure_threshold=3, timeout=30)
        response = await breaker.call(lambda: client.chat.completions.create(...))
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        half_open_max_calls: int = 3,
        name: str = "service",
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_max_calls = half_open_max_calls
        self.name = name

        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self.half_open_calls = 0

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute function with circuit breaker protection.

        Args:
            func: Zero-argument callable returning an awaitable

        Returns:
            Function result

        Raises:
            CircuitBreakerOpenError: If circuit is open
            Exception: Any exception raised by the function
        """
        if self.state == CircuitState.OPEN:
            if self.last_failure_time and (time.time() - self.last_failure_time) > self.timeout:
                logger.info(f"Circuit breaker for {self.name} transitioning to HALF_OPEN state")
                self.state = CircuitState.HALF_OPEN
                self.half_open_calls = 0
            else:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker for {self.name} is OPEN. "
                    f"Will retry after {self.timeout}s timeout."
                )

        if self.state == CircuitState.HALF_OPEN:
            if self.half_open_calls >= self.half_open_max_calls:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker for {self.name} is HALF_OPEN and max test calls reached"
                )
            self.half_open_calls += 1

        try:
            result = await func()
        except Exception:
            self._record_failure()
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        self.success_count += 1

        if self.state == CircuitState.HALF_OPEN:
            if self.success_count >= self.half_open_max_calls:
                logger.info(f"Circuit breaker for {self.name} transitioning to CLOSED state")
                self.reset()
        elif self.failure_count > 0:
            self.failure_count = 0

    def _record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == CircuitState.HALF_OPEN:
            logger.warning(f"Circuit breaker for {self.name} re-opening (service still failing)")
            self.state = CircuitState.OPEN
            self.success_count = 0
            self.half_open_calls = 0
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                f"Circuit breaker for {self.name} transitioning to OPEN state "
                f"(failure threshold {self.failure_threshold} exceeded)"
            )
            self.state = CircuitState.OPEN
            self.success_count = 0

    def get_state(self) -> CircuitState:
        """Get current circuit breaker state."""
        return self.state

    def reset(self) -> None:
        """Return the breaker to the closed state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.half_open_calls = 0
        self.last_failure_time = None


class ErrorRecoveryManager:
    """Helpers for steps whose failure must not end the run."""

    @staticmethod
    async def persist_snapshot_safely(state_store, report_key: str, snapshot: dict) -> bool:
        """
        Save a run snapshot, logging instead of raising on failure.

        Args:
            state_store: Object exposing ``save_run_snapshot`` (e.g. RedisClient)
            report_key: Run identifier
            snapshot: Snapshot payload

        Returns:
            True if successful, False otherwise
        """
        try:
            await state_store.save_run_snapshot(report_key, snapshot)
            return True
        except Exception as e:
            logger.error(
                f"Failed to persist run snapshot: {e}",
                extra={"report_key": report_key, "error_type": type(e).__name__},
            )
            return False

    @staticmethod
    def handle_partial_failure(
        operation_name: str,
        total_items: int,
        successful_items: int,
        errors: list,
        context: dict
    ) -> None:
        """
        Log the outcome of a batch where individual items may fail.

        Args:
            operation_name: Name of the operation
            total_items: Total number of items processed
            successful_items: Number of successful items
            errors: List of error messages
            context: Additional context information
        """
        failed_items = total_items - successful_items

        if failed_items > 0:
            logger.warning(
                f"Partial failure in {operation_name}: "
                f"{successful_items}/{total_items} succeeded, {failed_items} failed",
                extra={
                    "operation": operation_name,
                    "total_items": total_items,
                    "successful_items": successful_items,
                    "failed_items": failed_items,
                    "errors": errors[:10],
                    **context,
                }
            )
        else:
            logger.info(
                f"{operation_name} completed successfully: {successful_items}/{total_items}",
                extra={"operation": operation_name, "total_items": total_items, **context}
            )


def create_github_circuit_breaker() -> CircuitBreaker:
    """Create circuit breaker configured for GitHub API calls."""
    return CircuitBreaker(
        failure_threshold=5,
        timeout=60,
        half_open_max_calls=3,
        name="github",
    )


def create_llm_circuit_breaker() -> CircuitBreaker:
    """Create circuit breaker configured for OpenAI calls."""
    return CircuitBreaker(
        failure_threshold=3,
        timeout=30,
        half_open_max_calls=2,
        name="openai",
    )
