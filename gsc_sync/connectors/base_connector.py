"""
Base connector class for external analytics sources
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional
from datetime import datetime
from gsc_sync.utils.logger import log
from gsc_sync.utils.retry import RetryStats, is_retryable_error, calculate_backoff
import asyncio

RetryDelayFn = Callable[[Exception, int], Optional[float]]


class BaseConnector(ABC):
    """Base class for data source connectors"""

    # Retry configuration (can be overridden by subclasses)
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 2.0  # seconds
    RETRY_MAX_DELAY = 60.0  # seconds

    def __init__(self, name: str):
        self.name = name
        self.last_request = None
        self.request_count = 0
        self.error_count = 0
        self.retry_count = 0  # Total retries across all requests

    @abstractmethod
    async def connect(self) -> bool:
        """Establish connection to data source"""
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """Validate connection is working"""
        pass

    def _default_retry_delay(self, error: Exception, attempt: int) -> Optional[float]:
        """Backoff delay before the next attempt, None when the error is not retryable"""
        if not is_retryable_error(error):
            return None
        return calculate_backoff(
            attempt,
            base_delay=self.RETRY_BASE_DELAY,
            max_delay=self.RETRY_MAX_DELAY
        )

    async def _retry_operation(
        self,
        operation,
        operation_name: str = "operation",
        retry_stats: Optional[RetryStats] = None,
        retry_delay: Optional[RetryDelayFn] = None,
        max_attempts: Optional[int] = None
    ) -> Any:
        """
        Execute an operation with retry logic.

        Args:
            operation: Callable returning a value or awaitable
            operation_name: Name for logging
            retry_stats: RetryStats to record attempts on (mutated in place)
            retry_delay: Decides the delay before retrying a failed attempt
            max_attempts: Overrides RETRY_MAX_ATTEMPTS

        Returns:
            Result of the operation
        """
        max_attempts = max_attempts or self.RETRY_MAX_ATTEMPTS
        retry_delay = retry_delay or self._default_retry_delay
        stats = retry_stats if retry_stats is not None else RetryStats()

        for attempt in range(1, max_attempts + 1):
            try:
                result = operation()

                # Handle coroutines (from async functions or lambdas wrapping async calls)
                if asyncio.iscoroutine(result):
                    result = await result

                stats.record_attempt()
                stats.mark_success()
                self.request_count += 1
                self.last_request = datetime.utcnow()
                return result

            except Exception as e:
                delay = retry_delay(e, attempt)

                if attempt >= max_attempts or delay is None:
                    stats.record_attempt(error=e)
                    raise

                stats.record_attempt(error=e, delay=delay)
                self.retry_count += 1

                log.warning(
                    f"{self.name} {operation_name} attempt {attempt}/{max_attempts} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )

                await asyncio.sleep(delay)

        # Should not reach here
        raise RuntimeError("Retry exhausted")

    def get_status(self) -> Dict[str, Any]:
        """Get connector status"""
        return {
            "name": self.name,
            "last_request": self.last_request,
            "request_count": self.request_count,
            "error_count": self.error_count,
            "retry_count": self.retry_count,
            "error_rate": self.error_count / max(self.request_count, 1),
            "retry_config": {
                "max_attempts": self.RETRY_MAX_ATTEMPTS,
                "base_delay": self.RETRY_BASE_DELAY,
                "max_delay": self.RETRY_MAX_DELAY
            }
        }
