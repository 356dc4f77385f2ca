"""
Circuit breaker for calls to the identity provider.

Only transport failures (``expected_exception``) count towards opening the
breaker; a provider that answers, even with an error status, is healthy.
The breaker never retries a call.
"""

import time
from enum import Enum
from typing import Dict, Any, Callable, Awaitable, Tuple, Type, Union

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Probing whether the provider recovered


class CircuitBreakerOpenError(Exception):
    """Raised instead of calling through while the breaker is open."""
    pass


class CircuitBreaker:
    """Per-endpoint circuit breaker."""

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.logger = get_logger(f"login.circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time = 0.0

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def _should_attempt_call(self) -> bool:
        if self._state is CircuitBreakerState.OPEN:
            if (time.monotonic() - self._last_failure_time) >= self.recovery_timeout:
                self._state = CircuitBreakerState.HALF_OPEN
                self.logger.info("Circuit breaker transitioning to half-open")
                return True
            return False
        return True

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute ``func`` under circuit breaker protection."""
        if not self._should_attempt_call():
            raise CircuitBreakerOpenError(f"Circuit breaker '{self.name}' is open")

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._record_failure()
            raise

        if self._state is not CircuitBreakerState.CLOSED or self._failure_count:
            if self._state is CircuitBreakerState.HALF_OPEN:
                self.logger.info("Circuit breaker reset to closed after successful call")
            self._state = CircuitBreakerState.CLOSED
            self._failure_count = 0
        return result

    def _record_failure(self):
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state is CircuitBreakerState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self.logger.warning(
                "Circuit breaker opened due to failures",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }

    def is_open(self) -> bool:
        return self._state is CircuitBreakerState.OPEN
