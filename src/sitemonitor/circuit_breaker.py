"""Circuit breaker for soft dependencies of the sampling loop.

The sample store is a soft dependency: sampling must continue when the
database is down, and a dead database should not cost a connection attempt
on every sample. The breaker tracks consecutive failures and, once the
threshold is reached, rejects calls without attempting them until the
recovery timeout has elapsed.

Circuit States:
- CLOSED: Normal operation, calls pass through
- OPEN: Dependency is failing, calls are rejected immediately
- HALF_OPEN: Testing recovery, a limited number of calls pass through
"""

from __future__ import annotations

import threading
import time
import types
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sitemonitor.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast, not calling the dependency
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreakerError(Exception):
    """Raised when the circuit is open and a call is rejected."""

    def __init__(self, service_name: str, state: CircuitState, message: str | None = None) -> None:
        self.service_name = service_name
        self.state = state
        msg = message or f"Circuit breaker for {service_name} is {state.value}"
        super().__init__(msg)


class CircuitBreakerConfigError(ValueError):
    """Raised when circuit breaker configuration is invalid."""

    pass


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior.

    Attributes:
        failure_threshold: Consecutive failures before opening the circuit.
        recovery_timeout: Seconds to wait before attempting recovery.
        half_open_max_calls: Successful calls required in half-open state to close.
        enabled: Whether the circuit breaker is enabled.

    Raises:
        CircuitBreakerConfigError: If any threshold values are not positive.
    """

    failure_threshold: int = 3
    recovery_timeout: float = 300.0
    half_open_max_calls: int = 1
    enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        # bool is a subclass of int
        if isinstance(self.failure_threshold, bool) or not isinstance(self.failure_threshold, int):
            raise CircuitBreakerConfigError(
                f"failure_threshold must be an integer, got {type(self.failure_threshold).__name__}"
            )
        if self.failure_threshold <= 0:
            raise CircuitBreakerConfigError(
                f"failure_threshold must be positive, got {self.failure_threshold}"
            )
        if self.recovery_timeout <= 0:
            raise CircuitBreakerConfigError(
                f"recovery_timeout must be positive, got {self.recovery_timeout}"
            )
        if self.half_open_max_calls <= 0:
            raise CircuitBreakerConfigError(
                f"half_open_max_calls must be positive, got {self.half_open_max_calls}"
            )


@dataclass
class CircuitBreaker:
    """Thread-safe circuit breaker.

    Usage:
        breaker = CircuitBreaker("database")

        # Context manager usage
        with breaker:
            write_sample()

        # Direct usage
        if breaker.allow_request():
            try:
                write_sample()
                breaker.record_success()
            except SQLAlchemyError as e:
                breaker.record_failure(e)
    """

    service_name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    clock: Callable[[], float] = time.monotonic
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _rejected_calls: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)

    @property
    def state(self) -> CircuitState:
        """Get current circuit state, checking for automatic transitions."""
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def is_open(self) -> bool:
        """Check if calls would currently be rejected."""
        return self.state == CircuitState.OPEN

    def _check_state_transition(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self.clock() - self._opened_at >= self.config.recovery_timeout
        ):
            self._transition_to(CircuitState.HALF_OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state

        if new_state == CircuitState.OPEN:
            self._opened_at = self.clock()
        elif new_state == CircuitState.HALF_OPEN:
            self._half_open_calls = 0
            self._success_count = 0
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0

        logger.info(
            "[CIRCUIT_BREAKER] %s: State changed from %s to %s",
            self.service_name,
            old_state.value,
            new_state.value,
        )

    def allow_request(self) -> bool:
        """Check if a call should be allowed through.

        Returns:
            True if the call is allowed, False if the circuit is open.
        """
        if not self.config.enabled:
            return True

        with self._lock:
            self._check_state_transition()

            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.HALF_OPEN and (
                self._half_open_calls < self.config.half_open_max_calls
            ):
                self._half_open_calls += 1
                return True

            self._rejected_calls += 1
            logger.debug(
                "[CIRCUIT_BREAKER] %s: Call rejected, circuit is %s",
                self.service_name,
                self._state.value,
            )
            return False

    def record_success(self) -> None:
        """Record a successful call."""
        if not self.config.enabled:
            return

        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.half_open_max_calls:
                    self._transition_to(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self, exception: BaseException | None = None) -> None:
        """Record a failed call.

        Args:
            exception: Optional exception that caused the failure.
        """
        if not self.config.enabled:
            return

        with self._lock:
            error_info = f": {type(exception).__name__}: {exception}" if exception else ""
            logger.warning(
                "[CIRCUIT_BREAKER] %s: Failure recorded%s", self.service_name, error_info
            )

            if self._state == CircuitState.HALF_OPEN:
                # Any failure in half-open immediately reopens the circuit
                self._transition_to(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)
                    logger.warning(
                        "[CIRCUIT_BREAKER] %s: Failure threshold reached (%s/%s), "
                        "suspending calls for %ss",
                        self.service_name,
                        self._failure_count,
                        self.config.failure_threshold,
                        self.config.recovery_timeout,
                    )

    def reset(self) -> None:
        """Reset the circuit breaker to closed state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._half_open_calls = 0
            self._opened_at = 0.0

    def get_status(self) -> dict[str, Any]:
        """Get current circuit breaker status for status reporting."""
        with self._lock:
            self._check_state_transition()
            return {
                "service_name": self.service_name,
                "state": self._state.value,
                "enabled": self.config.enabled,
                "failure_count": self._failure_count,
                "rejected_calls": self._rejected_calls,
            }

    def __enter__(self) -> CircuitBreaker:
        """Context manager entry - check if the call is allowed."""
        if not self.allow_request():
            raise CircuitBreakerError(self.service_name, self._state)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Context manager exit - record success or failure."""
        if exc_type is None:
            self.record_success()
        else:
            self.record_failure(exc_val)


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerConfigError",
    "CircuitBreakerError",
    "CircuitState",
]
