"""
Per-operation circuit breakers.

A breaker guards one "collection:operation" key:

    CLOSED     calls pass; each failure counts, each success forgives one
    OPEN       calls are rejected with CircuitOpenError until reset_timeout
               has passed since the last failure
    HALF_OPEN  a single probe at a time; required_successes probes close
               the circuit, any failed probe opens it again

OPEN → HALF_OPEN happens lazily, the next time the state is read.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from docgate.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Thresholds shared by every breaker a registry creates."""

    failure_threshold: int = 5
    reset_timeout: timedelta = timedelta(seconds=60)
    half_open_max_requests: int = 1
    required_successes: int = 3


class CircuitBreaker:
    """
    Breaker for a single key.

    Usage:
        breaker = CircuitBreaker("orders:findById")
        doc = await breaker.execute(lambda: store.get("orders", "42"))
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._current = CircuitState.CLOSED
        self.failures = 0
        self.successes = 0
        self.last_failure_at: datetime | None = None
        self.opened_at: datetime | None = None
        self._probes_in_flight = 0

    @property
    def state(self) -> CircuitState:
        if self._current is CircuitState.OPEN and self._cooled_down():
            self._transition(CircuitState.HALF_OPEN)
        return self._current

    def _cooled_down(self) -> bool:
        if self.last_failure_at is None:
            return True
        return self._clock() >= self.last_failure_at + self.config.reset_timeout

    def _transition(self, target: CircuitState) -> None:
        previous = self._current
        self._current = target
        self.successes = 0
        self._probes_in_flight = 0

        if target is CircuitState.OPEN:
            self.opened_at = self._clock()
            logger.warning(
                f"Circuit '{self.name}' {previous.value} -> OPEN ({self.failures} failures)"
            )
        elif target is CircuitState.CLOSED:
            self.failures = 0
            self.opened_at = None
            logger.info(f"Circuit '{self.name}' {previous.value} -> CLOSED")
        else:
            logger.info(f"Circuit '{self.name}' OPEN -> HALF_OPEN, probing")

    def can_request(self) -> bool:
        """Whether a call would be let through right now."""
        state = self.state
        if state is CircuitState.HALF_OPEN:
            return self._probes_in_flight < self.config.half_open_max_requests
        return state is CircuitState.CLOSED

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Await fn under the breaker and return its result unchanged.

        Raises:
            CircuitOpenError: when the call is rejected; fn is not awaited
        """
        if not self.can_request():
            raise CircuitOpenError(self.name, self.get_time_until_reset() or 0)

        probe = self._current is CircuitState.HALF_OPEN
        if probe:
            self._probes_in_flight += 1
        try:
            result = await fn()
        except Exception:
            self.record_failure()
            raise
        finally:
            if probe and self._probes_in_flight:
                self._probes_in_flight -= 1

        self.record_success()
        return result

    def record_success(self) -> None:
        if self._current is CircuitState.CLOSED:
            self.failures = max(0, self.failures - 1)
        elif self._current is CircuitState.HALF_OPEN:
            self.successes += 1
            if self.successes >= self.config.required_successes:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure_at = self._clock()

        tripped = self._current is CircuitState.HALF_OPEN or (
            self._current is CircuitState.CLOSED
            and self.failures >= self.config.failure_threshold
        )
        if tripped:
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Force the breaker closed and forget its history."""
        self._transition(CircuitState.CLOSED)
        self.last_failure_at = None

    def get_time_until_reset(self) -> float | None:
        """Seconds until an OPEN breaker will admit a probe."""
        if self._current is not CircuitState.OPEN or self.last_failure_at is None:
            return None
        reopens_at = self.last_failure_at + self.config.reset_timeout
        return max(0.0, (reopens_at - self._clock()).total_seconds())

    def get_status(self) -> dict[str, Any]:
        state = self.state
        return {
            "name": self.name,
            "state": state.value,
            "failures": self.failures,
            "successes": self.successes,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "time_until_reset": self.get_time_until_reset(),
        }


class CircuitBreakerRegistry:
    """
    Lazily creates one breaker per key.

    Usage:
        breakers = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=3))
        breaker = breakers.get("orders:create")
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._by_name: dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        """Existing breaker for name, or a new one built from config (or the default)."""
        breaker = self._by_name.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config or self.default_config, clock=self._clock)
            self._by_name[name] = breaker
            logger.debug(f"Circuit '{name}' created")
        return breaker

    def find(self, name: str) -> CircuitBreaker | None:
        return self._by_name.get(name)

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in self._by_name.items()}

    def get_stats(self) -> dict[str, Any]:
        statuses = self.get_all_status()
        states = [status["state"] for status in statuses.values()]
        return {
            "circuit_breakers": statuses,
            "total_circuit_breakers": len(statuses),
            "open_circuit_breakers": states.count(CircuitState.OPEN.value),
            "half_open_circuit_breakers": states.count(CircuitState.HALF_OPEN.value),
        }

    def get_open_circuits(self) -> list[str]:
        return [name for name, b in self._by_name.items() if b.state is CircuitState.OPEN]

    def reset(self, name: str) -> bool:
        breaker = self._by_name.get(name)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def reset_all(self) -> None:
        for breaker in self._by_name.values():
            breaker.reset()
        logger.info(f"Reset {len(self._by_name)} circuit breakers")
