"""
RetryExecutor - Bounded exponential backoff through a per-operation circuit breaker.

Every attempt runs through the breaker keyed "service:operation" and every
failure is handed to the ErrorTracker. A failed attempt is retried only
while attempts remain, the retry condition accepts the error, and the
breaker has not opened.
"""

import asyncio
import functools
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ParamSpec, TypeVar

from loguru import logger

from docgate.services.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from docgate.services.error_tracker import ErrorContext, ErrorTracker
from docgate.services.errors import RequestTimeoutError

T = TypeVar("T")
P = ParamSpec("P")

_RETRYABLE_MESSAGES = ("network", "timeout", "connection")
_RETRYABLE_CODES = ("unavailable", "deadline-exceeded", "resource-exhausted")


def default_retry_condition(error: BaseException | None) -> bool:
    """Retry network/timeout/connection failures, transient backend codes and 5xx."""
    if error is None:
        return False

    message = str(error).lower()
    if any(word in message for word in _RETRYABLE_MESSAGES):
        return True

    code = getattr(error, "code", None)
    if code is not None and any(c in str(code).lower() for c in _RETRYABLE_CODES):
        return True

    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    return isinstance(status, int) and 500 <= status < 600


@dataclass
class RetryOptions:
    """Configuration for retry behavior. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    attempt_timeout: float | None = None  # per-attempt deadline, seconds
    retry_condition: Callable[[BaseException], bool] = default_retry_condition
    on_retry: Callable[[int, BaseException], None] | None = None


@dataclass(frozen=True)
class UserContext:
    """Caller identity, used only to enrich error records."""

    uid: str
    role: str | None = None


@dataclass
class RetryContext:
    service: str
    operation: str
    user_id: str | None = None
    user_role: str | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    @property
    def breaker_key(self) -> str:
        return f"{self.service}:{self.operation}"

    @classmethod
    def for_user(
        cls, service: str, operation: str, user: UserContext | None = None
    ) -> "RetryContext":
        return cls(
            service=service,
            operation=operation,
            user_id=user.uid if user else None,
            user_role=user.role if user else None,
        )


def calculate_delay(
    attempt: int,
    options: RetryOptions,
    uniform: Callable[[float, float], float] = random.uniform,
) -> float:
    """
    Delay before the next attempt, in seconds.

    min(base_delay * multiplier^(attempt-1), max_delay), with optional ±25%
    uniform jitter, kept within [0, that cap].
    """
    capped = min(
        options.base_delay * (options.backoff_multiplier ** (attempt - 1)),
        options.max_delay,
    )
    delay = capped
    if options.jitter:
        jitter_range = capped * 0.25
        delay += uniform(-jitter_range, jitter_range)

    return min(max(delay, 0.0), capped)


def _with_deadline(
    fn: Callable[[], Awaitable[T]], key: str, timeout: float
) -> Callable[[], Awaitable[T]]:
    async def bounded() -> T:
        try:
            return await asyncio.wait_for(fn(), timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(key, timeout) from e

    return bounded


class RetryExecutor:
    """
    Executes async calls with retry, backoff and circuit breaking.

    Usage:
        executor = RetryExecutor(CircuitBreakerRegistry(), ErrorTracker())
        doc = await executor.execute(
            lambda: store.get("orders", "42"),
            RetryContext(service="orders", operation="findById"),
        )
    """

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        error_tracker: ErrorTracker | None = None,
        default_options: RetryOptions | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
    ):
        self.breakers = breakers
        self.error_tracker = error_tracker
        self.default_options = default_options or RetryOptions()
        self._sleep = sleep
        self._uniform = uniform

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        context: RetryContext,
        options: RetryOptions | None = None,
        breaker_config: CircuitBreakerConfig | None = None,
    ) -> T:
        """
        Run fn until it succeeds or retrying stops.

        Raises:
            The last error once attempts are exhausted or the error is not retryable.
        """
        opts = options or self.default_options
        breaker = self.breakers.get(context.breaker_key, breaker_config)
        call = fn
        if opts.attempt_timeout is not None:
            call = _with_deadline(fn, context.breaker_key, opts.attempt_timeout)
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await breaker.execute(call)
            except Exception as error:
                self._track(error, context, attempt, opts, breaker.state)

                should_retry = (
                    attempt < opts.max_attempts
                    and opts.retry_condition(error)
                    and breaker.state != CircuitState.OPEN
                )
                if not should_retry:
                    logger.error(
                        f"Operation {context.breaker_key} failed after {attempt} attempts: "
                        f"{error} (circuit={breaker.state.value}, user={context.user_id})"
                    )
                    raise

                delay = calculate_delay(attempt, opts, self._uniform)
                logger.debug(
                    f"Retrying {context.breaker_key} in {delay * 1000:.0f}ms "
                    f"(attempt {attempt}/{opts.max_attempts}): {error}"
                )
                self._notify_retry(opts, attempt, error)
                await self._sleep(delay)
            else:
                if attempt > 1:
                    logger.debug(
                        f"Operation {context.breaker_key} succeeded after {attempt} attempts"
                    )
                return result

    def _track(
        self,
        error: BaseException,
        context: RetryContext,
        attempt: int,
        opts: RetryOptions,
        state: CircuitState,
    ) -> None:
        if self.error_tracker is None:
            return
        try:
            self.error_tracker.track_error(
                error,
                ErrorContext(
                    service=context.service,
                    operation=context.operation,
                    user_id=context.user_id,
                    user_role=context.user_role,
                    additional_data={
                        **context.additional_data,
                        "attempt": attempt,
                        "max_attempts": opts.max_attempts,
                        "circuit_breaker_state": state.value,
                    },
                ),
            )
        except Exception:
            logger.exception(f"Failed to track error for {context.breaker_key}")

    @staticmethod
    def _notify_retry(opts: RetryOptions, attempt: int, error: BaseException) -> None:
        if opts.on_retry is None:
            return
        try:
            opts.on_retry(attempt, error)
        except Exception:
            logger.exception("Error in on_retry callback")

    def wrap(
        self,
        service: str,
        operation: str,
        fn: Callable[P, Awaitable[T]],
        options: RetryOptions | None = None,
        user: UserContext | None = None,
    ) -> Callable[P, Awaitable[T]]:
        """Retry-enabled version of fn with the same signature."""
        context = RetryContext.for_user(service, operation, user)

        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.execute(lambda: fn(*args, **kwargs), context, options)

        return wrapper

    def get_stats(self) -> dict[str, Any]:
        """Circuit breaker statistics of every key seen so far."""
        return self.breakers.get_stats()
