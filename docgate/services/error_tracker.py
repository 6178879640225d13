"""
ErrorTracker - Deduplicates, classifies and aggregates service errors.

Repeated failures with the same (service, operation, message) collapse into
one TrackedError whose occurrence counter grows, so operators see a ranked
list of distinct problems instead of a raw error stream.
"""

import re
import traceback
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from loguru import logger

_FINGERPRINT_STRIP = re.compile(r"[^a-zA-Z0-9:]")

_TAG_KEYWORDS = (
    ("network", "network"),
    ("timeout", "timeout"),
    ("permission", "permission"),
    ("validation", "validation"),
    ("not found", "not-found"),
    ("duplicate", "duplicate"),
)


class Severity(str, Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Where and for whom an error happened."""

    service: str
    operation: str
    user_id: str | None = None
    user_role: str | None = None
    timestamp: datetime | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    def merged_with(self, newer: "ErrorContext") -> "ErrorContext":
        """Overlay the non-empty fields of a newer context."""
        return replace(
            self,
            user_id=newer.user_id or self.user_id,
            user_role=newer.user_role or self.user_role,
            timestamp=newer.timestamp or self.timestamp,
            additional_data={**self.additional_data, **newer.additional_data},
        )


@dataclass
class TrackedError:
    """A deduplicated error bucket."""

    id: str
    message: str
    context: ErrorContext
    severity: Severity
    first_seen_at: datetime
    last_seen_at: datetime
    stack_trace: str | None = None
    code: str | None = None
    resolved: bool = False
    occurrences: int = 1
    tags: list[str] = field(default_factory=list)

    @property
    def fingerprint(self) -> str:
        return self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "code": self.code,
            "severity": self.severity.value,
            "service": self.context.service,
            "operation": self.context.operation,
            "user_id": self.context.user_id,
            "resolved": self.resolved,
            "occurrences": self.occurrences,
            "first_seen_at": self.first_seen_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat(),
            "tags": list(self.tags),
        }


@dataclass
class TimeRange:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    @property
    def hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600


@dataclass
class ErrorFilter:
    """Criteria for get_errors_by_filter. Unset fields match everything."""

    service: str | None = None
    operation: str | None = None
    severity: Severity | str | None = None
    resolved: bool | None = None
    user_id: str | None = None
    tags: list[str] | None = None
    time_range: TimeRange | None = None


@dataclass
class ErrorMetrics:
    total_errors: int
    errors_by_service: dict[str, int]
    errors_by_operation: dict[str, int]
    errors_by_user: dict[str, int]
    errors_by_severity: dict[str, int]
    error_rate: float  # errors per hour
    average_resolution_time: float  # seconds
    top_errors: list[TrackedError]
    recent_errors: list[TrackedError]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "errors_by_service": self.errors_by_service,
            "errors_by_operation": self.errors_by_operation,
            "errors_by_user": self.errors_by_user,
            "errors_by_severity": self.errors_by_severity,
            "error_rate": self.error_rate,
            "average_resolution_time": self.average_resolution_time,
            "top_errors": [e.to_dict() for e in self.top_errors],
            "recent_errors": [e.to_dict() for e in self.recent_errors],
        }


ErrorCallback = Callable[[TrackedError], None]


def generate_fingerprint(message: str, context: ErrorContext) -> str:
    """Deterministic id from (service, operation, normalized message)."""
    raw = f"{context.service}:{context.operation}:{message or 'Unknown error'}"
    return _FINGERPRINT_STRIP.sub("", raw)


def determine_severity(message: str, operation: str) -> Severity:
    """Keyword-based severity classification."""
    text = (message or "").lower()
    op = operation.lower()

    if "database" in text or "connection" in text or "timeout" in text:
        return Severity.CRITICAL
    if "permission" in text or "unauthorized" in text or "forbidden" in text:
        return Severity.HIGH
    if "create" in op or "update" in op or "delete" in op:
        return Severity.MEDIUM
    return Severity.LOW


def extract_tags(message: str, context: ErrorContext) -> list[str]:
    text = (message or "").lower()
    tags = [f"service:{context.service}", f"operation:{context.operation}"]
    tags.extend(tag for keyword, tag in _TAG_KEYWORDS if keyword in text)
    if context.user_role:
        tags.append(f"role:{context.user_role}")
    return tags


class ErrorTracker:
    """
    Fingerprinting error tracker with bounded storage.

    Usage:
        tracker = ErrorTracker()
        tracker.on_error(lambda e: alerts.push(e) if e.severity == Severity.CRITICAL else None)

        try:
            ...
        except Exception as e:
            tracker.track_error(e, ErrorContext(service="orders", operation="create"))
    """

    def __init__(
        self,
        max_errors: int = 10000,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._errors: dict[str, TrackedError] = {}
        self._max_errors = max_errors
        self._clock = clock
        self._callbacks: list[ErrorCallback] = []

    def track_error(self, error: BaseException, context: ErrorContext) -> TrackedError:
        """Record an error occurrence and notify observers."""
        now = self._clock()
        message = str(error) or type(error).__name__
        if context.timestamp is None:
            context = replace(context, timestamp=now)

        fingerprint = generate_fingerprint(message, context)
        tracked = self._errors.get(fingerprint)

        if tracked:
            tracked.occurrences += 1
            tracked.last_seen_at = now
            tracked.context = tracked.context.merged_with(context)
        else:
            code = getattr(error, "code", None)
            tracked = TrackedError(
                id=fingerprint,
                message=message,
                stack_trace=_format_stack(error),
                code=str(code) if code is not None else None,
                context=context,
                severity=determine_severity(message, context.operation),
                first_seen_at=now,
                last_seen_at=now,
                tags=extract_tags(message, context),
            )
            self._errors[fingerprint] = tracked

            if len(self._errors) > self._max_errors:
                self._cleanup_old_errors()

        self._log_error(tracked)
        self._notify(tracked)
        return tracked

    def _log_error(self, tracked: TrackedError) -> None:
        summary = (
            f"[{tracked.context.service}.{tracked.context.operation}] {tracked.message} "
            f"(id={tracked.id[:60]}, occurrences={tracked.occurrences}, "
            f"user={tracked.context.user_id}, tags={tracked.tags})"
        )
        if tracked.severity == Severity.CRITICAL:
            logger.critical(f"Critical error tracked: {summary}")
        elif tracked.severity == Severity.HIGH:
            logger.error(f"High severity error tracked: {summary}")
        elif tracked.severity == Severity.MEDIUM:
            logger.warning(f"Medium severity error tracked: {summary}")
        else:
            logger.debug(f"Low severity error tracked: {summary}")

    def _notify(self, tracked: TrackedError) -> None:
        for callback in list(self._callbacks):
            try:
                callback(tracked)
            except Exception:
                logger.exception("Error in error tracking callback")

    def _cleanup_old_errors(self) -> None:
        """Drop the oldest 10% of buckets by last occurrence."""
        to_remove = max(1, int(self._max_errors * 0.1))
        oldest = sorted(self._errors.values(), key=lambda e: e.last_seen_at)[:to_remove]
        for tracked in oldest:
            del self._errors[tracked.id]
        logger.debug(f"Cleaned up {len(oldest)} old errors")

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        """Register an observer. Returns a function that unsubscribes it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def resolve_error(self, error_id: str) -> bool:
        tracked = self._errors.get(error_id)
        if tracked:
            tracked.resolved = True
            logger.debug(f"Error {error_id} marked as resolved")
            return True
        return False

    def get_error(self, error_id: str) -> TrackedError | None:
        return self._errors.get(error_id)

    def get_all_errors(self) -> list[TrackedError]:
        return list(self._errors.values())

    def get_errors_by_filter(self, error_filter: ErrorFilter) -> list[TrackedError]:
        """Filter tracked errors, most recent first."""
        errors = list(self._errors.values())
        f = error_filter

        if f.service:
            errors = [e for e in errors if e.context.service == f.service]
        if f.operation:
            errors = [e for e in errors if e.context.operation == f.operation]
        if f.severity:
            severity = Severity(f.severity)
            errors = [e for e in errors if e.severity == severity]
        if f.resolved is not None:
            errors = [e for e in errors if e.resolved == f.resolved]
        if f.user_id:
            errors = [e for e in errors if e.context.user_id == f.user_id]
        if f.tags:
            errors = [e for e in errors if any(tag in e.tags for tag in f.tags)]
        if f.time_range:
            errors = [e for e in errors if f.time_range.contains(e.last_seen_at)]

        return sorted(errors, key=lambda e: e.last_seen_at, reverse=True)

    def get_metrics(self, time_range: TimeRange | None = None) -> ErrorMetrics:
        """Aggregate occurrence counts and rates, optionally within a time range."""
        errors = list(self._errors.values())
        if time_range:
            errors = [e for e in errors if time_range.contains(e.last_seen_at)]

        by_service: dict[str, int] = {}
        by_operation: dict[str, int] = {}
        by_user: dict[str, int] = {}
        by_severity: dict[str, int] = {}

        for e in errors:
            by_service[e.context.service] = by_service.get(e.context.service, 0) + e.occurrences
            by_operation[e.context.operation] = (
                by_operation.get(e.context.operation, 0) + e.occurrences
            )
            if e.context.user_id:
                by_user[e.context.user_id] = by_user.get(e.context.user_id, 0) + e.occurrences
            by_severity[e.severity.value] = by_severity.get(e.severity.value, 0) + e.occurrences

        total_errors = sum(e.occurrences for e in errors)
        window_hours = time_range.hours if time_range else 24.0
        error_rate = total_errors / window_hours if window_hours > 0 else 0.0

        resolved = [e for e in errors if e.resolved]
        average_resolution_time = (
            sum((e.last_seen_at - e.first_seen_at).total_seconds() for e in resolved)
            / len(resolved)
            if resolved
            else 0.0
        )

        return ErrorMetrics(
            total_errors=total_errors,
            errors_by_service=by_service,
            errors_by_operation=by_operation,
            errors_by_user=by_user,
            errors_by_severity=by_severity,
            error_rate=error_rate,
            average_resolution_time=average_resolution_time,
            top_errors=sorted(errors, key=lambda e: e.occurrences, reverse=True)[:10],
            recent_errors=sorted(errors, key=lambda e: e.last_seen_at, reverse=True)[:20],
        )

    def last_hours(self, hours: float = 24) -> TimeRange:
        """Convenience range ending now."""
        now = self._clock()
        return TimeRange(start=now - timedelta(hours=hours), end=now)

    def clear_errors(self) -> None:
        self._errors.clear()
        logger.debug("All errors cleared")

    def export_errors(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._errors.values()]


def _format_stack(error: BaseException) -> str | None:
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))
