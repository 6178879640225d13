"""
Service layer exceptions.
"""

from typing import Any


class ServiceError(Exception):
    """Base exception for service layer errors."""

    code: str = "service-error"

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    code = "circuit-open"

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        # Countdown lives in reset_after_seconds; the message must not change while OPEN
        super().__init__(f"Circuit breaker is OPEN for '{service_id}'", service_id=service_id)


class RequestTimeoutError(ServiceError):
    """A backend call exceeded its per-attempt deadline."""

    code = "deadline-exceeded"

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class DocumentNotFoundError(ServiceError):
    """Requested document does not exist."""

    code = "not-found"

    def __init__(self, collection: str, document_id: str):
        self.collection = collection
        self.document_id = document_id
        super().__init__("Document not found", service_id=collection)


def error_code(error: BaseException) -> str | None:
    """Best-effort code of an error raised by a store or the service layer."""
    code = getattr(error, "code", None)
    return str(code) if code is not None else None


def error_details(error: BaseException) -> dict[str, Any]:
    """Structured details for callers that want more than the message."""
    details: dict[str, Any] = {"type": type(error).__name__}
    for attr in ("service_id", "status", "reset_after_seconds", "timeout"):
        value = getattr(error, attr, None)
        if value is not None:
            details[attr] = value
    return details
