"""
HTTP errors raised by the monitoring endpoint
"""

from typing import Any

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Not found error exception"""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ServiceUnavailableError(HTTPException):
    """Service unavailable error exception"""

    def __init__(self, detail: Any = "Service unavailable"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
