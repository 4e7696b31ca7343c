from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    INVALID_DURATION = "INVALID_DURATION"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_STATUS = "INVALID_STATUS"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    MALFORMED_EVENT = "MALFORMED_EVENT"
    CHANNEL_DISCONNECTED = "CHANNEL_DISCONNECTED"
    NOT_FOUND = "NOT_FOUND"


class ServiceError(Exception):
    """Base exception for service layer failures."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.NETWORK,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.cause = cause


class DownstreamServiceError(ServiceError):
    """Raised when the salon backend returns an error response."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        code: ErrorCode = ErrorCode.NETWORK,
        cause: Exception | None = None,
    ):
        super().__init__(message, code=code, cause=cause)
        self.status_code = status_code


class SlotCalculationError(ServiceError):
    """Raised synchronously by the slot calculator for invalid input."""

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.INVALID_DURATION)


class MalformedEventError(ServiceError):
    """A push message that could not be turned into a channel event."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message, code=ErrorCode.MALFORMED_EVENT, cause=cause)


class ChannelConnectionError(ServiceError):
    """The push connection failed at the network level."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message, code=ErrorCode.CHANNEL_DISCONNECTED, cause=cause)


_HTTP_STATUS = {
    ErrorCode.INVALID_DURATION: 422,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATUS: 409,
    ErrorCode.BUSINESS_RULE_VIOLATION: 422,
    ErrorCode.TIMEOUT: 504,
}


def http_status_for(exc: ServiceError) -> int:
    """Status code the HTTP surface reports for a service failure."""

    return _HTTP_STATUS.get(exc.code, 502)
