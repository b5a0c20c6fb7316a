"""
Typed errors and results for upstream calls.

Errors are returned as values, never raised across the client boundary.
Callers check `result.ok` and read `result.error.retryable` to decide
whether a "try again" makes sense.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar('T')


class ErrorKind(str, Enum):
    """Error taxonomy for archive fetches."""

    INVALID_INPUT = 'invalid_username'
    CIRCUIT_OPEN = 'circuit_breaker_open'
    TRANSPORT = 'api_request_failed'
    BAD_REQUEST = 'api_error_400'
    UNAUTHORIZED = 'api_error_401'
    FORBIDDEN = 'api_error_403'
    NOT_FOUND = 'api_error_404'
    RATE_LIMITED = 'api_error_429'
    SERVER_ERROR = 'api_error_5xx'
    UPSTREAM_STATUS = 'api_error_status'
    INVALID_RESPONSE = 'invalid_response'


STATUS_KINDS = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMITED,
}

STATUS_MESSAGES = {
    400: 'Bad request to Mixcloud API.',
    401: 'Unauthorized access to Mixcloud API.',
    403: 'Forbidden access to Mixcloud API.',
    404: 'User or resource not found on Mixcloud.',
    429: 'Too many requests to Mixcloud API. Please try again later.',
    500: 'Mixcloud API server error.',
    503: 'Mixcloud API service unavailable.',
}

# Kinds for which a degraded (fallback) view beats an error message
SEVERE_KINDS = {ErrorKind.CIRCUIT_OPEN, ErrorKind.TRANSPORT, ErrorKind.SERVER_ERROR}


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


@dataclass
class ApiError:
    """A terminal failure from the archive client."""

    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    retryable: bool = False
    url: Optional[str] = None
    attempt: int = 0

    @property
    def code(self) -> str:
        if self.kind in (ErrorKind.SERVER_ERROR, ErrorKind.UPSTREAM_STATUS) and self.status_code:
            return f'api_error_{self.status_code}'
        return self.kind.value

    @property
    def is_severe(self) -> bool:
        return self.kind in SEVERE_KINDS

    @classmethod
    def from_status(cls, status_code: int, url: Optional[str] = None, attempt: int = 0) -> "ApiError":
        """Map a non-200 HTTP status to a typed error."""
        if status_code in STATUS_KINDS:
            kind = STATUS_KINDS[status_code]
        elif status_code >= 500:
            kind = ErrorKind.SERVER_ERROR
        else:
            kind = ErrorKind.UPSTREAM_STATUS

        message = STATUS_MESSAGES.get(status_code, f'Mixcloud API returned status code {status_code}.')
        return cls(
            kind=kind,
            message=message,
            status_code=status_code,
            retryable=is_retryable_status(status_code),
            url=url,
            attempt=attempt,
        )

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'kind': self.kind.name,
            'message': self.message,
            'status_code': self.status_code,
            'retryable': self.retryable,
        }


@dataclass
class ApiResult(Generic[T]):
    """Either a value or an ApiError."""

    value: Optional[T] = None
    error: Optional[ApiError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "ApiResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ApiError) -> "ApiResult[T]":
        return cls(error=error)
