from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    HTTP_ERROR = "HTTP_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    NETWORK_ERROR = "NETWORK_ERROR"
    UPSTREAM_INVALID = "UPSTREAM_INVALID"
    NOT_FOUND = "NOT_FOUND"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    LAST_COLLECTION = "LAST_COLLECTION"
    DECODE_ERROR = "DECODE_ERROR"


class OpenShelfError(Exception):
    """Base class for every expected failure raised by the persistence core.

    Callers (CLI, UI adapters) catch this and render ``to_dict()``. Business
    logic lets it propagate; only the cache read path degrades to a miss.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class HttpError(OpenShelfError):
    """Upstream answered with a non-2xx status other than 429."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(
            code=ErrorCode.HTTP_ERROR,
            message=f"HTTP {status_code} fetching {url}",
            suggestion="The upstream API rejected the request or is unavailable.",
            recoverable=status_code >= 500,
        )
        self.status_code = status_code
        self.url = url


class RateLimitExceeded(OpenShelfError):
    """Upstream kept answering 429 after every allowed retry."""

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            message=f"Rate limited {attempts} times fetching {url}",
            suggestion="Wait before retrying or raise fetcher.max_rate_limit_retries.",
            recoverable=True,
        )
        self.url = url
        self.attempts = attempts


class NetworkError(OpenShelfError):
    def __init__(self, url: str, detail: str) -> None:
        super().__init__(
            code=ErrorCode.NETWORK_ERROR,
            message=f"Network error fetching {url}: {detail}",
            suggestion="Check the connection; the upstream API may be unreachable.",
            recoverable=True,
        )
        self.url = url


class UpstreamFormatError(OpenShelfError):
    def __init__(self, url: str, detail: str) -> None:
        super().__init__(
            code=ErrorCode.UPSTREAM_INVALID,
            message=f"Unexpected payload from {url}: {detail}",
            suggestion="The upstream response did not match the expected shape.",
            recoverable=False,
        )
        self.url = url


class NotFound(OpenShelfError):
    def __init__(self, message: str) -> None:
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message,
            suggestion="List collections to find a valid id.",
            recoverable=False,
        )


class InvalidArgument(OpenShelfError):
    def __init__(self, message: str, *, code: ErrorCode = ErrorCode.INVALID_ARGUMENT) -> None:
        super().__init__(code=code, message=message, recoverable=False)


class DecodeError(OpenShelfError):
    """A share token could not be decoded. Callers should ignore the share."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code=ErrorCode.DECODE_ERROR,
            message=message,
            suggestion="The shared link is malformed or truncated.",
            recoverable=False,
        )
