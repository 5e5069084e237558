"""
Error taxonomy for renderproxy.

Every error that reaches the HTTP surface is a ProxyError carrying a stable
error code, an HTTP status and a human-readable message. Raw engine or
upstream error text is kept in ``details`` for diagnostics.

Error codes follow the pattern:
- INVALID_* / MISSING_*: request validation errors (client-side fix needed)
- *_FAILED: rendering engine or upstream failures
"""

from enum import Enum
from typing import Any


class ProxyErrorCode(str, Enum):
    """Stable error codes returned in error bodies."""

    MISSING_PARAMETER = "MISSING_PARAMETER"
    INVALID_URL = "INVALID_URL"
    INVALID_PARAMS = "INVALID_PARAMS"
    SESSION_LAUNCH_FAILED = "SESSION_LAUNCH_FAILED"
    NAVIGATION_TIMEOUT = "NAVIGATION_TIMEOUT"
    NAVIGATION_UNRESOLVED = "NAVIGATION_UNRESOLVED"
    NAVIGATION_FAILED = "NAVIGATION_FAILED"
    RESOURCE_FETCH_FAILED = "RESOURCE_FETCH_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class NavigationFailureKind(str, Enum):
    """Why every navigation strategy was exhausted."""

    TIMEOUT = "timeout"
    UNRESOLVED = "unresolved"  # name resolution failure or connection refused
    OTHER = "other"


class ProxyError(Exception):
    """
    Base exception for proxy request errors.

    Provides a structured JSON body for the HTTP layer.
    """

    status: int = 500
    error: str = "Proxy error"

    def __init__(
        self,
        code: ProxyErrorCode,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.url = url
        if status is not None:
            self.status = status
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to response body format."""
        result: dict[str, Any] = {
            "error": self.error,
            "message": self.message,
            "error_code": self.code.value,
        }
        if self.url is not None:
            result["url"] = self.url
        if self.details:
            result["details"] = self.details
        return result


class MissingParameter(ProxyError):
    """A required query parameter is absent."""

    status = 400
    error = "URL parameter is required"

    def __init__(self, name: str = "url"):
        super().__init__(
            ProxyErrorCode.MISSING_PARAMETER,
            f"Query parameter '{name}' is required",
            details={"parameter": name},
        )


class InvalidURL(ProxyError):
    """The target URL could not be parsed into an absolute http(s) URL."""

    status = 400
    error = "Invalid URL format"

    def __init__(self, raw_url: str, reason: str):
        super().__init__(
            ProxyErrorCode.INVALID_URL,
            reason,
            url=raw_url,
        )


class InvalidParams(ProxyError):
    """A query parameter other than the URL is malformed."""

    status = 400
    error = "Invalid parameters"

    def __init__(self, message: str, **details: Any):
        super().__init__(ProxyErrorCode.INVALID_PARAMS, message, details=details)


class SessionLaunchFailed(ProxyError):
    """The rendering engine could not be started.

    The session manager resets to uninitialized, so the next request
    retries the launch.
    """

    status = 503
    error = "Rendering engine unavailable"

    def __init__(self, cause: BaseException | str):
        super().__init__(
            ProxyErrorCode.SESSION_LAUNCH_FAILED,
            "The rendering engine could not be started. Retry the request.",
            details={"cause": str(cause)},
        )


class NavigationFailed(ProxyError):
    """Every navigation strategy was exhausted for a document request."""

    error = "Failed to fetch URL"

    _BY_KIND = {
        NavigationFailureKind.TIMEOUT: (
            ProxyErrorCode.NAVIGATION_TIMEOUT,
            504,
            "Page load timeout. The website took too long to load.",
        ),
        NavigationFailureKind.UNRESOLVED: (
            ProxyErrorCode.NAVIGATION_UNRESOLVED,
            502,
            "Website not found. Check if the URL is correct.",
        ),
        NavigationFailureKind.OTHER: (
            ProxyErrorCode.NAVIGATION_FAILED,
            500,
            "The page could not be rendered.",
        ),
    }

    def __init__(
        self,
        url: str,
        kind: NavigationFailureKind,
        raw_error: str | None = None,
        attempts: list[str] | None = None,
    ):
        code, status, message = self._BY_KIND[kind]
        details: dict[str, Any] = {"kind": kind.value}
        if raw_error:
            details["raw_error"] = raw_error
        if attempts:
            details["attempts"] = attempts
        super().__init__(code, message, url=url, status=status, details=details)
        self.kind = kind
        self.raw_error = raw_error


class ResourceFetchFailed(ProxyError):
    """A direct fetch failed and no stub convention applies."""

    status = 502
    error = "Failed to fetch resource"

    def __init__(self, url: str, reason: str):
        super().__init__(
            ProxyErrorCode.RESOURCE_FETCH_FAILED,
            reason,
            url=url,
        )
