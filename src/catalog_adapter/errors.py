"""Error taxonomy and normalization for upstream API calls.

Every failure observed at the network boundary is raised as an
``UpstreamError`` by the client and converted exactly once, by
``normalize_error``, into one of the ``ErrorKind`` classes below.
``is_retryable`` is the single retry policy shared by the executor and
callers that want to inspect a classified error.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class ErrorKind(str, Enum):
    AUTHENTICATION = "AUTHENTICATION_ERROR"
    CONFIGURATION = "CONFIGURATION_ERROR"
    RATE_LIMIT = "RATE_LIMIT_ERROR"
    NETWORK = "NETWORK_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    TIMEOUT = "TIMEOUT_ERROR"
    API_ERROR = "API_ERROR"
    TOOL_EXECUTION = "TOOL_EXECUTION_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


TIMEOUT_CODES = frozenset({"ETIMEDOUT", "ECONNABORTED"})
NETWORK_CODES = frozenset({"ECONNREFUSED", "ENOTFOUND", "ECONNRESET"})


class UpstreamError(Exception):
    """Raw, unclassified failure raised by the HTTP client."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.body = body

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get("x-request-id")


class AdapterError(Exception):
    kind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "kind": self.kind.value,
            "name": type(self).__name__,
            "message": self.message,
        }
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        if self.details is not None:
            payload["details"] = self.details
        return payload


class AuthenticationError(AdapterError):
    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str, status_code: int = 401, details: Any = None) -> None:
        super().__init__(message, status_code, details)


class ConfigurationError(AdapterError):
    kind = ErrorKind.CONFIGURATION


class RateLimitError(AdapterError):
    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str = "API rate limit exceeded",
        retry_after: Optional[int] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, 429, details)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["retry_after"] = self.retry_after
        return payload


class NetworkError(AdapterError):
    kind = ErrorKind.NETWORK


class ValidationError(AdapterError):
    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        status_code: Optional[int] = 400,
        details: Any = None,
    ) -> None:
        super().__init__(message, status_code, details)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class NotFoundError(AdapterError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, identifier: Optional[str] = None, details: Any = None) -> None:
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, 404, details)
        self.resource = resource
        self.identifier = identifier


class RequestTimeoutError(AdapterError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, operation: str, timeout_ms: Optional[int] = None, code: Optional[str] = None) -> None:
        if timeout_ms:
            message = f"Operation '{operation}' timed out after {timeout_ms}ms"
        else:
            message = f"Operation '{operation}' timed out"
        super().__init__(message, 408, {"operation": operation, "timeout_ms": timeout_ms}, code)


class ApiError(AdapterError):
    kind = ErrorKind.API_ERROR

    def __init__(self, message: str, status_code: int, details: Any = None) -> None:
        super().__init__(message, status_code, details)


class ToolExecutionError(AdapterError):
    kind = ErrorKind.TOOL_EXECUTION

    def __init__(self, tool_name: str, cause: AdapterError) -> None:
        super().__init__(
            f"Tool '{tool_name}' execution failed: {cause.message}",
            cause.status_code,
        )
        self.tool_name = tool_name
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["tool_name"] = self.tool_name
        payload["cause"] = self.cause.to_dict()
        return payload


def normalize_error(error: BaseException, context: Optional[str] = None) -> AdapterError:
    """Map any failure to exactly one classified kind."""
    if isinstance(error, AdapterError):
        return error

    status = getattr(error, "status", None)
    code = getattr(error, "code", None)
    body = getattr(error, "body", None)
    message = _upstream_message(error, body)

    if isinstance(status, int):
        if status in (401, 403):
            return AuthenticationError(message, status, body)
        if status == 404:
            identifier = body.get("identifier") if isinstance(body, dict) else None
            return NotFoundError(context or "Resource", identifier, body)
        if status == 429:
            headers = getattr(error, "headers", None) or {}
            return RateLimitError(message, _parse_retry_after(headers.get("retry-after")), body)
        if 400 <= status < 500:
            errors = body.get("errors") if isinstance(body, dict) else None
            return ValidationError(message, errors if isinstance(errors, list) else None, status, body)
        if status >= 500:
            return ApiError(message, status, body)

    if code in TIMEOUT_CODES:
        return RequestTimeoutError(context or "request", code=code)
    if code in NETWORK_CODES:
        network_error = NetworkError(message or "Network error occurred", details={"code": code})
        network_error.code = code
        return network_error

    return AdapterError(
        message or type(error).__name__,
        status if isinstance(status, int) else None,
        {"original_error": type(error).__name__},
        code if isinstance(code, str) else None,
    )


def is_retryable(error: AdapterError) -> bool:
    if error.kind in (ErrorKind.RATE_LIMIT, ErrorKind.NETWORK, ErrorKind.TIMEOUT):
        return True
    if error.kind is ErrorKind.API_ERROR:
        return error.status_code is not None and 500 <= error.status_code <= 504
    if error.kind is ErrorKind.UNKNOWN:
        # Neither a status nor a transport code: assume a transient failure.
        return error.status_code is None and error.code is None
    return False


def _upstream_message(error: BaseException, body: Any) -> str:
    if isinstance(body, dict):
        for key in ("detail", "message", "title", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return str(error)


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None
