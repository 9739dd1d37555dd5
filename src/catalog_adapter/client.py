"""Authenticated HTTP client and request construction for catalog operations."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol
from urllib.parse import quote, urlparse

import httpx

from .errors import ValidationError, UpstreamError
from .logging import redact_headers
from .models import OperationDefinition

logger = logging.getLogger(__name__)

SAFE_HEADERS = frozenset(
    {"accept", "content-type", "if-match", "if-none-match", "prefer", "x-request-id"}
)
_UNSUBSTITUTED = re.compile(r"\{([^}]+)\}")


@dataclass(frozen=True)
class PreparedRequest:
    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    def with_query(self, name: str, value: Any) -> "PreparedRequest":
        query = dict(self.query)
        query[name] = str(value)
        return PreparedRequest(self.method, self.path, query, dict(self.headers), self.body)


@dataclass(frozen=True)
class RateLimitInfo:
    limit: Optional[int] = None
    remaining: Optional[int] = None
    next_reset: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"limit": self.limit, "remaining": self.remaining, "next_reset": self.next_reset}


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: Dict[str, str]
    body: Any

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get("x-request-id")


class AuthenticatedClient(Protocol):
    async def send(self, request: PreparedRequest) -> HttpResponse: ...

    def extract_rate_limit(self, headers: Mapping[str, str]) -> Optional[RateLimitInfo]: ...


class RequestBuilder:
    """Turns a flat argument bag into a concrete request for an operation."""

    def __init__(self, default_headers: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        self.default_headers = default_headers or {}

    def build(self, operation: OperationDefinition, arguments: Mapping[str, Any]) -> PreparedRequest:
        path_values = {
            p.name: arguments[p.name] for p in operation.path_parameters if arguments.get(p.name) is not None
        }
        query = {
            p.name: _query_value(arguments[p.name])
            for p in operation.query_parameters
            if arguments.get(p.name) is not None
        }
        headers = {
            p.name: str(arguments[p.name])
            for p in operation.header_parameters
            if arguments.get(p.name) is not None
        }
        return self.prepare(operation, path_values, query, headers, arguments.get("body"))

    def prepare(
        self,
        operation: OperationDefinition,
        path_values: Mapping[str, Any],
        query: Mapping[str, Any],
        headers: Mapping[str, str],
        body: Any = None,
    ) -> PreparedRequest:
        return PreparedRequest(
            method=operation.method,
            path=self.build_path(operation, path_values),
            query={k: _query_value(v) for k, v in query.items()},
            headers=self.build_headers(operation, headers),
            body=body,
        )

    def build_path(self, operation: OperationDefinition, path_values: Mapping[str, Any]) -> str:
        base_path = ""
        if operation.servers:
            base_path = urlparse(str(operation.servers[0].get("url", ""))).path.rstrip("/")

        path = base_path + operation.path
        for name, value in path_values.items():
            path = path.replace(f"{{{name}}}", quote(str(value), safe=""))

        missing = _UNSUBSTITUTED.search(path)
        if missing:
            raise ValidationError(
                f"Path parameter not provided: {missing.group(1)}",
                [{"path": missing.group(1), "message": "Required", "expected": "present", "received": "undefined"}],
            )
        return path

    def build_headers(self, operation: OperationDefinition, headers: Mapping[str, str]) -> Dict[str, str]:
        allowed = SAFE_HEADERS | {p.name.lower() for p in operation.header_parameters}
        result = dict(self.default_headers.get(operation.product, {}))
        for name, value in headers.items():
            if name.lower() in allowed:
                result[name] = str(value)
            else:
                logger.warning("Rejected unsafe header: %s", name)
        return result


class HttpxClient:
    """``AuthenticatedClient`` backed by httpx with static credentials."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        auth_type: str = "bearer",
        auth_header: str = "Authorization",
        timeout_seconds: float = 30,
        verify_ssl: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.auth_type = auth_type
        self.auth_header = auth_header
        self.timeout_seconds = timeout_seconds
        self.verify_ssl = verify_ssl
        self.transport = transport

    def _auth_headers(self) -> Dict[str, str]:
        if not self.token or self.auth_type == "none":
            return {}
        if self.auth_type == "api_key":
            return {self.auth_header: self.token}
        return {"Authorization": f"Bearer {self.token}"}

    async def send(self, request: PreparedRequest) -> HttpResponse:
        headers = {"Accept": "application/json", **request.headers, **self._auth_headers()}
        content: Optional[str] = None
        if request.body is not None:
            headers.setdefault("Content-Type", "application/json")
            content = json.dumps(request.body)

        url = self.base_url + request.path
        logger.info("API request %s %s query=%s", request.method, request.path, request.query)
        logger.debug("API request headers=%s", redact_headers(headers))
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, verify=self.verify_ssl, transport=self.transport
            ) as client:
                response = await client.request(
                    request.method, url, params=request.query, headers=headers, content=content
                )
        except httpx.HTTPError as exc:
            raise UpstreamError(str(exc) or type(exc).__name__, code=transport_code(exc)) from exc

        duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            "API response %s %s status=%s duration=%.0fms",
            request.method,
            request.path,
            response.status_code,
            duration_ms,
        )
        result = HttpResponse(
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=_decode_body(response),
        )
        if response.status_code >= 400:
            raise UpstreamError(
                f"{request.method} {request.path} returned {response.status_code}",
                status=result.status,
                headers=result.headers,
                body=result.body,
            )
        return result

    def extract_rate_limit(self, headers: Mapping[str, str]) -> Optional[RateLimitInfo]:
        lowered = {k.lower(): v for k, v in headers.items()}
        limit = lowered.get("x-ratelimit-limit") or lowered.get("akamai-ratelimit-limit")
        remaining = lowered.get("x-ratelimit-remaining") or lowered.get("akamai-ratelimit-remaining")
        next_reset = (
            lowered.get("x-ratelimit-reset")
            or lowered.get("x-ratelimit-next")
            or lowered.get("akamai-ratelimit-next")
        )
        if not (limit or remaining or next_reset):
            return None
        return RateLimitInfo(limit=_as_int(limit), remaining=_as_int(remaining), next_reset=next_reset)


def transport_code(exc: httpx.HTTPError) -> Optional[str]:
    """Map an httpx exception to a socket-style error code."""
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(exc, httpx.ConnectError):
        text = str(exc).lower()
        if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo" in text:
            return "ENOTFOUND"
        return "ECONNREFUSED"
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return None


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_query_value(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def _as_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
