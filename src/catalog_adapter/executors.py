"""Resilient execution of upstream calls: throttling, retry, classification."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .client import AuthenticatedClient, HttpResponse, PreparedRequest, RateLimitInfo
from .errors import normalize_error
from .models import OperationDefinition
from .retry import RateLimiter, with_retry

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 10
MAX_PAGES_CAP = 100
PAGINATION_PARAM_MARKERS = ("offset", "page", "cursor", "limit")
ITEM_KEYS = ("items", "results", "data", "records", "list")


@dataclass(frozen=True)
class ExecutionResult:
    status: int
    headers: Dict[str, str]
    body: Any
    request_id: Optional[str] = None
    rate_limit: Optional[RateLimitInfo] = None
    paginated: bool = False
    page_count: Optional[int] = None
    total_items: Optional[int] = None


@dataclass(frozen=True)
class PaginationMeta:
    has_more: bool = False
    next_cursor: Any = None
    total_items: Optional[int] = None


class ResilientExecutor:
    def __init__(
        self,
        client: AuthenticatedClient,
        rate_limiter: RateLimiter,
        max_retries: int = 3,
        retry_delay_ms: int = 1000,
    ) -> None:
        self.client = client
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms

    async def _attempt(self, request: PreparedRequest) -> HttpResponse:
        await self.rate_limiter.acquire()
        return await self.client.send(request)

    async def execute(self, request: PreparedRequest, operation: str) -> ExecutionResult:
        """Send ``request`` with retry; failures surface as classified errors."""
        try:
            response = await with_retry(
                lambda: self._attempt(request),
                operation,
                max_retries=self.max_retries,
                delay_ms=self.retry_delay_ms,
            )
        except Exception as exc:
            raise normalize_error(exc, operation) from exc

        return ExecutionResult(
            status=response.status,
            headers=response.headers,
            body=response.body,
            request_id=response.request_id,
            rate_limit=self.client.extract_rate_limit(response.headers),
        )

    async def collect_pages(
        self,
        operation: OperationDefinition,
        request: PreparedRequest,
        max_pages: Optional[int] = None,
    ) -> ExecutionResult:
        page_param = detect_pagination_param(operation)
        if page_param is None:
            logger.warning("Pagination requested but no pagination parameter detected: %s", operation.tool_name)
            return await self.execute(request, operation.tool_name)

        limit = min(max_pages or DEFAULT_MAX_PAGES, MAX_PAGES_CAP)
        logger.info("Pagination enabled for %s: max %s pages", operation.tool_name, limit)

        items: List[Any] = []
        page_count = 0
        meta = PaginationMeta(has_more=True)
        last: Optional[ExecutionResult] = None
        current = request
        while meta.has_more and page_count < limit:
            last = await self.execute(current, operation.tool_name)
            page_count += 1
            page_items = extract_items(last.body)
            items.extend(page_items)
            meta = extract_pagination_meta(last.body)
            logger.debug("Page %s: %s items, has_more=%s", page_count, len(page_items), meta.has_more)
            if meta.next_cursor is None:
                break
            current = request.with_query(page_param, meta.next_cursor)

        return ExecutionResult(
            status=last.status if last else 200,
            headers={},
            body=items,
            request_id=last.request_id if last else None,
            rate_limit=last.rate_limit if last else None,
            paginated=True,
            page_count=page_count,
            total_items=meta.total_items,
        )


def detect_pagination_param(operation: OperationDefinition) -> Optional[str]:
    for param in operation.query_parameters:
        lowered = param.name.lower()
        if any(marker in lowered for marker in PAGINATION_PARAM_MARKERS):
            return param.name
    return None


def extract_items(body: Any) -> List[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in ITEM_KEYS:
            if isinstance(body.get(key), list):
                return body[key]
        for value in body.values():
            if isinstance(value, list):
                return value
    return []


def extract_pagination_meta(body: Any) -> PaginationMeta:
    if not isinstance(body, dict):
        return PaginationMeta()
    next_page = body.get("nextPage")
    has_more = bool(body.get("hasMore") or body.get("hasNextPage") or isinstance(next_page, str) and next_page)
    next_cursor = body.get("nextCursor") or next_page or body.get("offset")
    total = body.get("totalCount") or body.get("totalItems") or body.get("total")
    return PaginationMeta(
        has_more=has_more,
        next_cursor=next_cursor,
        total_items=total if isinstance(total, int) else None,
    )
