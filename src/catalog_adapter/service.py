"""Core adapter service: owns the catalog, the tool table and dispatch."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .catalog import OperationCatalog
from .client import AuthenticatedClient, HttpxClient, RequestBuilder
from .config import Settings
from .errors import NotFoundError, ToolExecutionError, ValidationError, normalize_error
from .executors import MAX_PAGES_CAP, ResilientExecutor
from .logging import redact_payload
from .models import SearchOptions
from .openapi import SpecStore
from .response_validator import ResponseValidator
from .retry import RateLimiter
from .tool_registry import (
    GeneratedTool,
    ToolCompiler,
    ToolDefinition,
    ToolHandler,
    build_input_model,
    error_payload,
)
from .validation import compile_schema

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 500


class AdapterService:
    """
    Catalog-backed tool service.

    ``start()`` loads every description document under the configured spec
    directory and compiles one tool per operation. ``invoke()`` dispatches a
    call by tool name and always returns a content payload; failures are
    reported as ``{"content", "is_error", "error"}`` rather than raised.
    """

    def __init__(self, settings: Settings, client: Optional[AuthenticatedClient] = None) -> None:
        self.settings = settings
        self.prefix = settings.adapter_tool_prefix
        self.catalog = OperationCatalog(SpecStore(settings.adapter_spec_dir), settings.adapter_tool_prefix)
        self.response_validator = ResponseValidator(settings.adapter_strict_response_validation)
        self.rate_limiter = RateLimiter(
            settings.adapter_rate_limit_max_tokens,
            settings.adapter_rate_limit_refill_rate,
        )
        self.client = client or HttpxClient(
            base_url=settings.upstream_base_url,
            token=settings.upstream_token,
            auth_type=settings.upstream_auth_type,
            auth_header=settings.upstream_auth_header,
            timeout_seconds=settings.adapter_request_timeout_ms / 1000,
            verify_ssl=settings.upstream_verify_ssl,
        )
        self.executor = ResilientExecutor(
            self.client,
            self.rate_limiter,
            max_retries=settings.adapter_max_retries,
            retry_delay_ms=settings.adapter_retry_delay_ms,
        )
        self.request_builder = RequestBuilder(settings.default_headers())
        self.compiler = ToolCompiler(self.request_builder, self.executor, self.response_validator)
        self.semaphore = asyncio.Semaphore(settings.adapter_max_concurrency)
        self._tools: Dict[str, GeneratedTool] = {}
        self._utilities: Dict[str, GeneratedTool] = {}

    async def start(self) -> None:
        await self.catalog.load()
        self._tools = self.compiler.compile_all(self.catalog.all_operations())
        self._utilities = self._utility_tools()
        logger.info(
            "Adapter ready: %s generated tools, %s utility tools",
            len(self._tools),
            len(self._utilities),
        )

    async def rebuild(self) -> None:
        self.reset()
        await self.start()

    def reset(self) -> None:
        self.catalog.reset()
        self.response_validator.reset_stats()
        self._tools = {}
        self._utilities = {}

    def tools(self) -> List[GeneratedTool]:
        return [*self._tools.values(), *self._utilities.values()]

    def list_tools(self) -> List[ToolDefinition]:
        return [tool.definition for tool in self.tools()]

    def get_tool(self, name: str) -> Optional[GeneratedTool]:
        return self._tools.get(name) or self._utilities.get(name)

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        arguments = arguments or {}
        tool = self.get_tool(name)
        if tool is None:
            logger.warning("Unknown tool requested: %s", name)
            return error_payload(NotFoundError("Tool", name))

        async with self.semaphore:
            logger.info("Executing tool=%s arguments=%s", name, redact_payload(arguments))
            return await tool.handler(arguments)

    def _utility_tools(self) -> Dict[str, GeneratedTool]:
        utilities = [
            self._utility(
                "raw_request",
                "Execute any catalog operation by tool name with explicit path, query, header and body values",
                RAW_REQUEST_SCHEMA,
                self.raw_request,
            ),
            self._utility(
                "list_operations",
                "List available operations with optional filtering",
                LIST_OPERATIONS_SCHEMA,
                self.list_operations,
            ),
            self._utility(
                "registry_stats",
                "Catalog and response validation statistics",
                REGISTRY_STATS_SCHEMA,
                self.registry_stats,
            ),
        ]
        return {tool.name: tool for tool in utilities}

    def _utility(self, suffix: str, description: str, schema: Dict[str, Any], fn: ToolHandler) -> GeneratedTool:
        name = f"{self.prefix}_{suffix}"
        validator = compile_schema(schema)

        async def handler(arguments: Dict[str, Any]) -> Dict[str, Any]:
            try:
                checked = validator(arguments)
                if not checked.valid:
                    return error_payload(ValidationError(f"Invalid input for {name}", checked.error_dicts()))
                return await fn(arguments)
            except Exception as exc:
                cause = normalize_error(exc, name)
                logger.error("Utility tool failed tool=%s kind=%s: %s", name, cause.kind.value, cause)
                return error_payload(ToolExecutionError(name, cause))

        handler.__name__ = name
        return GeneratedTool(
            ToolDefinition(name, description, schema),
            handler,
            input_model=build_input_model(name, schema),
        )

    async def raw_request(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        tool_name = arguments.get("toolName")
        if not isinstance(tool_name, str) or not tool_name:
            return error_payload(ValidationError("toolName is required"))

        operation = self.catalog.get_operation(tool_name)
        if operation is None:
            return error_payload(NotFoundError("Operation", tool_name))

        try:
            request = self.request_builder.prepare(
                operation,
                arguments.get("pathParams") or {},
                arguments.get("queryParams") or {},
                arguments.get("headers") or {},
                arguments.get("body"),
            )
            paginate = bool(arguments.get("paginate")) and operation.supports_pagination
            return await self.compiler.run(operation, request, paginate, arguments.get("maxPages"))
        except Exception as exc:
            cause = normalize_error(exc, tool_name)
            logger.error("Raw request failed tool=%s kind=%s: %s", tool_name, cause.kind.value, cause)
            return error_payload(ToolExecutionError(f"{self.prefix}_raw_request", cause))

    async def list_operations(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        limit = arguments.get("limit") or DEFAULT_LIST_LIMIT
        options = SearchOptions(
            product=arguments.get("product"),
            method=arguments.get("method"),
            tags=arguments.get("tags"),
            query=arguments.get("query"),
            paginatable=arguments.get("paginatable"),
        )
        matches = self.catalog.search(options)
        shown = matches[: min(int(limit), MAX_LIST_LIMIT)]
        operations = [
            {
                "tool_name": op.tool_name,
                "method": op.method,
                "path": op.path,
                "product": op.product,
                "version": op.version,
                "summary": op.summary,
                "supports_pagination": op.supports_pagination,
                "tags": op.tags,
            }
            for op in shown
        ]
        return {
            "content": [
                {
                    "type": "json",
                    "json": {"total": len(matches), "showing": len(operations), "operations": operations},
                }
            ]
        }

    async def registry_stats(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "content": [
                {
                    "type": "json",
                    "json": {
                        "catalog": self.catalog.stats().to_dict(),
                        "tools": {"generated": len(self._tools), "utility": len(self._utilities)},
                        "validation": self.response_validator.stats().to_dict(),
                        "validation_health": self.response_validator.health(),
                    },
                }
            ]
        }


RAW_REQUEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "toolName": {"type": "string", "description": "Generated tool name of the operation"},
        "pathParams": {"type": "object", "description": "Path parameter values"},
        "queryParams": {"type": "object", "description": "Query parameter values"},
        "headers": {"type": "object", "description": "Additional request headers"},
        "body": {"type": "object", "description": "JSON request body"},
        "paginate": {"type": "boolean", "description": "Automatically fetch all pages"},
        "maxPages": {"type": "number", "minimum": 1, "maximum": MAX_PAGES_CAP},
    },
    "required": ["toolName"],
    "additionalProperties": False,
}

LIST_OPERATIONS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "product": {"type": "string", "description": "Filter by product"},
        "method": {"type": "string", "description": "Filter by HTTP method"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "query": {"type": "string", "description": "Search tool names, summaries and descriptions"},
        "paginatable": {"type": "boolean"},
        "limit": {"type": "integer", "minimum": 1, "maximum": MAX_LIST_LIMIT},
    },
    "additionalProperties": False,
}

REGISTRY_STATS_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}, "additionalProperties": False}
