"""Compile catalog operations into callable tools."""

from __future__ import annotations

import keyword
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, create_model

from .client import PreparedRequest, RequestBuilder
from .errors import AdapterError, ToolExecutionError, ValidationError, normalize_error
from .executors import DEFAULT_MAX_PAGES, MAX_PAGES_CAP, ExecutionResult, ResilientExecutor
from .models import OperationDefinition
from .response_validator import ResponseValidator
from .validation import ValidationResult, Validator, compile_schema


logger = logging.getLogger(__name__)

_OMITTED_HEADERS = ("authorization", "x-api-key")

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}


@dataclass(frozen=True)
class GeneratedTool:
    definition: ToolDefinition
    handler: ToolHandler
    operation: Optional[OperationDefinition] = None
    input_model: Optional[type[BaseModel]] = field(default=None, compare=False)

    @property
    def name(self) -> str:
        return self.definition.name


def success_payload(result: ExecutionResult, validation: ValidationResult) -> Dict[str, Any]:
    return {
        "content": [
            {
                "type": "json",
                "json": {
                    "status": result.status,
                    "request_id": result.request_id,
                    "data": validation.data,
                    "rate_limit": result.rate_limit.to_dict() if result.rate_limit else None,
                    "validation": {"valid": validation.valid, "errors": validation.error_dicts()},
                    "paginated": result.paginated,
                    "page_count": result.page_count,
                    "total_items": result.total_items,
                },
            }
        ]
    }


def error_payload(error: AdapterError) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": error.message}],
        "is_error": True,
        "error": error.to_dict(),
    }


class ToolCompiler:
    def __init__(
        self,
        request_builder: RequestBuilder,
        executor: ResilientExecutor,
        response_validator: ResponseValidator,
    ) -> None:
        self.request_builder = request_builder
        self.executor = executor
        self.response_validator = response_validator

    def compile_all(self, operations: Iterable[OperationDefinition]) -> Dict[str, GeneratedTool]:
        tools: Dict[str, GeneratedTool] = {}
        for operation in operations:
            try:
                tools[operation.tool_name] = self.compile(operation)
            except Exception:
                logger.exception("Failed to compile tool: %s", operation.tool_name)
        logger.info("Compiled %s tools", len(tools))
        return tools

    def compile(self, operation: OperationDefinition) -> GeneratedTool:
        input_schema = build_input_schema(operation)
        definition = ToolDefinition(
            name=operation.tool_name,
            description=describe(operation),
            input_schema=input_schema,
        )
        validator = compile_schema(input_schema)
        return GeneratedTool(
            definition=definition,
            handler=self._handler(operation, validator),
            operation=operation,
            input_model=build_input_model(operation.tool_name, input_schema),
        )

    def _handler(self, operation: OperationDefinition, validator: Validator) -> ToolHandler:
        async def handler(arguments: Dict[str, Any]) -> Dict[str, Any]:
            try:
                checked = validator(arguments)
                if not checked.valid:
                    logger.info("Input validation failed tool=%s errors=%s", operation.tool_name, len(checked.errors))
                    return error_payload(
                        ValidationError(f"Invalid input for {operation.tool_name}", checked.error_dicts())
                    )

                paginate = bool(arguments.get("paginate")) and operation.supports_pagination
                request = self.request_builder.build(operation, arguments)
                return await self.run(operation, request, paginate, arguments.get("maxPages"))
            except Exception as exc:
                cause = normalize_error(exc, operation.tool_name)
                logger.error("Tool execution failed tool=%s kind=%s: %s", operation.tool_name, cause.kind.value, cause)
                return error_payload(ToolExecutionError(operation.tool_name, cause))

        handler.__name__ = operation.tool_name
        return handler

    async def run(
        self,
        operation: OperationDefinition,
        request: PreparedRequest,
        paginate: bool = False,
        max_pages: Optional[int] = None,
    ) -> Dict[str, Any]:
        if paginate:
            result = await self.executor.collect_pages(operation, request, max_pages)
            schema = None
        else:
            result = await self.executor.execute(request, operation.tool_name)
            response = operation.response_for(result.status)
            schema = response.json_schema() if response else None
        validation = self.response_validator.validate(result.body, schema, result.status)
        return success_payload(result, validation)


def describe(operation: OperationDefinition) -> str:
    description = operation.summary or f"{operation.method} {operation.path}"
    if operation.supports_pagination:
        description += " (supports pagination: set paginate=true to fetch all pages)"
    return description


def build_input_schema(operation: OperationDefinition) -> Dict[str, Any]:
    properties: Dict[str, Any] = {}
    required: List[str] = []

    for param in operation.parameters:
        if param.location == "header" and param.name.lower().startswith(_OMITTED_HEADERS):
            continue
        schema = dict(param.schema)
        if param.description and "description" not in schema:
            schema["description"] = param.description
        properties[param.name] = schema
        if param.required:
            required.append(param.name)

    if operation.request_body is not None:
        body_schema = operation.request_body.json_schema()
        if body_schema is not None:
            properties["body"] = body_schema
            if operation.request_body.required:
                required.append("body")

    if operation.supports_pagination:
        properties["paginate"] = {
            "type": "boolean",
            "description": "Automatically fetch all pages",
        }
        properties["maxPages"] = {
            "type": "number",
            "minimum": 1,
            "maximum": MAX_PAGES_CAP,
            "description": f"Maximum pages to fetch (default {DEFAULT_MAX_PAGES})",
        }

    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


def build_input_model(tool_name: str, input_schema: Dict[str, Any]) -> type[BaseModel]:
    """Pydantic model mirroring ``input_schema`` for MCP registration.

    Argument names that are not valid identifiers are carried as aliases.
    """
    fields: Dict[str, Tuple[Any, Any]] = {}
    required = set(input_schema.get("required") or [])
    for name, schema in (input_schema.get("properties") or {}).items():
        field_name = _field_name(name)
        default = ... if name in required else None
        field_type = _schema_to_type(schema)
        if name not in required:
            field_type = Optional[field_type]
        fields[field_name] = (
            field_type,
            Field(default, alias=name, description=schema.get("description")),
        )

    model_config = ConfigDict(extra="allow", populate_by_name=True)
    return create_model(f"{_sanitize_name(tool_name)}Input", __config__=model_config, **fields)


def _schema_to_type(schema: Dict[str, Any]) -> Any:
    schema_type = schema.get("type")
    if schema_type == "integer":
        return int
    if schema_type == "number":
        return float
    if schema_type == "boolean":
        return bool
    if schema_type == "string":
        return str
    if schema_type == "array":
        return List[Any]
    if schema_type == "object":
        return Dict[str, Any]
    return Any


def _field_name(name: str) -> str:
    sanitized = _sanitize_name(name)
    if not sanitized or sanitized[0].isdigit() or sanitized.startswith("_") or keyword.iskeyword(sanitized):
        sanitized = f"arg_{sanitized.lstrip('_')}"
    return sanitized


def _sanitize_name(name: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in name)
