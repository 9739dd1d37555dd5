"""Operation catalog built from OpenAPI description documents."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import ConfigurationError
from .models import (
    CatalogStats,
    MediaTypeDefinition,
    OperationDefinition,
    ParameterDefinition,
    RequestBodyDefinition,
    ResponseDefinition,
    SearchOptions,
)
from .openapi import SpecStore


logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "post", "put", "delete", "patch", "options", "head")
PARAMETER_LOCATIONS = ("path", "query", "header")
MAX_TOOL_NAME_LENGTH = 64
PAGINATION_PARAMETERS = ("limit", "offset", "page", "pageSize", "cursor")
PAGINATION_RESPONSE_FIELDS = ("totalCount", "nextPage", "cursor", "hasMore")

_TEMPLATE_SEGMENT = re.compile(r"\{[^}]+\}")


def default_operation_id(method: str, path: str) -> str:
    """``GET /papi/v1/properties/{id}`` -> ``getPapiV1Properties``."""
    stripped = _TEMPLATE_SEGMENT.sub("", path).strip("/")
    parts = [part for part in stripped.split("/") if part]
    joined = "".join(part if i == 0 else part[:1].upper() + part[1:] for i, part in enumerate(parts))
    return f"{method.lower()}{joined[:1].upper()}{joined[1:]}"


def build_tool_name(
    prefix: str,
    product: str,
    version: str,
    operation_id: str,
    max_length: int = MAX_TOOL_NAME_LENGTH,
) -> str:
    """Stable tool name, truncated positionally to ``max_length``.

    ``version`` does not appear in the name: the same operation in two
    versions of a product maps to the same tool.
    """
    head = f"{prefix}_{product.replace('-', '_')}_"
    name = f"{head}{operation_id}"
    if len(name) > max_length:
        # Distinct operation ids sharing a long prefix collide here.
        name = f"{head}{operation_id[: max(max_length - len(head), 0)]}"
    return name


def detect_pagination(
    query_parameters: Iterable[ParameterDefinition],
    responses: Dict[str, ResponseDefinition],
) -> bool:
    markers = [marker.lower() for marker in PAGINATION_PARAMETERS]
    if any(marker in param.name.lower() for param in query_parameters for marker in markers):
        return True

    success = responses.get("200")
    schema = success.json_schema() if success else None
    properties = schema.get("properties") if isinstance(schema, dict) else None
    if isinstance(properties, dict):
        return any(name in properties for name in PAGINATION_RESPONSE_FIELDS)
    return False


class OperationCatalog:
    def __init__(self, spec_store: SpecStore, tool_prefix: str = "api") -> None:
        self.spec_store = spec_store
        self.tool_prefix = tool_prefix
        self.reset()

    def reset(self) -> None:
        self._operations: Dict[str, OperationDefinition] = {}
        self._by_product: Dict[str, List[str]] = {}
        self._by_method: Dict[str, List[str]] = {}
        self._specs_loaded = 0
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        if self._loaded:
            return

        if not self.spec_store.exists():
            raise ConfigurationError(f"Specs directory not found: {self.spec_store.spec_dir}")

        started = time.monotonic()
        spec_files = await asyncio.to_thread(self.spec_store.discover)
        logger.info("Found %s OpenAPI specifications in %s", len(spec_files), self.spec_store.spec_dir)

        total = 0
        for spec_file in spec_files:
            try:
                total += await self._load_spec(spec_file)
            except Exception:
                logger.exception("Failed to load spec: %s", spec_file)
                continue
            self._specs_loaded += 1

        self._loaded = True
        logger.info(
            "Catalog loaded: %s operations from %s specs in %.0fms",
            total,
            len(spec_files),
            (time.monotonic() - started) * 1000,
        )

    async def _load_spec(self, spec_file: Path) -> int:
        product, version = self.spec_store.product_and_version(spec_file)
        document = await asyncio.to_thread(self.spec_store.load, spec_file)
        operations = self.parse_document(document, product, version, str(spec_file))
        for operation in operations:
            self._add(operation)
        logger.debug("Loaded %s operations from %s/%s", len(operations), product, version)
        return len(operations)

    def parse_document(
        self, document: Dict[str, Any], product: str, version: str, spec_file: str
    ) -> List[OperationDefinition]:
        operations: List[OperationDefinition] = []
        servers = document.get("servers") or []
        for path, path_item in (document.get("paths") or {}).items():
            if not isinstance(path_item, dict):
                continue
            shared_parameters = path_item.get("parameters") or []
            for method in HTTP_METHODS:
                operation = path_item.get(method)
                if not isinstance(operation, dict):
                    continue
                operations.append(
                    self._parse_operation(
                        path, method, operation, shared_parameters, product, version, spec_file, servers
                    )
                )
        return operations

    def _parse_operation(
        self,
        path: str,
        method: str,
        operation: Dict[str, Any],
        shared_parameters: List[Dict[str, Any]],
        product: str,
        version: str,
        spec_file: str,
        servers: List[Dict[str, Any]],
    ) -> OperationDefinition:
        operation_id = operation.get("operationId") or default_operation_id(method, path)
        grouped = self._parse_parameters([*shared_parameters, *(operation.get("parameters") or [])])
        responses = self._parse_responses(operation.get("responses") or {})

        return OperationDefinition(
            operation_id=operation_id,
            tool_name=build_tool_name(self.tool_prefix, product, version, operation_id),
            method=method.upper(),
            path=path,
            product=product,
            version=version,
            spec_file=spec_file,
            summary=operation.get("summary"),
            description=operation.get("description"),
            path_parameters=grouped["path"],
            query_parameters=grouped["query"],
            header_parameters=grouped["header"],
            request_body=self._parse_request_body(operation.get("requestBody")),
            responses=responses,
            tags=list(operation.get("tags") or []),
            security=operation.get("security"),
            servers=list(operation.get("servers") or servers),
            supports_pagination=detect_pagination(grouped["query"], responses),
            extensions={k: v for k, v in operation.items() if k.startswith("x-")},
        )

    def _parse_parameters(self, raw_parameters: List[Dict[str, Any]]) -> Dict[str, List[ParameterDefinition]]:
        # Later entries (operation level) override path-item level ones.
        merged: Dict[tuple, Dict[str, Any]] = {}
        for raw in raw_parameters:
            if isinstance(raw, dict) and raw.get("name") and raw.get("in") in PARAMETER_LOCATIONS:
                merged[(raw["name"], raw["in"])] = raw

        grouped: Dict[str, List[ParameterDefinition]] = {location: [] for location in PARAMETER_LOCATIONS}
        for raw in merged.values():
            location = raw["in"]
            grouped[location].append(
                ParameterDefinition(
                    name=raw["name"],
                    location=location,
                    required=bool(raw.get("required")) or location == "path",
                    schema=raw.get("schema") or {},
                    description=raw.get("description"),
                    example=raw.get("example"),
                    examples=raw.get("examples"),
                )
            )
        return grouped

    def _parse_request_body(self, raw: Optional[Dict[str, Any]]) -> Optional[RequestBodyDefinition]:
        if not isinstance(raw, dict):
            return None
        return RequestBodyDefinition(
            required=bool(raw.get("required")),
            content=self._parse_content(raw.get("content")),
            description=raw.get("description"),
        )

    def _parse_responses(self, raw: Dict[str, Any]) -> Dict[str, ResponseDefinition]:
        responses: Dict[str, ResponseDefinition] = {}
        for status_code, response in raw.items():
            if not isinstance(response, dict):
                continue
            responses[str(status_code)] = ResponseDefinition(
                status_code=str(status_code),
                description=response.get("description") or "",
                content=self._parse_content(response.get("content")),
                headers=response.get("headers") or {},
            )
        return responses

    def _parse_content(self, raw: Optional[Dict[str, Any]]) -> Dict[str, MediaTypeDefinition]:
        content: Dict[str, MediaTypeDefinition] = {}
        for media_type, media in (raw or {}).items():
            if isinstance(media, dict):
                content[media_type] = MediaTypeDefinition(
                    schema=media.get("schema") or {},
                    example=media.get("example"),
                    examples=media.get("examples"),
                )
        return content

    def _add(self, operation: OperationDefinition) -> None:
        previous = self._operations.get(operation.tool_name)
        if previous is not None:
            logger.warning(
                "Tool name collision: %s (%s %s replaces %s %s)",
                operation.tool_name,
                operation.method,
                operation.path,
                previous.method,
                previous.path,
            )
            self._by_product[previous.product].remove(previous.tool_name)
            self._by_method[previous.method].remove(previous.tool_name)

        self._operations[operation.tool_name] = operation
        self._by_product.setdefault(operation.product, []).append(operation.tool_name)
        self._by_method.setdefault(operation.method, []).append(operation.tool_name)

    def get_operation(self, tool_name: str) -> Optional[OperationDefinition]:
        return self._operations.get(tool_name)

    def all_operations(self) -> List[OperationDefinition]:
        return list(self._operations.values())

    def search(self, options: SearchOptions) -> List[OperationDefinition]:
        if options.product:
            names = self._by_product.get(options.product, [])
            results = [self._operations[name] for name in names]
        else:
            results = self.all_operations()

        if options.method:
            method = options.method.upper()
            results = [op for op in results if op.method == method]
        if options.tags:
            wanted = set(options.tags)
            results = [op for op in results if wanted.intersection(op.tags)]
        if options.paginatable is not None:
            results = [op for op in results if op.supports_pagination == options.paginatable]
        if options.query:
            query = options.query.lower()
            results = [
                op
                for op in results
                if query in op.tool_name.lower()
                or query in (op.summary or "").lower()
                or query in (op.description or "").lower()
            ]
        if options.limit is not None:
            results = results[: max(options.limit, 0)]
        return results

    def stats(self) -> CatalogStats:
        operations = self.all_operations()
        return CatalogStats(
            total_operations=len(operations),
            specs_loaded=self._specs_loaded,
            operations_by_product={p: len(names) for p, names in self._by_product.items() if names},
            operations_by_method={m: len(names) for m, names in self._by_method.items() if names},
            paginatable_operations=sum(1 for op in operations if op.supports_pagination),
            operations_with_body=sum(1 for op in operations if op.request_body is not None),
        )
