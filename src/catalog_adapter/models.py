"""Internal models for catalog operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ParameterDefinition:
    name: str
    location: str
    required: bool
    schema: Dict[str, Any]
    description: Optional[str] = None
    example: Any = None
    examples: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class MediaTypeDefinition:
    schema: Dict[str, Any]
    example: Any = None
    examples: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class RequestBodyDefinition:
    required: bool
    content: Dict[str, MediaTypeDefinition]
    description: Optional[str] = None

    def json_schema(self) -> Optional[Dict[str, Any]]:
        media = self.content.get("application/json")
        return media.schema if media else None


@dataclass(frozen=True)
class ResponseDefinition:
    status_code: str
    description: str = ""
    content: Dict[str, MediaTypeDefinition] = field(default_factory=dict)
    headers: Dict[str, Any] = field(default_factory=dict)

    def json_schema(self) -> Optional[Dict[str, Any]]:
        media = self.content.get("application/json")
        return media.schema if media else None


@dataclass(frozen=True)
class OperationDefinition:
    operation_id: str
    tool_name: str
    method: str
    path: str
    product: str
    version: str
    spec_file: str
    summary: Optional[str] = None
    description: Optional[str] = None
    path_parameters: List[ParameterDefinition] = field(default_factory=list)
    query_parameters: List[ParameterDefinition] = field(default_factory=list)
    header_parameters: List[ParameterDefinition] = field(default_factory=list)
    request_body: Optional[RequestBodyDefinition] = None
    responses: Dict[str, ResponseDefinition] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    security: Optional[List[Dict[str, Any]]] = None
    servers: List[Dict[str, Any]] = field(default_factory=list)
    supports_pagination: bool = False
    extensions: Dict[str, Any] = field(default_factory=dict)

    @property
    def parameters(self) -> List[ParameterDefinition]:
        return [*self.path_parameters, *self.query_parameters, *self.header_parameters]

    def response_for(self, status: int) -> Optional[ResponseDefinition]:
        """Exact status code first, then the ``NXX`` range, then ``default``."""
        exact = self.responses.get(str(status))
        if exact:
            return exact
        ranged = self.responses.get(f"{str(status)[0]}XX") or self.responses.get(f"{str(status)[0]}xx")
        if ranged:
            return ranged
        return self.responses.get("default")


@dataclass(frozen=True)
class SearchOptions:
    product: Optional[str] = None
    method: Optional[str] = None
    tags: Optional[List[str]] = None
    query: Optional[str] = None
    paginatable: Optional[bool] = None
    limit: Optional[int] = None


@dataclass(frozen=True)
class CatalogStats:
    total_operations: int
    specs_loaded: int
    operations_by_product: Dict[str, int]
    operations_by_method: Dict[str, int]
    paginatable_operations: int
    operations_with_body: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_operations": self.total_operations,
            "specs_loaded": self.specs_loaded,
            "operations_by_product": dict(self.operations_by_product),
            "operations_by_method": dict(self.operations_by_method),
            "paginatable_operations": self.paginatable_operations,
            "operations_with_body": self.operations_with_body,
        }
