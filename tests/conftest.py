import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import yaml

from catalog_adapter.client import HttpResponse, PreparedRequest, RateLimitInfo
from catalog_adapter.config import Settings


PETSTORE: Dict[str, Any] = {
    "openapi": "3.0.0",
    "info": {"title": "Pets", "version": "1.0.0"},
    "servers": [{"url": "https://api.example.com/pets-api/v1"}],
    "paths": {
        "/pets": {
            "get": {
                "operationId": "listPets",
                "summary": "List pets",
                "tags": ["pets"],
                "parameters": [
                    {"name": "limit", "in": "query", "schema": {"type": "integer", "minimum": 1}},
                    {"name": "cursor", "in": "query", "schema": {"type": "string"}},
                ],
                "responses": {
                    "200": {
                        "description": "ok",
                        "content": {
                            "application/json": {"schema": {"$ref": "#/components/schemas/PetPage"}}
                        },
                    }
                },
            },
            "post": {
                "operationId": "createPet",
                "summary": "Create a pet",
                "tags": ["pets"],
                "requestBody": {
                    "required": True,
                    "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}},
                },
                "responses": {"201": {"description": "created"}},
            },
        },
        "/pets/{petId}": {
            "parameters": [{"name": "petId", "in": "path", "schema": {"type": "string"}}],
            "get": {
                "operationId": "getPet",
                "summary": "Get a pet",
                "parameters": [
                    {"name": "If-None-Match", "in": "header", "schema": {"type": "string"}},
                    {"name": "Authorization", "in": "header", "schema": {"type": "string"}},
                ],
                "responses": {
                    "200": {
                        "description": "ok",
                        "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Pet"}}},
                    },
                    "4XX": {
                        "description": "client error",
                        "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Problem"}}},
                    },
                },
            },
            "delete": {
                "responses": {"204": {"description": "deleted"}},
            },
        },
    },
    "components": {
        "schemas": {
            "Pet": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string", "minLength": 1},
                    "age": {"type": "integer", "nullable": True},
                },
            },
            "PetPage": {
                "type": "object",
                "properties": {
                    "items": {"type": "array", "items": {"$ref": "#/components/schemas/Pet"}},
                    "nextCursor": {"type": "string"},
                    "hasMore": {"type": "boolean"},
                },
            },
            "Problem": {
                "type": "object",
                "properties": {"detail": {"type": "string"}},
            },
        }
    },
}

INVENTORY_YAML: Dict[str, Any] = {
    "openapi": "3.0.0",
    "info": {"title": "Inventory", "version": "2"},
    "paths": {
        "/stock/{sku}": {
            "get": {
                "operationId": "getStock",
                "parameters": [{"name": "sku", "in": "path", "required": True, "schema": {"type": "string"}}],
                "responses": {
                    "200": {
                        "description": "ok",
                        "content": {
                            "application/json": {"schema": {"$ref": "schemas.yaml#/Stock"}}
                        },
                    }
                },
            }
        }
    },
}

INVENTORY_SCHEMAS: Dict[str, Any] = {
    "Stock": {
        "type": "object",
        "properties": {"sku": {"type": "string"}, "count": {"type": "integer"}},
    }
}


def write_json(path: Path, document: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def write_yaml(path: Path, document: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(document), encoding="utf-8")
    return path


@pytest.fixture
def spec_dir(tmp_path: Path) -> Path:
    root = tmp_path / "specs"
    write_json(root / "pet-store" / "v1" / "openapi.json", PETSTORE)
    write_yaml(root / "inventory" / "v2" / "openapi.yaml", INVENTORY_YAML)
    write_yaml(root / "inventory" / "v2" / "schemas.yaml", INVENTORY_SCHEMAS)
    return root


@pytest.fixture
def settings(spec_dir: Path) -> Settings:
    return Settings(
        adapter_spec_dir=str(spec_dir),
        adapter_tool_prefix="api",
        upstream_base_url="https://api.example.com",
        adapter_max_retries=2,
        adapter_retry_delay_ms=100,
    )


class FakeClient:
    """Scripted ``AuthenticatedClient``: each send pops the next outcome."""

    def __init__(self, outcomes: Optional[List[Any]] = None) -> None:
        self.outcomes = list(outcomes or [])
        self.requests: List[PreparedRequest] = []

    async def send(self, request: PreparedRequest) -> HttpResponse:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def extract_rate_limit(self, headers):  # type: ignore[no-untyped-def]
        if "x-ratelimit-remaining" not in headers:
            return None
        return RateLimitInfo(remaining=int(headers["x-ratelimit-remaining"]))


def ok(body: Any, status: int = 200, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    return HttpResponse(status=status, headers=headers or {}, body=body)


@pytest.fixture
def no_sleep(monkeypatch):  # type: ignore[no-untyped-def]
    """Record asyncio.sleep calls in the retry and limiter modules without waiting."""
    delays: List[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    monkeypatch.setattr("catalog_adapter.retry.asyncio.sleep", fake_sleep)
    return delays
