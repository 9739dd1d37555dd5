"""MCP server setup for the Catalog Adapter."""

import logging
from typing import Any, Awaitable, Callable, Dict

from fastmcp import FastMCP
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from .config import Settings
from .service import AdapterService
from .tool_registry import GeneratedTool, build_input_model

logger = logging.getLogger(__name__)


async def build_server(settings: Settings) -> tuple[FastMCP, object | None]:
    service = AdapterService(settings)
    await service.start()

    mcp = FastMCP(settings.service_name, instructions=_instructions(settings))
    app = _get_http_app(mcp, settings)
    _attach_auth(app, settings)
    _attach_healthcheck(app, service)

    for tool in service.tools():
        handler = _tool_handler(service, tool)
        mcp.tool(name=tool.name, description=tool.definition.description)(handler)
        logger.debug("Registered tool: %s", tool.name)
    logger.info("Registered %s tools", len(service.tools()))

    return mcp, app


def _tool_handler(
    service: AdapterService, tool: GeneratedTool
) -> Callable[[Any], Awaitable[Dict[str, Any]]]:
    input_model = tool.input_model or build_input_model(tool.name, tool.definition.input_schema)

    async def handler(payload: input_model) -> Dict[str, Any]:  # type: ignore[valid-type]
        return await service.invoke(tool.name, payload.model_dump(by_alias=True, exclude_unset=True))

    handler.__name__ = tool.name
    return handler


def _attach_auth(app, settings: Settings) -> None:  # type: ignore[no-untyped-def]
    if not app:
        logger.warning("FastMCP app not available; auth middleware disabled")
        return

    @app.middleware("http")
    async def auth_middleware(request, call_next):  # type: ignore[no-untyped-def]
        if request.method == "OPTIONS":
            return await call_next(request)
        if request.url.path.endswith("/health"):
            return await call_next(request)

        if not settings.adapter_auth_token:
            request.state.auth = {"type": "anonymous"}
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        token = auth_header.replace("Bearer", "").strip()
        if token == settings.adapter_auth_token:
            request.state.auth = {"type": "service"}
            return await call_next(request)

        logger.warning("Rejected request with invalid token path=%s", request.url.path)
        return JSONResponse({"error": "Unauthorized"}, status_code=401)


def _attach_healthcheck(app, service: AdapterService) -> None:  # type: ignore[no-untyped-def]
    if not app:
        return

    async def healthcheck(_request):  # type: ignore[no-untyped-def]
        stats = service.catalog.stats()
        return JSONResponse(
            {
                "status": "ok",
                "operations": stats.total_operations,
                "specs_loaded": stats.specs_loaded,
                "validation": service.response_validator.health(),
            }
        )

    app.add_route("/health", healthcheck, methods=["GET"])


def _instructions(settings: Settings) -> str:
    return (
        "Catalog Adapter. "
        f"Every operation found under '{settings.adapter_spec_dir}' is exposed as a tool; "
        f"use {settings.adapter_tool_prefix}_list_operations to discover them."
    )


def _get_http_app(mcp: FastMCP, settings: Settings):  # type: ignore[no-untyped-def]
    transport = settings.adapter_transport.lower()
    if transport in ("http", "streamable-http"):
        app = mcp.http_app(transport=transport, stateless_http=True, json_response=True)
    elif transport == "sse":
        app = mcp.sse_app()
    else:
        return None
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app
