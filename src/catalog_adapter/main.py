"""CLI entry point for the Catalog Adapter."""

from __future__ import annotations

import asyncio

import uvicorn

from .config import get_settings
from .logging import configure_logging
from .server import build_server

HTTP_TRANSPORTS = {"http", "streamable-http", "sse"}


async def _run() -> None:
    settings = get_settings()
    configure_logging(settings.adapter_log_level)

    mcp, app = await build_server(settings)
    transport = settings.adapter_transport.lower()

    if transport in HTTP_TRANSPORTS:
        if not app:
            raise RuntimeError(f"HTTP app unavailable for transport={transport}")
        config = uvicorn.Config(app, host=settings.adapter_host, port=settings.adapter_port)
        server = uvicorn.Server(config)
        await server.serve()
        return
    await mcp.run_stdio_async()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
