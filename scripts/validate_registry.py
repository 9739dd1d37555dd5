"""Load a spec directory, compile every tool and print coverage statistics."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from collections import Counter
from pathlib import Path
from typing import Any, Dict

from catalog_adapter.config import Settings
from catalog_adapter.errors import AdapterError
from catalog_adapter.logging import configure_logging
from catalog_adapter.service import AdapterService


async def _collect(settings: Settings) -> Dict[str, Any]:
    service = AdapterService(settings)
    await service.start()

    stats = service.catalog.stats()
    generated = [tool for tool in service.tools() if tool.operation is not None]
    parameter_counts = Counter(
        len(tool.definition.input_schema.get("properties") or {}) for tool in generated
    )
    return {
        "catalog": stats.to_dict(),
        "tools_compiled": len(generated),
        "tools_missing": stats.total_operations - len(generated),
        "tools_with_required_arguments": sum(
            1 for tool in generated if tool.definition.input_schema.get("required")
        ),
        "argument_count_histogram": dict(sorted(parameter_counts.items())),
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Validate the generated tool registry")
    parser.add_argument(
        "--spec-dir",
        default=os.getenv("ADAPTER_SPEC_DIR", "specs"),
        help="Directory containing <product>/<version>/openapi.{json,yaml,yml}",
    )
    parser.add_argument(
        "--prefix",
        default=os.getenv("ADAPTER_TOOL_PREFIX", "api"),
        help="Tool name prefix (default: api)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level while loading (default: WARNING)",
    )

    args = parser.parse_args()
    spec_dir = Path(args.spec_dir).expanduser().resolve()
    if not spec_dir.is_dir():
        raise SystemExit(f"Spec directory not found: {spec_dir}")

    configure_logging(args.log_level)
    settings = Settings(adapter_spec_dir=str(spec_dir), adapter_tool_prefix=args.prefix)
    try:
        report = asyncio.run(_collect(settings))
    except AdapterError as exc:
        raise SystemExit(f"Registry validation failed: {exc.message}") from exc

    print(json.dumps(report, indent=2))
    if report["tools_missing"] or not report["tools_compiled"]:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
