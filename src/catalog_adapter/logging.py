"""Logging helpers with redaction."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping


_SENSITIVE_KEYS = re.compile(r"(token|secret|api[_-]?key|password|authorization|cookie)", re.IGNORECASE)
REDACTED = "***REDACTED***"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def redact_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    redacted: Dict[str, Any] = {}
    for key, value in payload.items():
        if _SENSITIVE_KEYS.search(str(key)):
            redacted[key] = REDACTED
        elif isinstance(value, Mapping):
            redacted[key] = redact_payload(value)
        elif isinstance(value, list):
            redacted[key] = [redact_payload(v) if isinstance(v, Mapping) else v for v in value]
        else:
            redacted[key] = value
    return redacted


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k: (REDACTED if _SENSITIVE_KEYS.search(k) else v) for k, v in headers.items()}
