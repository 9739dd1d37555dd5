"""Audit upstream response bodies against their declared schemas."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .validation import ValidationResult, compile_schema


logger = logging.getLogger(__name__)

HEALTHY_SUCCESS_RATE = 80.0
MAX_LOGGED_ERRORS = 5


@dataclass(frozen=True)
class ValidationStats:
    total_validations: int
    successful_validations: int
    failed_validations: int
    skipped_validations: int
    errors_by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_validations": self.total_validations,
            "successful_validations": self.successful_validations,
            "failed_validations": self.failed_validations,
            "skipped_validations": self.skipped_validations,
            "errors_by_type": dict(self.errors_by_type),
        }


class ResponseValidator:
    """Validates response bodies and keeps pass/fail counters.

    A failing response is logged. In strict mode the body is withheld from
    the result (``data`` is ``None``) while the errors are kept; otherwise the
    body is returned unchanged.
    """

    def __init__(self, strict_mode: bool = False) -> None:
        self.strict_mode = strict_mode
        self.reset_stats()
        logger.info("Response validator initialized strict_mode=%s", strict_mode)

    def validate(self, body: Any, schema: Optional[Dict[str, Any]], status_code: int) -> ValidationResult:
        self._total += 1
        if not schema:
            self._skipped += 1
            logger.debug("No response schema for status=%s", status_code)
            return ValidationResult(valid=True, data=body)

        result = compile_schema(schema)(body)
        if result.valid:
            self._successful += 1
            return result

        self._failed += 1
        for issue in result.errors:
            self._errors_by_type[issue.message] += 1
        logger.warning(
            "Response validation failed status=%s total_errors=%s errors=%s",
            status_code,
            len(result.errors),
            result.error_dicts()[:MAX_LOGGED_ERRORS],
        )
        return ValidationResult(
            valid=False,
            data=None if self.strict_mode else body,
            errors=result.errors,
        )

    def stats(self) -> ValidationStats:
        return ValidationStats(
            total_validations=self._total,
            successful_validations=self._successful,
            failed_validations=self._failed,
            skipped_validations=self._skipped,
            errors_by_type=dict(self._errors_by_type),
        )

    def reset_stats(self) -> None:
        self._total = 0
        self._successful = 0
        self._failed = 0
        self._skipped = 0
        self._errors_by_type: Counter[str] = Counter()

    def health(self) -> Dict[str, Any]:
        checked = self._successful + self._failed
        if checked == 0:
            return {"healthy": True, "success_rate": 100.0, "message": "No validations performed"}
        success_rate = round(self._successful / checked * 100, 2)
        if success_rate < HEALTHY_SUCCESS_RATE:
            return {"healthy": False, "success_rate": success_rate, "message": "High validation failure rate"}
        return {"healthy": True, "success_rate": success_rate, "message": "Validation healthy"}
