"""Post-registration validation of tables."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from icebridge.core.models import TableSpec, ValidationResult

logger = logging.getLogger(__name__)


class QueryAdapter(Protocol):
    """Interface for the read queries the validator runs."""

    def count_rows(self, qualified_name: str) -> int:
        ...

    def sample_rows(self, qualified_name: str, limit: int) -> list[tuple[Any, ...]]:
        ...


def validate_table(
    warehouse: QueryAdapter, spec: TableSpec, *, sample_size: int = 10
) -> ValidationResult:
    """
    Run a count and a bounded sample query against a registered table.

    Both queries must succeed for the result to be ok. A count that differs
    from ``spec.expected_rows`` (or an empty table when no expectation is
    set) is reported as a warning. Query errors are captured on the result.
    """
    if sample_size < 1:
        raise ValueError("sample_size must be >= 1")

    name = spec.qualified_name
    try:
        count = warehouse.count_rows(name)
        sample = warehouse.sample_rows(name, sample_size)
    except Exception as exc:  # noqa: BLE001
        logger.error("Validation of %s failed: %s", name, exc)
        return ValidationResult(table=name, ok=False, error=str(exc))

    warnings: list[str] = []
    if spec.expected_rows is not None and count != spec.expected_rows:
        warnings.append(f"expected {spec.expected_rows} rows, found {count}")
    elif spec.expected_rows is None and count == 0:
        warnings.append("table is empty")

    for w in warnings:
        logger.warning("%s: %s", name, w)
    logger.info("Validated %s: %d rows, %d sampled", name, count, len(sample))

    return ValidationResult(
        table=name,
        ok=True,
        row_count=count,
        sample_rows=len(sample),
        warnings=tuple(warnings),
    )


def validate_tables(
    warehouse: QueryAdapter, specs: list[TableSpec], *, sample_size: int = 10
) -> list[ValidationResult]:
    """Validate several tables; one failure does not stop the others."""
    return [validate_table(warehouse, s, sample_size=sample_size) for s in specs]
