"""Iceberg table registration in the warehouse.

Two modes are supported:

- write path: the warehouse owns the table and writes data and metadata under
  ``<mount base>/<base_location>/``. Creation is guarded so that re-running
  with the same spec is a no-op, while stale metadata left behind by a
  dropped table is reported instead of silently producing a broken table.
- read path: the storage platform owns the table; the warehouse registers a
  reference to the latest metadata file discovered by the metadata locator.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Any, Mapping, Protocol

from icebridge.core.errors import (
    MetadataNotFound,
    MultipleMetadataSets,
    NoMetadataFound,
    SchemaConflict,
)
from icebridge.core.metadata import (
    DirectoryLister,
    locate_latest_metadata,
    metadata_files,
    parse_generation,
)
from icebridge.core.models import (
    ColumnSpec,
    MetadataSnapshot,
    MountSpec,
    ReadPath,
    TableDescriptor,
    TableSpec,
    WritePath,
)
from icebridge.core.paths import join_url, relative_to_base

logger = logging.getLogger(__name__)

_TYPE_FAMILIES = {
    "NUMBER": "NUMBER",
    "NUMERIC": "NUMBER",
    "DECIMAL": "NUMBER",
    "INT": "NUMBER",
    "INTEGER": "NUMBER",
    "BIGINT": "NUMBER",
    "SMALLINT": "NUMBER",
    "TINYINT": "NUMBER",
    "LONG": "NUMBER",
    "FLOAT": "FLOAT",
    "FLOAT4": "FLOAT",
    "FLOAT8": "FLOAT",
    "DOUBLE": "FLOAT",
    "REAL": "FLOAT",
    "STRING": "TEXT",
    "VARCHAR": "TEXT",
    "TEXT": "TEXT",
    "CHAR": "TEXT",
    "CHARACTER": "TEXT",
    "BINARY": "BINARY",
    "VARBINARY": "BINARY",
    "BOOLEAN": "BOOLEAN",
    "DATE": "DATE",
    "TIME": "TIME",
}


class TableAdapter(Protocol):
    """Interface for warehouse table operations."""

    def describe_table(self, qualified_name: str) -> TableDescriptor | None:
        """Return the table's descriptor, or None if it does not exist."""
        ...

    def create_iceberg_table(self, spec: TableSpec, mount: MountSpec) -> None:
        """Create a warehouse-managed Iceberg table if it does not exist."""
        ...

    def create_table_reference(
        self,
        qualified_name: str,
        volume: str,
        catalog_integration: str,
        metadata_file_path: str,
    ) -> None:
        """Create (or replace) a table pointing at an external metadata file."""
        ...

    def refresh_table_reference(self, qualified_name: str, metadata_file_path: str) -> None:
        """Re-point an existing table reference at a newer metadata file."""
        ...

    def create_catalog_integration(self, name: str) -> None:
        """Create an object-store Iceberg catalog integration if missing."""
        ...

    def get_iceberg_table_information(self, qualified_name: str) -> Mapping[str, Any]:
        """Return the warehouse's Iceberg information for a table."""
        ...


def type_family(type_name: str) -> str:
    """Reduce a column type (``VARCHAR(100)``, ``timestamp_ntz(6)``) to its family."""
    base = re.split(r"[\s(]", type_name.strip().upper(), maxsplit=1)[0]
    if base.startswith("TIMESTAMP"):
        return "TIMESTAMP"
    return _TYPE_FAMILIES.get(base, base)


def schema_conflicts(
    wanted: tuple[ColumnSpec, ...], actual: tuple[ColumnSpec, ...]
) -> list[str]:
    """Return human-readable differences between two schemas (empty if compatible)."""
    want = {c.name.upper(): type_family(c.type) for c in wanted}
    have = {c.name.upper(): type_family(c.type) for c in actual}
    problems: list[str] = []
    for name in sorted(want.keys() - have.keys()):
        problems.append(f"missing column {name}")
    for name in sorted(have.keys() - want.keys()):
        problems.append(f"unexpected column {name}")
    for name in sorted(want.keys() & have.keys()):
        if want[name] != have[name]:
            problems.append(f"column {name} is {have[name]}, expected {want[name]}")
    return problems


def _list_metadata(storage: DirectoryLister, metadata_dir: str) -> list[tuple[int, str]]:
    try:
        return metadata_files(storage.list_directory(metadata_dir))
    except NoMetadataFound:
        return []


def _lineage_count(files: list[tuple[int, str]]) -> int:
    """Number of metadata files at the lowest generation (one per table lineage)."""
    if not files:
        return 0
    first = min(g for g, _ in files)
    return sum(1 for g, _ in files if g == first)


def register_write_path(
    warehouse: TableAdapter,
    storage: DirectoryLister,
    spec: TableSpec,
    mount: MountSpec,
) -> TableDescriptor:
    """
    Create a warehouse-managed Iceberg table under the mount.

    Re-registering an existing compatible table returns its descriptor.

    Raises:
        SchemaConflict: The table exists with an incompatible schema.
        MultipleMetadataSets: Stale metadata from another table is present
                              at the base location.
    """
    if not isinstance(spec.mode, WritePath):
        raise TypeError("register_write_path requires a WritePath table spec.")
    if not spec.columns:
        raise ValueError(f"Table '{spec.qualified_name}' needs an explicit schema.")

    existing = warehouse.describe_table(spec.qualified_name)
    if existing is not None:
        problems = schema_conflicts(spec.columns, existing.columns)
        if problems:
            raise SchemaConflict(
                f"Table '{spec.qualified_name}' already exists with an incompatible "
                f"schema: {'; '.join(problems)}."
            )

    metadata_dir = join_url(mount.base_url, spec.mode.base_location, "metadata")
    files = _list_metadata(storage, metadata_dir)
    if existing is None and files:
        raise MultipleMetadataSets(
            f"'{metadata_dir}' already holds {len(files)} metadata file(s) from a "
            "previous table. Remove the directory before registering "
            f"'{spec.qualified_name}'."
        )
    if _lineage_count(files) > 1:
        raise MultipleMetadataSets(
            f"'{metadata_dir}' holds metadata from more than one table. Remove the "
            "stale files before registering again."
        )

    if existing is not None:
        logger.info("Table %s already registered; nothing to do", spec.qualified_name)
        return existing

    logger.info(
        "Creating Iceberg table %s at %s/%s",
        spec.qualified_name,
        mount.name,
        spec.mode.base_location,
    )
    warehouse.create_iceberg_table(spec, mount)
    created = warehouse.describe_table(spec.qualified_name)
    if created is None:
        return TableDescriptor(
            qualified_name=spec.qualified_name,
            columns=spec.columns,
            base_location=spec.mode.base_location,
        )
    return created


def register_table_reference(
    warehouse: TableAdapter,
    spec: TableSpec,
    snapshot: MetadataSnapshot,
    *,
    volume: str,
    catalog_integration: str,
) -> TableDescriptor:
    """
    Register a read-path table pointing at an already resolved snapshot.

    Raises:
        MetadataNotFound: The snapshot file no longer exists.
    """
    logger.info(
        "Registering %s -> %s (generation %d)",
        spec.qualified_name,
        snapshot.file_path,
        snapshot.generation_number,
    )
    warehouse.create_table_reference(
        spec.qualified_name, volume, catalog_integration, snapshot.file_path
    )
    descriptor = warehouse.describe_table(spec.qualified_name)
    if descriptor is None:
        descriptor = TableDescriptor(qualified_name=spec.qualified_name)
    return replace(descriptor, metadata_location=snapshot.file_path)


def register_read_path(
    warehouse: TableAdapter,
    storage: DirectoryLister,
    spec: TableSpec,
    mount: MountSpec,
    *,
    catalog_integration: str,
    attempts: int = 3,
) -> TableDescriptor:
    """
    Resolve the latest snapshot and register a table reference to it.

    A MetadataNotFound from the warehouse means a concurrent writer replaced
    the file between listing and registration; the directory is listed again
    and registration retried, up to ``attempts`` times.
    """
    if not isinstance(spec.mode, ReadPath):
        raise TypeError("register_read_path requires a ReadPath table spec.")
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    mode = spec.mode
    snapshot: MetadataSnapshot | None = None
    if mode.metadata_file_path:
        pinned = mode.metadata_file_path
        if "://" in pinned:
            pinned = relative_to_base(mount.base_url, pinned)
        snapshot = MetadataSnapshot(
            table_path=mode.table_path,
            generation_number=parse_generation(pinned),
            file_path=pinned,
        )

    for attempt in range(1, attempts + 1):
        if snapshot is None:
            snapshot = locate_latest_metadata(storage, mount.base_url, mode.table_path)
        try:
            return register_table_reference(
                warehouse,
                spec,
                snapshot,
                volume=mount.name,
                catalog_integration=catalog_integration,
            )
        except MetadataNotFound:
            if attempt == attempts:
                raise
            logger.warning(
                "Metadata %s vanished (attempt %d/%d); listing again",
                snapshot.file_path,
                attempt,
                attempts,
            )
            snapshot = None

    raise AssertionError("unreachable")


def refresh_table_reference(
    warehouse: TableAdapter,
    storage: DirectoryLister,
    spec: TableSpec,
    mount: MountSpec,
    *,
    attempts: int = 3,
) -> MetadataSnapshot:
    """
    Point an existing read-path table at the newest metadata file.

    Like registration, a file that vanishes before the refresh lands is
    handled by listing again, up to ``attempts`` times.
    """
    if not isinstance(spec.mode, ReadPath):
        raise TypeError("refresh_table_reference requires a ReadPath table spec.")
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        snapshot = locate_latest_metadata(storage, mount.base_url, spec.mode.table_path)
        logger.info("Refreshing %s -> %s", spec.qualified_name, snapshot.file_path)
        try:
            warehouse.refresh_table_reference(spec.qualified_name, snapshot.file_path)
            return snapshot
        except MetadataNotFound:
            if attempt == attempts:
                raise
            logger.warning(
                "Metadata %s vanished (attempt %d/%d); listing again",
                snapshot.file_path,
                attempt,
                attempts,
            )

    raise AssertionError("unreachable")


def register_table(
    warehouse: TableAdapter,
    storage: DirectoryLister,
    spec: TableSpec,
    mount: MountSpec,
    *,
    catalog_integration: str,
    metadata_attempts: int = 3,
) -> TableDescriptor:
    """Register a table in whichever mode its spec declares."""
    if isinstance(spec.mode, WritePath):
        return register_write_path(warehouse, storage, spec, mount)
    return register_read_path(
        warehouse,
        storage,
        spec,
        mount,
        catalog_integration=catalog_integration,
        attempts=metadata_attempts,
    )


def ensure_catalog_integration(warehouse: TableAdapter, name: str) -> None:
    """Create the object-store catalog integration used by read-path tables."""
    logger.info("Ensuring catalog integration %s", name)
    warehouse.create_catalog_integration(name)
