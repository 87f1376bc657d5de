from __future__ import annotations

import json
import logging
import re
import threading
from typing import Any, Mapping

from snowflake.connector import DictCursor, SnowflakeConnection
from snowflake.connector.errors import ProgrammingError

from icebridge.core.errors import MetadataNotFound, ProviderRejected
from icebridge.core.models import ColumnSpec, MountSpec, TableDescriptor, TableSpec, VolumeDescriptor

logger = logging.getLogger(__name__)

# "SQL compilation error: Object 'X' does not exist or not authorized."
_OBJECT_DOES_NOT_EXIST = 2003

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*){0,2}$")
_METADATA_MISSING_RE = re.compile(
    r"metadata.*(not found|does not exist|no such file)|"
    r"(not found|does not exist|no such file).*metadata",
    re.I | re.S,
)
_STORAGE_REJECTED_RE = re.compile(
    r"(storage_base_url|storage_provider|invalid.*(url|provider))", re.I
)


def ident(name: str) -> str:
    """Validate an unquoted (possibly qualified) Snowflake identifier."""
    if not _IDENT_RE.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


def literal(value: str) -> str:
    """Render a single-quoted SQL string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class SnowflakeWarehouseAdapter:
    """Adapter issuing Snowflake SQL for volumes, integrations and Iceberg tables."""

    def __init__(self, connection: SnowflakeConnection) -> None:
        self.connection = connection
        # one connection, many table threads
        self._lock = threading.Lock()

    def _execute(
        self, sql: str, params: tuple[Any, ...] | None = None
    ) -> list[dict[str, Any]]:
        """Run one statement and return its rows as lower-cased dicts."""
        logger.debug("SQL: %s", sql)
        with self._lock:
            cur = self.connection.cursor(DictCursor)
            try:
                cur.execute(sql, params)
                rows = cur.fetchall()
            finally:
                cur.close()
        return [{str(k).lower(): v for k, v in row.items()} for row in rows]

    def create_or_replace_external_volume(self, mount: MountSpec) -> None:
        """Create or replace an Azure external volume for the mount."""
        sql = (
            f"CREATE OR REPLACE EXTERNAL VOLUME {ident(mount.name)}\n"
            "  STORAGE_LOCATIONS = (\n"
            "    (\n"
            f"      NAME = {literal(mount.name)}\n"
            f"      STORAGE_PROVIDER = {literal(mount.provider.upper())}\n"
            f"      STORAGE_BASE_URL = {literal(mount.base_url)}\n"
            f"      AZURE_TENANT_ID = {literal(mount.tenant_id)}\n"
            "    )\n"
            "  )\n"
            f"  ALLOW_WRITES = {'FALSE' if mount.read_only else 'TRUE'}"
        )
        try:
            self._execute(sql)
        except ProgrammingError as exc:
            if _STORAGE_REJECTED_RE.search(str(exc.msg or exc)):
                raise ProviderRejected(f"Volume '{mount.name}' rejected: {exc.msg}") from exc
            raise

    def describe_external_volume(self, name: str) -> VolumeDescriptor:
        """Return the parsed ``STORAGE_LOCATION_1`` of ``DESC EXTERNAL VOLUME``."""
        rows = self._execute(f"DESC EXTERNAL VOLUME {ident(name)}")
        location: Mapping[str, Any] = {}
        for row in rows:
            if str(row.get("property", "")).upper() == "STORAGE_LOCATION_1":
                location = json.loads(row.get("property_value") or "{}")
                break
        return VolumeDescriptor(
            name=name,
            provider=str(location.get("STORAGE_PROVIDER", "")),
            base_url=str(location.get("STORAGE_BASE_URL", "")),
            multi_tenant_app_name=location.get("AZURE_MULTI_TENANT_APP_NAME"),
            consent_url=location.get("AZURE_CONSENT_URL"),
            raw=location,
        )

    def create_catalog_integration(self, name: str) -> None:
        """Create an object-store Iceberg catalog integration if it does not exist."""
        self._execute(
            f"CREATE CATALOG INTEGRATION IF NOT EXISTS {ident(name)}\n"
            "  CATALOG_SOURCE = OBJECT_STORE\n"
            "  TABLE_FORMAT = ICEBERG\n"
            "  ENABLED = TRUE"
        )

    def create_iceberg_table(self, spec: TableSpec, mount: MountSpec) -> None:
        """Create a Snowflake-managed Iceberg table under the mount."""
        base_location = getattr(spec.mode, "base_location", None)
        if not base_location:
            raise ValueError(f"Table '{spec.qualified_name}' has no base location.")
        columns = ",\n".join(f"    {ident(c.name)} {c.type}" for c in spec.columns)
        self._execute(
            f"CREATE ICEBERG TABLE IF NOT EXISTS {ident(spec.qualified_name)} (\n"
            f"{columns}\n"
            ")\n"
            "  CATALOG = 'SNOWFLAKE'\n"
            f"  EXTERNAL_VOLUME = {literal(mount.name)}\n"
            f"  BASE_LOCATION = {literal(base_location)}"
        )

    def create_table_reference(
        self,
        qualified_name: str,
        volume: str,
        catalog_integration: str,
        metadata_file_path: str,
    ) -> None:
        """Create or replace an Iceberg table from an external metadata file."""
        sql = (
            f"CREATE OR REPLACE ICEBERG TABLE {ident(qualified_name)}\n"
            f"  EXTERNAL_VOLUME = {literal(volume)}\n"
            f"  CATALOG = {literal(catalog_integration)}\n"
            f"  METADATA_FILE_PATH = {literal(metadata_file_path)}"
        )
        try:
            self._execute(sql)
        except ProgrammingError as exc:
            if _METADATA_MISSING_RE.search(str(exc.msg or exc)):
                raise MetadataNotFound(
                    f"Metadata file '{metadata_file_path}' not found: {exc.msg}"
                ) from exc
            raise

    def refresh_table_reference(self, qualified_name: str, metadata_file_path: str) -> None:
        """Point an unmanaged Iceberg table at a newer metadata file."""
        try:
            self._execute(
                f"ALTER ICEBERG TABLE {ident(qualified_name)} REFRESH {literal(metadata_file_path)}"
            )
        except ProgrammingError as exc:
            if _METADATA_MISSING_RE.search(str(exc.msg or exc)):
                raise MetadataNotFound(
                    f"Metadata file '{metadata_file_path}' not found: {exc.msg}"
                ) from exc
            raise

    def describe_table(self, qualified_name: str) -> TableDescriptor | None:
        """Return the table's columns, or None if it does not exist."""
        try:
            rows = self._execute(f"DESC TABLE {ident(qualified_name)}")
        except ProgrammingError as exc:
            if exc.errno == _OBJECT_DOES_NOT_EXIST:
                return None
            raise
        columns = tuple(
            ColumnSpec(name=str(r["name"]), type=str(r["type"]))
            for r in rows
            if str(r.get("kind", "COLUMN")).upper() == "COLUMN"
        )
        return TableDescriptor(qualified_name=qualified_name, columns=columns)

    def get_iceberg_table_information(self, qualified_name: str) -> Mapping[str, Any]:
        """Return the parsed ``SYSTEM$GET_ICEBERG_TABLE_INFORMATION`` JSON."""
        rows = self._execute(
            "SELECT SYSTEM$GET_ICEBERG_TABLE_INFORMATION(%s) AS info",
            (ident(qualified_name),),
        )
        if not rows or not rows[0].get("info"):
            return {}
        return json.loads(rows[0]["info"])

    def count_rows(self, qualified_name: str) -> int:
        rows = self._execute(f"SELECT COUNT(*) AS n FROM {ident(qualified_name)}")
        return int(rows[0]["n"])

    def sample_rows(self, qualified_name: str, limit: int) -> list[tuple[Any, ...]]:
        rows = self._execute(
            f"SELECT * FROM {ident(qualified_name)} LIMIT {int(limit)}"
        )
        return [tuple(r.values()) for r in rows]
