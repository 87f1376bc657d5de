"""Configuration loading for registration runs.

A run is described by a single YAML file listing the warehouse connection,
the storage platform endpoints, the mounts and the tables to register. The
loader turns it into immutable settings objects that are passed explicitly
into every component; nothing here is global.

Secrets never live in the file. Keys ending in ``_env`` name environment
variables that hold them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from icebridge.core.errors import ConfigError
from icebridge.core.models import (
    ColumnSpec,
    MountSpec,
    ReadPath,
    ShortcutTarget,
    TableSpec,
    WritePath,
)

_PASSWORD_OVERRIDE_ENV = "ICEBRIDGE_SNOWFLAKE_PASSWORD"
_TOKEN_OVERRIDE_ENV = "ICEBRIDGE_FABRIC_TOKEN"
_GRAPH_TOKEN_OVERRIDE_ENV = "ICEBRIDGE_GRAPH_TOKEN"
_RESERVED_TABLE_DIRS = {"metadata", "data"}


@dataclass(frozen=True)
class WarehouseSettings:
    """Snowflake connection settings."""

    connection_name: str | None = None
    account: str | None = None
    user: str | None = None
    password: str | None = None
    authenticator: str | None = None
    role: str | None = None
    warehouse: str | None = None
    database: str | None = None
    schema: str | None = None


@dataclass(frozen=True)
class StorageSettings:
    """OneLake / Fabric endpoint settings."""

    workspace_id: str | None = None
    token: str | None = None
    dfs_endpoint: str = "https://onelake.dfs.fabric.microsoft.com"
    api_endpoint: str = "https://api.fabric.microsoft.com/v1"
    graph_endpoint: str = "https://graph.microsoft.com/v1.0"
    graph_token: str | None = None
    timeout: int = 30


@dataclass(frozen=True)
class ConsentSettings:
    """Polling behaviour of the consent resolver."""

    deadline_seconds: float = 900.0
    poll_interval_seconds: float = 15.0
    attempts: int = 1
    auto_grant: bool = False


@dataclass(frozen=True)
class RunSettings:
    """Knobs for a single orchestration run."""

    max_parallel: int = 4
    metadata_attempts: int = 3
    sample_size: int = 10


@dataclass(frozen=True)
class IcebridgeConfig:
    """Everything a registration run needs, passed explicitly to each stage."""

    warehouse: WarehouseSettings
    storage: StorageSettings
    mounts: tuple[MountSpec, ...]
    tables: tuple[TableSpec, ...]
    catalog_integration: str = "icebridge_object_store"
    consent: ConsentSettings = field(default_factory=ConsentSettings)
    run: RunSettings = field(default_factory=RunSettings)

    def mount(self, name: str) -> MountSpec:
        """Return the mount with the given name."""
        for m in self.mounts:
            if m.name == name:
                return m
        raise KeyError(name)

    def tables_for(self, mount_name: str) -> list[TableSpec]:
        """Return the tables stored on the given mount, in config order."""
        return [t for t in self.tables if t.mount_ref == mount_name]


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"`{key}` must be a mapping.")
    return value


def _secret(section: Mapping[str, Any], key: str, override_env: str) -> str | None:
    """Resolve a secret from an override env var, `<key>_env`, or the file."""
    if os.getenv(override_env):
        return os.getenv(override_env)
    env_name = section.get(f"{key}_env")
    if env_name:
        return os.getenv(str(env_name))
    value = section.get(key)
    return str(value) if value is not None else None


def _positive_int(section: Mapping[str, Any], key: str, default: int, where: str) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"`{where}.{key}` must be an integer.") from exc
    if value < 1:
        raise ConfigError(f"`{where}.{key}` must be >= 1.")
    return value


def _positive_float(
    section: Mapping[str, Any], key: str, default: float, where: str
) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"`{where}.{key}` must be a number.") from exc
    if value <= 0:
        raise ConfigError(f"`{where}.{key}` must be > 0.")
    return value


def _parse_warehouse(data: Mapping[str, Any]) -> WarehouseSettings:
    section = _section(data, "warehouse")
    settings = WarehouseSettings(
        connection_name=section.get("connection_name"),
        account=section.get("account"),
        user=section.get("user"),
        password=_secret(section, "password", _PASSWORD_OVERRIDE_ENV),
        authenticator=section.get("authenticator"),
        role=section.get("role"),
        warehouse=section.get("warehouse"),
        database=section.get("database"),
        schema=section.get("schema"),
    )
    if not settings.connection_name and not settings.account:
        raise ConfigError(
            "`warehouse` needs either `connection_name` or `account`."
        )
    return settings


def _parse_storage(data: Mapping[str, Any]) -> StorageSettings:
    section = _section(data, "storage")
    defaults = StorageSettings()
    return StorageSettings(
        workspace_id=section.get("workspace_id"),
        token=_secret(section, "token", _TOKEN_OVERRIDE_ENV),
        dfs_endpoint=str(section.get("dfs_endpoint", defaults.dfs_endpoint)).rstrip("/"),
        api_endpoint=str(section.get("api_endpoint", defaults.api_endpoint)).rstrip("/"),
        graph_endpoint=str(
            section.get("graph_endpoint", defaults.graph_endpoint)
        ).rstrip("/"),
        graph_token=_secret(section, "graph_token", _GRAPH_TOKEN_OVERRIDE_ENV),
        timeout=_positive_int(section, "timeout", defaults.timeout, "storage"),
    )


def _parse_mount(item: Any, index: int) -> MountSpec:
    if not isinstance(item, Mapping):
        raise ConfigError(f"`mounts[{index}]` must be a mapping.")
    missing = [k for k in ("name", "base_url", "tenant_id") if not item.get(k)]
    if missing:
        raise ConfigError(f"`mounts[{index}]` is missing: {', '.join(missing)}.")
    return MountSpec(
        name=str(item["name"]),
        provider=str(item.get("provider", "AZURE")).upper(),
        base_url=str(item["base_url"]),
        tenant_id=str(item["tenant_id"]),
        read_only=bool(item.get("read_only", False)),
    )


def normalize_table_path(path: str) -> str:
    """
    Normalize a table root path relative to a mount.

    Raises:
        ValueError: If the path is empty or points at a table's `metadata/`
                    or `data/` directory instead of the table root.
    """
    cleaned = path.strip().strip("/")
    if not cleaned:
        raise ValueError("Table path must not be empty.")
    last = cleaned.rsplit("/", 1)[-1]
    if last.lower() in _RESERVED_TABLE_DIRS:
        raise ValueError(
            f"Table path '{path}' points at the '{last}/' directory; "
            "use the table root instead."
        )
    return cleaned


def _parse_columns(raw: Any, where: str) -> tuple[ColumnSpec, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError(f"`{where}.columns` must be a list.")
    columns = []
    for col in raw:
        if not isinstance(col, Mapping) or not col.get("name") or not col.get("type"):
            raise ConfigError(f"`{where}.columns` entries need `name` and `type`.")
        columns.append(ColumnSpec(name=str(col["name"]), type=str(col["type"])))
    return tuple(columns)


def _parse_table(item: Any, index: int, mount_names: set[str]) -> TableSpec:
    where = f"tables[{index}]"
    if not isinstance(item, Mapping):
        raise ConfigError(f"`{where}` must be a mapping.")

    name = item.get("name")
    if not name or len(str(name).split(".")) != 3:
        raise ConfigError(f"`{where}.name` must be in the form `database.schema.table`.")

    mount_ref = item.get("mount")
    if mount_ref not in mount_names:
        raise ConfigError(f"`{where}.mount` references unknown mount '{mount_ref}'.")

    base_location = item.get("base_location")
    table_path = item.get("table_path")
    if bool(base_location) == bool(table_path):
        raise ConfigError(
            f"`{where}` needs exactly one of `base_location` (write path) "
            "or `table_path` (read path)."
        )

    columns = _parse_columns(item.get("columns"), where)
    try:
        if base_location:
            if not columns:
                raise ConfigError(f"`{where}` is a write-path table and needs `columns`.")
            mode = WritePath(base_location=normalize_table_path(str(base_location)))
        else:
            pinned = item.get("metadata_file_path")
            mode = ReadPath(
                table_path=normalize_table_path(str(table_path)),
                metadata_file_path=str(pinned).strip("/") if pinned else None,
            )
    except ValueError as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"`{where}`: {exc}") from exc

    shortcut = None
    raw_shortcut = item.get("shortcut")
    if raw_shortcut:
        if not base_location:
            raise ConfigError(f"`{where}.shortcut` is only supported for write-path tables.")
        if not isinstance(raw_shortcut, Mapping) or not all(
            raw_shortcut.get(k) for k in ("workspace_id", "item_id")
        ):
            raise ConfigError(f"`{where}.shortcut` needs `workspace_id` and `item_id`.")
        shortcut = ShortcutTarget(
            workspace_id=str(raw_shortcut["workspace_id"]),
            item_id=str(raw_shortcut["item_id"]),
            name=str(raw_shortcut.get("name") or str(name).split(".")[-1].lower()),
        )

    expected = item.get("expected_rows")
    return TableSpec(
        qualified_name=str(name),
        mount_ref=str(mount_ref),
        mode=mode,
        columns=columns,
        expected_rows=int(expected) if expected is not None else None,
        shortcut=shortcut,
    )


def parse_config(data: Mapping[str, Any]) -> IcebridgeConfig:
    """Build an IcebridgeConfig from an already-parsed mapping."""
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration root must be a mapping.")

    raw_mounts = data.get("mounts") or []
    if not isinstance(raw_mounts, list) or not raw_mounts:
        raise ConfigError("`mounts` must be a non-empty list.")
    mounts = tuple(_parse_mount(m, i) for i, m in enumerate(raw_mounts))
    mount_names = {m.name for m in mounts}
    if len(mount_names) != len(mounts):
        raise ConfigError("Mount names must be unique.")

    raw_tables = data.get("tables") or []
    if not isinstance(raw_tables, list):
        raise ConfigError("`tables` must be a list.")
    tables = tuple(_parse_table(t, i, mount_names) for i, t in enumerate(raw_tables))
    if len({t.qualified_name.upper() for t in tables}) != len(tables):
        raise ConfigError("Table names must be unique.")

    consent_section = _section(data, "consent")
    consent_defaults = ConsentSettings()
    run_section = _section(data, "run")
    run_defaults = RunSettings()

    return IcebridgeConfig(
        warehouse=_parse_warehouse(data),
        storage=_parse_storage(data),
        mounts=mounts,
        tables=tables,
        catalog_integration=str(
            data.get("catalog_integration") or IcebridgeConfig.catalog_integration
        ),
        consent=ConsentSettings(
            deadline_seconds=_positive_float(
                consent_section, "deadline_seconds", consent_defaults.deadline_seconds, "consent"
            ),
            poll_interval_seconds=_positive_float(
                consent_section,
                "poll_interval_seconds",
                consent_defaults.poll_interval_seconds,
                "consent",
            ),
            attempts=_positive_int(
                consent_section, "attempts", consent_defaults.attempts, "consent"
            ),
            auto_grant=bool(consent_section.get("auto_grant", False)),
        ),
        run=RunSettings(
            max_parallel=_positive_int(
                run_section, "max_parallel", run_defaults.max_parallel, "run"
            ),
            metadata_attempts=_positive_int(
                run_section, "metadata_attempts", run_defaults.metadata_attempts, "run"
            ),
            sample_size=_positive_int(
                run_section, "sample_size", run_defaults.sample_size, "run"
            ),
        ),
    )


def load_config(path: str | Path) -> IcebridgeConfig:
    """Read and validate a YAML configuration file."""
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
    return parse_config(data or {})
