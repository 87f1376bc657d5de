"""Application context management for the CLI."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

from icebridge.cli.common.exits import die
from icebridge.core.adapters.onelake import OneLakeStorageAdapter
from icebridge.core.adapters.snowflake import SnowflakeWarehouseAdapter
from icebridge.core.auth import get_connection, get_storage_session
from icebridge.core.config import IcebridgeConfig, load_config
from icebridge.core.errors import AuthError, ConfigError


@dataclass
class AppContext:
    """
    Loaded configuration plus lazily created warehouse and storage adapters.

    Adapters are created on first use so commands that only read the config
    never open a connection.
    """

    config_path: Path
    config: IcebridgeConfig
    _warehouse: SnowflakeWarehouseAdapter | None = field(default=None, repr=False)
    _storage: OneLakeStorageAdapter | None = field(default=None, repr=False)

    def warehouse(self) -> SnowflakeWarehouseAdapter:
        """Return the Snowflake adapter, connecting on first use."""
        if self._warehouse is None:
            try:
                connection = get_connection(self.config.warehouse)
            except AuthError as exc:
                die(str(exc), code=1)
            self._warehouse = SnowflakeWarehouseAdapter(connection)
        return self._warehouse

    def storage(self) -> OneLakeStorageAdapter:
        """Return the OneLake adapter, building its session on first use."""
        if self._storage is None:
            try:
                session = get_storage_session(self.config.storage)
            except AuthError as exc:
                die(str(exc), code=1)
            self._storage = OneLakeStorageAdapter(session, self.config.storage)
        return self._storage


def build_context(config_path: str | Path, connection_name: str | None = None) -> AppContext:
    """Load the config and return the application context (exit 2 on bad config)."""
    path = Path(config_path)
    try:
        config = load_config(path)
    except ConfigError as exc:
        die(str(exc), code=2)
    if connection_name:
        config = replace(
            config, warehouse=replace(config.warehouse, connection_name=connection_name)
        )
    return AppContext(config_path=path, config=config)
