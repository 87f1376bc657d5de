"""Lakehouse shortcuts for warehouse-written Iceberg tables.

Once the warehouse has written a table into the lakehouse's ``Files`` area,
a shortcut under the target lakehouse's ``Tables`` area makes it visible to
the platform's own engines. The shortcut must point at the table root (the
directory holding ``metadata/`` and ``data/``), which is derived from the
metadata location the warehouse reports.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from icebridge.core.models import MountSpec, ShortcutTarget, TableSpec
from icebridge.core.paths import join_url, parse_storage_url, table_root_from_metadata_location

logger = logging.getLogger(__name__)


class IcebergInfoAdapter(Protocol):
    """Interface for reading a table's Iceberg information from the warehouse."""

    def get_iceberg_table_information(self, qualified_name: str) -> Mapping[str, Any]:
        ...


class ShortcutAdapter(Protocol):
    """Interface for creating shortcuts on the storage platform."""

    def create_shortcut(
        self,
        target: ShortcutTarget,
        *,
        source_workspace: str,
        source_item: str,
        source_path: str,
    ) -> str:
        """Create (or overwrite) a table shortcut and return its path."""
        ...


def table_root_location(
    warehouse: IcebergInfoAdapter, spec: TableSpec, mount: MountSpec
) -> str:
    """Return the absolute storage URL of a registered table's root."""
    info = warehouse.get_iceberg_table_information(spec.qualified_name)
    location = info.get("metadataLocation")
    if not location:
        raise ValueError(
            f"Warehouse reported no metadataLocation for '{spec.qualified_name}'."
        )
    if "://" not in location:
        location = join_url(mount.base_url, location)
    return table_root_from_metadata_location(location)


def register_shortcut(
    warehouse: IcebergInfoAdapter,
    storage: ShortcutAdapter,
    spec: TableSpec,
    mount: MountSpec,
) -> str:
    """
    Create the lakehouse shortcut configured for a write-path table.

    Returns:
        The shortcut path reported by the storage platform.
    """
    if spec.shortcut is None:
        raise ValueError(f"Table '{spec.qualified_name}' has no shortcut target.")

    root = parse_storage_url(table_root_location(warehouse, spec, mount))
    item, _, item_path = root.path.partition("/")
    if not item or not item_path:
        raise ValueError(f"Cannot derive a lakehouse item from '{root.path}'.")

    logger.info(
        "Creating shortcut %s/Tables/%s -> %s/%s/%s",
        spec.shortcut.item_id,
        spec.shortcut.name,
        root.workspace,
        item,
        item_path,
    )
    return storage.create_shortcut(
        spec.shortcut,
        source_workspace=root.workspace,
        source_item=item,
        source_path=item_path,
    )
