import pytest

from icebridge.core.models import ColumnSpec, MountSpec, ShortcutTarget, TableSpec, WritePath
from icebridge.core.shortcuts import register_shortcut, table_root_location

BASE = "azure://onelake.dfs.fabric.microsoft.com/ws/lh.Lakehouse/Files/"
MOUNT = MountSpec(name="vol1", provider="AZURE", base_url=BASE, tenant_id="t-1")
TARGET = ShortcutTarget(workspace_id="target-ws", item_id="target-lh", name="users")


class _Info:
    def __init__(self, info):
        self.info = info

    def get_iceberg_table_information(self, qualified_name: str):
        return self.info


class _Shortcuts:
    def __init__(self):
        self.calls: list[dict] = []

    def create_shortcut(self, target, *, source_workspace, source_item, source_path) -> str:
        self.calls.append(
            {
                "target": target,
                "workspace": source_workspace,
                "item": source_item,
                "path": source_path,
            }
        )
        return f"Tables/{target.name}"


def _spec(shortcut: ShortcutTarget | None = TARGET) -> TableSpec:
    return TableSpec(
        qualified_name="DB.PUBLIC.USERS",
        mount_ref="vol1",
        mode=WritePath(base_location="users"),
        columns=(ColumnSpec("ID", "INT"),),
        shortcut=shortcut,
    )


def test_table_root_location_joins_relative_metadata_location():
    info = _Info({"status": "success", "metadataLocation": "users.x1/metadata/00001-a.metadata.json"})

    assert table_root_location(info, _spec(), MOUNT) == BASE + "users.x1"


def test_table_root_location_accepts_absolute_location():
    location = "azure://onelake.dfs.fabric.microsoft.com/ws/other.Lakehouse/Files/u/metadata/v1.metadata.json"

    root = table_root_location(_Info({"metadataLocation": location}), _spec(), MOUNT)

    assert root == "azure://onelake.dfs.fabric.microsoft.com/ws/other.Lakehouse/Files/u"


def test_table_root_location_requires_metadata_location():
    with pytest.raises(ValueError, match="metadataLocation"):
        table_root_location(_Info({"status": "failure"}), _spec(), MOUNT)


def test_register_shortcut_points_at_table_root():
    storage = _Shortcuts()
    info = _Info({"metadataLocation": "users/metadata/00002-b.metadata.json"})

    path = register_shortcut(info, storage, _spec(), MOUNT)

    assert path == "Tables/users"
    assert storage.calls == [
        {
            "target": TARGET,
            "workspace": "ws",
            "item": "lh.Lakehouse",
            "path": "Files/users",
        }
    ]


def test_register_shortcut_requires_target():
    with pytest.raises(ValueError, match="shortcut"):
        register_shortcut(_Info({}), _Shortcuts(), _spec(shortcut=None), MOUNT)
