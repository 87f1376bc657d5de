import pytest

from icebridge.core.errors import (
    MetadataNotFound,
    MultipleMetadataSets,
    NoMetadataFound,
    SchemaConflict,
)
from icebridge.core.models import (
    ColumnSpec,
    MountSpec,
    ReadPath,
    TableDescriptor,
    TableSpec,
    WritePath,
)
from icebridge.core.tables import (
    ensure_catalog_integration,
    refresh_table_reference,
    register_read_path,
    register_table,
    register_write_path,
    schema_conflicts,
    type_family,
)

BASE = "azure://onelake.dfs.fabric.microsoft.com/ws/lh.Lakehouse/Files/"
MOUNT = MountSpec(name="vol1", provider="AZURE", base_url=BASE, tenant_id="t-1")
COLUMNS = (ColumnSpec("ID", "INT"), ColumnSpec("NAME", "STRING"))


class _Warehouse:
    """In-memory warehouse: tables appear once created."""

    def __init__(self, tables: dict[str, TableDescriptor] | None = None):
        self.tables = dict(tables or {})
        self.calls: list[str] = []
        self.missing_metadata: set[str] = set()

    def describe_table(self, qualified_name: str) -> TableDescriptor | None:
        self.calls.append(f"describe:{qualified_name}")
        return self.tables.get(qualified_name)

    def create_iceberg_table(self, spec: TableSpec, mount: MountSpec) -> None:
        self.calls.append(f"create:{spec.qualified_name}")
        self.tables[spec.qualified_name] = TableDescriptor(
            qualified_name=spec.qualified_name,
            columns=(ColumnSpec("ID", "NUMBER(38,0)"), ColumnSpec("NAME", "VARCHAR(16777216)")),
        )

    def create_table_reference(self, qualified_name, volume, catalog_integration, metadata_file_path):
        self.calls.append(f"reference:{qualified_name}:{volume}:{catalog_integration}:{metadata_file_path}")
        if metadata_file_path in self.missing_metadata:
            raise MetadataNotFound(metadata_file_path)
        self.tables[qualified_name] = TableDescriptor(qualified_name=qualified_name)

    def refresh_table_reference(self, qualified_name: str, metadata_file_path: str) -> None:
        self.calls.append(f"refresh:{qualified_name}:{metadata_file_path}")
        if metadata_file_path in self.missing_metadata:
            raise MetadataNotFound(metadata_file_path)

    def create_catalog_integration(self, name: str) -> None:
        self.calls.append(f"integration:{name}")

    def get_iceberg_table_information(self, qualified_name: str):
        return {}


class _Storage:
    """Maps directory URLs to listings; unknown directories do not exist."""

    def __init__(self, listings: dict[str, list[list[str]]] | None = None):
        self.listings = {k: list(v) for k, v in (listings or {}).items()}
        self.urls: list[str] = []

    def list_directory(self, url: str) -> list[str]:
        self.urls.append(url)
        pages = self.listings.get(url)
        if not pages:
            raise NoMetadataFound(url)
        return pages.pop(0) if len(pages) > 1 else pages[0]


def _write_spec(**overrides) -> TableSpec:
    values = {
        "qualified_name": "DB.PUBLIC.USERS",
        "mount_ref": "vol1",
        "mode": WritePath(base_location="users"),
        "columns": COLUMNS,
    }
    values.update(overrides)
    return TableSpec(**values)


def _read_spec(**overrides) -> TableSpec:
    values = {
        "qualified_name": "DB.PUBLIC.EVENTS",
        "mount_ref": "vol1",
        "mode": ReadPath(table_path="Tables/events"),
    }
    values.update(overrides)
    return TableSpec(**values)


USERS_METADATA = BASE + "users/metadata"
EVENTS_METADATA = BASE + "Tables/events/metadata"


@pytest.mark.parametrize(
    "type_name, family",
    [
        ("INT", "NUMBER"),
        ("NUMBER(38,0)", "NUMBER"),
        ("string", "TEXT"),
        ("VARCHAR(16777216)", "TEXT"),
        ("TIMESTAMP_NTZ(6)", "TIMESTAMP"),
        ("DOUBLE", "FLOAT"),
        ("VARIANT", "VARIANT"),
    ],
)
def test_type_family(type_name: str, family: str):
    assert type_family(type_name) == family


def test_schema_conflicts_reports_each_difference():
    wanted = (ColumnSpec("ID", "INT"), ColumnSpec("NAME", "STRING"))
    actual = (ColumnSpec("id", "VARCHAR"), ColumnSpec("EXTRA", "INT"))

    assert schema_conflicts(wanted, actual) == [
        "missing column NAME",
        "unexpected column EXTRA",
        "column ID is TEXT, expected NUMBER",
    ]


def test_register_write_path_creates_new_table():
    warehouse = _Warehouse()

    descriptor = register_write_path(warehouse, _Storage(), _write_spec(), MOUNT)

    assert "create:DB.PUBLIC.USERS" in warehouse.calls
    assert [c.name for c in descriptor.columns] == ["ID", "NAME"]


def test_register_write_path_is_idempotent():
    warehouse = _Warehouse()
    storage = _Storage({USERS_METADATA: [["00001-a.metadata.json", "00002-b.metadata.json"]]})

    register_write_path(warehouse, _Storage(), _write_spec(), MOUNT)
    again = register_write_path(warehouse, storage, _write_spec(), MOUNT)

    assert warehouse.calls.count("create:DB.PUBLIC.USERS") == 1
    assert again == warehouse.tables["DB.PUBLIC.USERS"]


def test_register_write_path_schema_conflict():
    existing = TableDescriptor("DB.PUBLIC.USERS", columns=(ColumnSpec("ID", "VARCHAR"),))
    warehouse = _Warehouse({"DB.PUBLIC.USERS": existing})

    with pytest.raises(SchemaConflict, match="ID"):
        register_write_path(warehouse, _Storage(), _write_spec(), MOUNT)
    assert not any(c.startswith("create:") for c in warehouse.calls)


def test_register_write_path_stale_metadata_without_table():
    storage = _Storage({USERS_METADATA: [["00001-old.metadata.json", "00002-old.metadata.json"]]})
    warehouse = _Warehouse()

    with pytest.raises(MultipleMetadataSets, match="previous table"):
        register_write_path(warehouse, storage, _write_spec(), MOUNT)
    assert not any(c.startswith("create:") for c in warehouse.calls)


def test_register_write_path_two_lineages_for_existing_table():
    existing = TableDescriptor("DB.PUBLIC.USERS", columns=COLUMNS)
    warehouse = _Warehouse({"DB.PUBLIC.USERS": existing})
    storage = _Storage(
        {USERS_METADATA: [["00001-a.metadata.json", "00001-b.metadata.json", "00002-a.metadata.json"]]}
    )

    with pytest.raises(MultipleMetadataSets, match="more than one table"):
        register_write_path(warehouse, storage, _write_spec(), MOUNT)


def test_register_write_path_requires_columns():
    with pytest.raises(ValueError, match="schema"):
        register_write_path(_Warehouse(), _Storage(), _write_spec(columns=()), MOUNT)


def test_register_read_path_uses_latest_metadata():
    warehouse = _Warehouse()
    storage = _Storage({EVENTS_METADATA: [["00001-a.metadata.json", "00003-c.metadata.json"]]})

    descriptor = register_read_path(
        warehouse, storage, _read_spec(), MOUNT, catalog_integration="cat"
    )

    assert (
        "reference:DB.PUBLIC.EVENTS:vol1:cat:Tables/events/metadata/00003-c.metadata.json"
        in warehouse.calls
    )
    assert descriptor.metadata_location == "Tables/events/metadata/00003-c.metadata.json"


def test_register_read_path_relists_when_metadata_vanishes():
    warehouse = _Warehouse()
    warehouse.missing_metadata = {"Tables/events/metadata/00003-c.metadata.json"}
    storage = _Storage(
        {
            EVENTS_METADATA: [
                ["00003-c.metadata.json"],
                ["00003-c.metadata.json", "00004-d.metadata.json"],
            ]
        }
    )

    descriptor = register_read_path(
        warehouse, storage, _read_spec(), MOUNT, catalog_integration="cat"
    )

    assert storage.urls == [EVENTS_METADATA, EVENTS_METADATA]
    assert descriptor.metadata_location == "Tables/events/metadata/00004-d.metadata.json"


def test_register_read_path_gives_up_after_attempts():
    warehouse = _Warehouse()
    warehouse.missing_metadata = {"Tables/events/metadata/00003-c.metadata.json"}
    storage = _Storage({EVENTS_METADATA: [["00003-c.metadata.json"]]})

    with pytest.raises(MetadataNotFound):
        register_read_path(
            warehouse, storage, _read_spec(), MOUNT, catalog_integration="cat", attempts=2
        )
    assert len(storage.urls) == 2


def test_register_read_path_without_metadata_raises_no_metadata_found():
    with pytest.raises(NoMetadataFound):
        register_read_path(_Warehouse(), _Storage(), _read_spec(), MOUNT, catalog_integration="cat")


def test_register_read_path_uses_pinned_metadata_without_listing():
    pinned = BASE + "Tables/events/metadata/00002-b.metadata.json"
    spec = _read_spec(mode=ReadPath(table_path="Tables/events", metadata_file_path=pinned))
    warehouse = _Warehouse()
    storage = _Storage()

    descriptor = register_read_path(warehouse, storage, spec, MOUNT, catalog_integration="cat")

    assert storage.urls == []
    assert descriptor.metadata_location == "Tables/events/metadata/00002-b.metadata.json"


def test_register_read_path_accepts_pinned_abfss_metadata():
    pinned = (
        "abfss://ws@onelake.dfs.fabric.microsoft.com/"
        "lh.Lakehouse/Files/Tables/events/metadata/00003-x.metadata.json"
    )
    spec = _read_spec(mode=ReadPath(table_path="Tables/events", metadata_file_path=pinned))
    storage = _Storage()

    descriptor = register_read_path(_Warehouse(), storage, spec, MOUNT, catalog_integration="cat")

    assert storage.urls == []
    assert descriptor.metadata_location == "Tables/events/metadata/00003-x.metadata.json"


def test_refresh_table_reference_points_at_newest_file():
    warehouse = _Warehouse()
    storage = _Storage({EVENTS_METADATA: [["00004-d.metadata.json", "00005-e.metadata.json"]]})

    snapshot = refresh_table_reference(warehouse, storage, _read_spec(), MOUNT)

    assert snapshot.generation_number == 5
    assert warehouse.calls == [
        "refresh:DB.PUBLIC.EVENTS:Tables/events/metadata/00005-e.metadata.json"
    ]


def test_refresh_table_reference_relists_when_metadata_vanishes():
    warehouse = _Warehouse()
    warehouse.missing_metadata = {"Tables/events/metadata/00004-d.metadata.json"}
    storage = _Storage(
        {
            EVENTS_METADATA: [
                ["00004-d.metadata.json"],
                ["00004-d.metadata.json", "00005-e.metadata.json"],
            ]
        }
    )

    snapshot = refresh_table_reference(warehouse, storage, _read_spec(), MOUNT)

    assert storage.urls == [EVENTS_METADATA, EVENTS_METADATA]
    assert snapshot.generation_number == 5
    assert warehouse.calls[-1] == "refresh:DB.PUBLIC.EVENTS:Tables/events/metadata/00005-e.metadata.json"


def test_refresh_table_reference_gives_up_after_attempts():
    warehouse = _Warehouse()
    warehouse.missing_metadata = {"Tables/events/metadata/00004-d.metadata.json"}
    storage = _Storage({EVENTS_METADATA: [["00004-d.metadata.json"]]})

    with pytest.raises(MetadataNotFound):
        refresh_table_reference(warehouse, storage, _read_spec(), MOUNT, attempts=2)
    assert len(storage.urls) == 2


def test_refresh_table_reference_rejects_write_path():
    with pytest.raises(TypeError):
        refresh_table_reference(_Warehouse(), _Storage(), _write_spec(), MOUNT)


def test_register_table_dispatches_on_mode():
    warehouse = _Warehouse()
    storage = _Storage({EVENTS_METADATA: [["00001-a.metadata.json"]]})

    register_table(warehouse, storage, _write_spec(), MOUNT, catalog_integration="cat")
    register_table(warehouse, storage, _read_spec(), MOUNT, catalog_integration="cat")

    assert "create:DB.PUBLIC.USERS" in warehouse.calls
    assert any(c.startswith("reference:DB.PUBLIC.EVENTS") for c in warehouse.calls)


def test_ensure_catalog_integration():
    warehouse = _Warehouse()

    ensure_catalog_integration(warehouse, "cat")

    assert warehouse.calls == ["integration:cat"]
