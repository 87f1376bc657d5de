import pytest

from icebridge.core.errors import ProviderRejected
from icebridge.core.models import ConsentState, MountSpec, VolumeDescriptor
from icebridge.core.volumes import (
    principal_display_name,
    principal_for,
    register_volume,
    validate_mount,
)

BASE = "azure://onelake.dfs.fabric.microsoft.com/ws/lh.Lakehouse/Files/"


class _VolumeAdapter:
    def __init__(self, app_name: str | None = "FabricSnowflakeApp_1700000000"):
        self.app_name = app_name
        self.calls: list[str] = []

    def create_or_replace_external_volume(self, mount: MountSpec) -> None:
        self.calls.append(f"create:{mount.name}")

    def describe_external_volume(self, name: str) -> VolumeDescriptor:
        self.calls.append(f"describe:{name}")
        return VolumeDescriptor(
            name=name,
            provider="AZURE",
            base_url=BASE,
            multi_tenant_app_name=self.app_name,
            consent_url="https://login.microsoftonline.com/consent",
        )


def _mount(**overrides) -> MountSpec:
    values = {"name": "vol1", "provider": "AZURE", "base_url": BASE, "tenant_id": "t-1"}
    values.update(overrides)
    return MountSpec(**values)


@pytest.mark.parametrize(
    "mount",
    [
        _mount(base_url="abfss://onelake.dfs.fabric.microsoft.com/ws/lh.Lakehouse/Files/"),
        _mount(base_url="https://onelake.dfs.fabric.microsoft.com/ws/"),
        _mount(provider="S3"),
        _mount(base_url="azure:///no-host"),
    ],
)
def test_register_volume_rejects_before_calling_warehouse(mount: MountSpec):
    adapter = _VolumeAdapter()

    with pytest.raises(ProviderRejected):
        register_volume(adapter, mount)
    assert adapter.calls == []


def test_validate_mount_accepts_lowercase_provider():
    validate_mount(_mount(provider="azure"))


def test_register_volume_creates_then_describes():
    adapter = _VolumeAdapter()

    descriptor = register_volume(adapter, _mount())

    assert adapter.calls == ["create:vol1", "describe:vol1"]
    assert descriptor.multi_tenant_app_name == "FabricSnowflakeApp_1700000000"


@pytest.mark.parametrize(
    "app_name, expected",
    [
        ("FabricSnowflakeApp_1700000000", "FabricSnowflakeApp"),
        ("my_app_name_42", "my_app_name"),
        ("NoSuffix", "NoSuffix"),
        ("  Padded_7 ", "Padded"),
    ],
)
def test_principal_display_name_strips_numeric_suffix(app_name: str, expected: str):
    assert principal_display_name(app_name) == expected


def test_principal_for_starts_unknown():
    principal = principal_for(_VolumeAdapter().describe_external_volume("vol1"))

    assert principal.display_name == "FabricSnowflakeApp"
    assert principal.consent_state is ConsentState.UNKNOWN
    assert principal.history == []


def test_principal_for_requires_app_name():
    with pytest.raises(ProviderRejected, match="multi-tenant"):
        principal_for(_VolumeAdapter(app_name=None).describe_external_volume("vol1"))
