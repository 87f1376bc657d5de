"""Core domain models for cross-platform table registration.

These models describe mounts, principals, tables and metadata snapshots in a
simple form. They are intentionally free of Snowflake connector and HTTP
types so the core logic can be exercised with small stub adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Union


@dataclass(frozen=True)
class MountSpec:
    """
    A named, credentialed pointer from the warehouse to external storage.

    Attributes:
        name: External volume name in the warehouse.
        provider: Storage provider id (e.g. ``AZURE``).
        base_url: Storage base URL using the provider scheme
                  (``azure://onelake.dfs.fabric.microsoft.com/...``).
        tenant_id: Entra tenant that owns the storage location.
        read_only: When True the volume is created with writes disabled.
    """

    name: str
    provider: str
    base_url: str
    tenant_id: str
    read_only: bool = False


@dataclass(frozen=True)
class VolumeDescriptor:
    """What the warehouse reports about a created external volume."""

    name: str
    provider: str
    base_url: str
    multi_tenant_app_name: str | None = None
    consent_url: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


class ConsentState(str, Enum):
    """
    Consent state of a service principal on a storage workspace.

    Values:
        UNKNOWN: Not observed yet.
        PENDING: Observed, but without a sufficient role.
        GRANTED: The principal holds a sufficient role.
        DENIED: Explicitly denied, or the deadline elapsed while pending.
    """

    UNKNOWN = "UNKNOWN"
    PENDING = "PENDING"
    GRANTED = "GRANTED"
    DENIED = "DENIED"


@dataclass
class ServicePrincipalRef:
    """Mutable view of a service principal's consent on the storage side."""

    display_name: str
    consent_state: ConsentState = ConsentState.UNKNOWN
    history: list[ConsentState] = field(default_factory=list)

    def transition(self, state: ConsentState) -> None:
        """Move to ``state`` and record it (no-op when already there)."""
        if state == self.consent_state:
            return
        self.consent_state = state
        self.history.append(state)


class AccessKind(str, Enum):
    """Outcome of a single access-control observation."""

    NOT_FOUND = "NOT_FOUND"
    FOUND_NO_ROLE = "FOUND_NO_ROLE"
    FOUND_WITH_ROLE = "FOUND_WITH_ROLE"
    DENIED = "DENIED"


@dataclass(frozen=True)
class PrincipalAccess:
    """Result of looking up one principal in a workspace's access control."""

    kind: AccessKind
    role: str | None = None


@dataclass(frozen=True)
class ColumnSpec:
    """Column name and warehouse type for an explicit table schema."""

    name: str
    type: str


@dataclass(frozen=True)
class WritePath:
    """The warehouse writes the table under ``base_location`` of the mount."""

    base_location: str


@dataclass(frozen=True)
class ReadPath:
    """The warehouse references a table written by the storage platform."""

    table_path: str
    metadata_file_path: str | None = None


TableMode = Union[WritePath, ReadPath]


@dataclass(frozen=True)
class ShortcutTarget:
    """Lakehouse that receives a table shortcut for a write-path table."""

    workspace_id: str
    item_id: str
    name: str


@dataclass(frozen=True)
class TableSpec:
    """
    A table to register in the warehouse.

    Attributes:
        qualified_name: ``database.schema.table`` in the warehouse.
        mount_ref: Name of the MountSpec holding the table files.
        mode: WritePath or ReadPath.
        columns: Explicit schema (required for WritePath).
        expected_rows: Optional row count the Validator compares against.
        shortcut: Optional lakehouse shortcut target (WritePath only).
    """

    qualified_name: str
    mount_ref: str
    mode: TableMode
    columns: tuple[ColumnSpec, ...] = ()
    expected_rows: int | None = None
    shortcut: ShortcutTarget | None = None

    @property
    def is_write_path(self) -> bool:
        return isinstance(self.mode, WritePath)


@dataclass(frozen=True)
class MetadataSnapshot:
    """One metadata file of a table; the highest generation is authoritative."""

    table_path: str
    generation_number: int
    file_path: str


@dataclass(frozen=True)
class TableDescriptor:
    """The warehouse's view of a registered table."""

    qualified_name: str
    columns: tuple[ColumnSpec, ...] = ()
    base_location: str | None = None
    metadata_location: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    """Result of running count and sample queries against one table."""

    table: str
    ok: bool
    row_count: int | None = None
    sample_rows: int | None = None
    warnings: tuple[str, ...] = ()
    error: str | None = None


@dataclass
class TableOutcome:
    """Per-table result of an orchestration run."""

    table: str
    mount: str
    registered: bool = False
    descriptor: TableDescriptor | None = None
    shortcut_path: str | None = None
    validation: ValidationResult | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        if self.error:
            return False
        return self.validation is None or self.validation.ok


@dataclass
class RunReport:
    """Aggregate result of an orchestration run."""

    volumes: dict[str, VolumeDescriptor] = field(default_factory=dict)
    principals: dict[str, ServicePrincipalRef] = field(default_factory=dict)
    mount_errors: dict[str, str] = field(default_factory=dict)
    outcomes: list[TableOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mount_errors and all(o.ok for o in self.outcomes)
