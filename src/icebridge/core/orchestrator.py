"""End-to-end registration run.

The orchestrator drives the stages for every configured mount and table:

  volume -> consent (once per mount) -> table -> shortcut -> validation

Mount-level stages run sequentially because consent is shared by every table
on the mount. Once a mount is granted its tables are independent and are
processed in parallel with a bounded thread pool. A failing table is
recorded on its outcome and never stops the other tables.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Protocol

from icebridge.core.config import IcebridgeConfig
from icebridge.core.consent import (
    AccessControlAdapter,
    ConsentCache,
    required_role,
    resolve_consent,
    resolve_with_retries,
)
from icebridge.core.metadata import DirectoryLister
from icebridge.core.models import (
    MountSpec,
    RunReport,
    ServicePrincipalRef,
    TableOutcome,
    TableSpec,
)
from icebridge.core.paths import parse_storage_url
from icebridge.core.shortcuts import IcebergInfoAdapter, ShortcutAdapter, register_shortcut
from icebridge.core.tables import TableAdapter, ensure_catalog_integration, register_table
from icebridge.core.validate import QueryAdapter, validate_table
from icebridge.core.volumes import VolumeAdapter, principal_for, register_volume

logger = logging.getLogger(__name__)

ProgressFn = Callable[[str, str], None]


class WarehouseAdapter(VolumeAdapter, TableAdapter, QueryAdapter, IcebergInfoAdapter, Protocol):
    """Everything the orchestrator needs from the warehouse."""


class StorageAdapter(DirectoryLister, AccessControlAdapter, ShortcutAdapter, Protocol):
    """Everything the orchestrator needs from the storage platform."""


def _noop(subject: str, message: str) -> None:
    return None


def workspace_for(config: IcebridgeConfig, mount: MountSpec) -> str:
    """Workspace whose access control gates the mount."""
    if config.storage.workspace_id:
        return config.storage.workspace_id
    return parse_storage_url(mount.base_url).workspace


def _failed(spec: TableSpec, exc: BaseException) -> TableOutcome:
    return TableOutcome(
        table=spec.qualified_name,
        mount=spec.mount_ref,
        error=str(exc),
        error_type=type(exc).__name__,
    )


def prepare_mount(
    config: IcebridgeConfig,
    warehouse: VolumeAdapter,
    storage: AccessControlAdapter,
    mount: MountSpec,
    report: RunReport,
    *,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    progress: ProgressFn = _noop,
) -> ServicePrincipalRef:
    """Register a mount's volume and wait until its principal is granted."""
    progress(mount.name, "creating external volume")
    descriptor = register_volume(warehouse, mount)
    report.volumes[mount.name] = descriptor

    principal = principal_for(descriptor)
    report.principals[mount.name] = principal
    workspace = workspace_for(config, mount)
    role = required_role(mount.read_only)
    waiting = f"waiting for {principal.display_name} ({role})"
    if descriptor.consent_url:
        waiting = f"{waiting}, consent at {descriptor.consent_url}"
    progress(mount.name, waiting)

    def _resolve() -> ServicePrincipalRef:
        return resolve_consent(
            storage,
            principal,
            workspace,
            role=role,
            deadline_seconds=config.consent.deadline_seconds,
            poll_interval=config.consent.poll_interval_seconds,
            cancel=cancel,
            auto_grant=config.consent.auto_grant,
            clock=clock,
            sleep=sleep,
        )

    return resolve_with_retries(_resolve, principal, config.consent.attempts)


def process_table(
    config: IcebridgeConfig,
    warehouse: WarehouseAdapter,
    storage: StorageAdapter,
    spec: TableSpec,
    *,
    progress: ProgressFn = _noop,
) -> TableOutcome:
    """Register, optionally shortcut, and validate one table."""
    mount = config.mount(spec.mount_ref)
    outcome = TableOutcome(table=spec.qualified_name, mount=mount.name)
    try:
        progress(spec.qualified_name, "registering")
        outcome.descriptor = register_table(
            warehouse,
            storage,
            spec,
            mount,
            catalog_integration=config.catalog_integration,
            metadata_attempts=config.run.metadata_attempts,
        )
        outcome.registered = True

        if spec.shortcut is not None:
            progress(spec.qualified_name, "creating shortcut")
            outcome.shortcut_path = register_shortcut(warehouse, storage, spec, mount)
    except Exception as e:  # noqa: BLE001
        logger.error("Table %s failed: %s", spec.qualified_name, e)
        outcome.error = str(e)
        outcome.error_type = type(e).__name__
        progress(spec.qualified_name, "failed")
        return outcome

    progress(spec.qualified_name, "validating")
    outcome.validation = validate_table(
        warehouse, spec, sample_size=config.run.sample_size
    )
    progress(spec.qualified_name, "done" if outcome.ok else "failed")
    return outcome


def run_registration(
    config: IcebridgeConfig,
    warehouse: WarehouseAdapter,
    storage: StorageAdapter,
    *,
    max_parallel: int | None = None,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    progress: ProgressFn = _noop,
) -> RunReport:
    """
    Run every stage for every configured mount and table.

    Args:
        config: Loaded run configuration.
        warehouse: Warehouse adapter.
        storage: Storage platform adapter.
        max_parallel: Overrides ``config.run.max_parallel``.
        cancel: Optional event that stops consent polling early. It is set
                when the run is interrupted.
        clock: Monotonic clock used by consent polling.
        sleep: Sleep used by consent polling when no ``cancel`` is given.
        progress: Callback receiving (subject, message) updates.

    Returns:
        A RunReport with one outcome per configured table, in config order.
    """
    parallel = max_parallel if max_parallel is not None else config.run.max_parallel
    if parallel < 1:
        raise ValueError("max_parallel must be >= 1")

    report = RunReport()
    cache = ConsentCache()
    outcomes: dict[str, TableOutcome] = {}

    integration_error: Exception | None = None
    if any(not t.is_write_path for t in config.tables):
        try:
            progress(config.catalog_integration, "ensuring catalog integration")
            ensure_catalog_integration(warehouse, config.catalog_integration)
        except Exception as e:  # noqa: BLE001
            logger.error("Catalog integration %s failed: %s", config.catalog_integration, e)
            integration_error = e

    ready: list[TableSpec] = []
    for mount in config.mounts:
        tables = config.tables_for(mount.name)
        try:
            cache.get_or_resolve(
                mount.name,
                lambda m=mount: prepare_mount(
                    config,
                    warehouse,
                    storage,
                    m,
                    report,
                    cancel=cancel,
                    clock=clock,
                    sleep=sleep,
                    progress=progress,
                ),
            )
        except Exception as e:  # noqa: BLE001
            logger.error("Mount %s failed: %s", mount.name, e)
            report.mount_errors[mount.name] = f"{type(e).__name__}: {e}"
            progress(mount.name, "failed")
            for spec in tables:
                outcomes[spec.qualified_name] = _failed(spec, e)
            continue

        progress(mount.name, "granted")
        for spec in tables:
            if integration_error is not None and not spec.is_write_path:
                outcomes[spec.qualified_name] = _failed(spec, integration_error)
            else:
                ready.append(spec)

    if ready:
        pool = ThreadPoolExecutor(max_workers=parallel)
        try:
            futures = [
                pool.submit(process_table, config, warehouse, storage, spec, progress=progress)
                for spec in ready
            ]
            for f in as_completed(futures):
                outcome = f.result()
                outcomes[outcome.table] = outcome
        except BaseException:
            # Tables not yet started are dropped; statements already in flight finish.
            if cancel is not None:
                cancel.set()
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        pool.shutdown()

    report.outcomes = [outcomes[t.qualified_name] for t in config.tables]
    return report


def validate_configured_tables(
    config: IcebridgeConfig, warehouse: QueryAdapter
) -> list[TableOutcome]:
    """Run only the validator against every configured table."""
    results: list[TableOutcome] = []
    for spec in config.tables:
        outcome = TableOutcome(table=spec.qualified_name, mount=spec.mount_ref)
        outcome.validation = validate_table(
            warehouse, spec, sample_size=config.run.sample_size
        )
        results.append(outcome)
    return results
