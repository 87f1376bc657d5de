"""Commands for registering and checking Iceberg tables."""

from __future__ import annotations

import threading
from dataclasses import replace

import typer
from snowflake.connector.errors import ProgrammingError

from icebridge.cli.common.context import AppContext, build_context
from icebridge.cli.common.exits import die, exit_from_exc, ok_exit, warn_exit
from icebridge.cli.common.options import (
    AutoGrantOpt,
    ConfigOpt,
    ConnectionOpt,
    DryRunOpt,
    ParallelOpt,
    YesOpt,
)
from icebridge.cli.common.output import out
from icebridge.cli.common.progress import RunProgress
from icebridge.core.errors import IcebridgeError
from icebridge.core.orchestrator import run_registration, validate_configured_tables
from icebridge.core.tables import refresh_table_reference

app = typer.Typer(
    help="Register and validate Iceberg tables",
    no_args_is_help=False,
    invoke_without_command=True,
)


@app.callback()
def _init(
    ctx: typer.Context,
    config: str = ConfigOpt,
    connection: str | None = ConnectionOpt,
):
    """Load the run configuration."""
    ctx.obj = build_context(config, connection)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


@app.command()
def plan(ctx: typer.Context):
    """
    Show the mounts and tables a run would register (no network calls).
    """
    appctx: AppContext = ctx.obj
    config = appctx.config

    out.header("Registration plan")
    out.kv(
        {
            "Config": appctx.config_path,
            "Catalog integration": config.catalog_integration,
            "Consent deadline": f"{config.consent.deadline_seconds:g}s",
            "Parallel": config.run.max_parallel,
        }
    )
    out.mounts_table(config.mounts)
    if not config.tables:
        warn_exit("No tables configured", code=0)
    out.table_specs_table(config.tables)


@app.command()
def run(
    ctx: typer.Context,
    parallel: int | None = ParallelOpt,
    auto_grant: bool = AutoGrantOpt,
    dry_run: bool = DryRunOpt,
    yes: bool = YesOpt,
):
    """
    Create volumes, wait for consent, register tables and validate them.
    """
    appctx: AppContext = ctx.obj
    config = appctx.config
    if parallel is not None and parallel < 1:
        die("--parallel must be >= 1", code=2)
    if auto_grant:
        config = replace(config, consent=replace(config.consent, auto_grant=True))

    out.header("Registration plan")
    out.mounts_table(config.mounts)
    out.table_specs_table(config.tables)

    if dry_run:
        warn_exit("Dry-run enabled: nothing was registered", code=0)

    if not yes and not out.confirm("Create the volumes and register the tables?"):
        ok_exit("Cancelled")

    warehouse = appctx.warehouse()
    storage = appctx.storage()
    cancel = threading.Event()

    try:
        with RunProgress() as progress:
            report = run_registration(
                config,
                warehouse,
                storage,
                max_parallel=parallel,
                cancel=cancel,
                progress=progress.update,
            )
    except KeyboardInterrupt:
        cancel.set()
        die("Interrupted", code=130)

    out.volumes_table(report.volumes, report.principals)
    for mount, error in report.mount_errors.items():
        out.error(f"Volume {mount}: {error}")
    out.outcomes_table(report.outcomes)

    if not report.ok:
        failed = [o for o in report.outcomes if not o.ok]
        die(f"{len(failed)} table(s) failed", code=1)

    out.success(f"Registered {len(report.outcomes)} table(s)")


@app.command()
def validate(ctx: typer.Context):
    """
    Run count and sample queries against every configured table.
    """
    appctx: AppContext = ctx.obj
    warehouse = appctx.warehouse()

    with out.status("Validating tables..."):
        results = validate_configured_tables(appctx.config, warehouse)

    out.outcomes_table(results, title="Validation")
    if any(not r.ok for r in results):
        raise typer.Exit(1)


@app.command()
def refresh(
    ctx: typer.Context,
    table: str = typer.Argument(..., help="Read-path table (database.schema.table)"),
):
    """
    Point a read-path table at the newest metadata file.
    """
    appctx: AppContext = ctx.obj
    config = appctx.config

    spec = next(
        (t for t in config.tables if t.qualified_name.upper() == table.upper()), None
    )
    if spec is None:
        die(f"Table '{table}' is not in {appctx.config_path}", code=2)
    if spec.is_write_path:
        die(f"Table '{table}' is a write-path table; nothing to refresh", code=2)

    mount = config.mount(spec.mount_ref)
    try:
        with out.status("Refreshing table..."):
            snapshot = refresh_table_reference(
                appctx.warehouse(),
                appctx.storage(),
                spec,
                mount,
                attempts=config.run.metadata_attempts,
            )
    except IcebridgeError as exc:
        exit_from_exc(exc, message=f"{type(exc).__name__}: {exc}", code=1)
    except ProgrammingError as exc:
        exit_from_exc(exc, message=f"Snowflake rejected the refresh: {exc.msg}", code=1)

    out.snapshot(snapshot)
    out.success(f"{spec.qualified_name} now at generation {snapshot.generation_number}")
