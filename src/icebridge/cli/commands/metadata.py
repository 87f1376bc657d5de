"""Commands for locating Iceberg metadata files."""

from __future__ import annotations

import typer

from icebridge.cli.common.context import AppContext, build_context
from icebridge.cli.common.exits import die, exit_from_exc
from icebridge.cli.common.options import ConfigOpt, ConnectionOpt
from icebridge.cli.common.output import out
from icebridge.core.errors import IcebridgeError
from icebridge.core.metadata import locate_latest_metadata

app = typer.Typer(
    help="Locate Iceberg metadata",
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
def latest(
    ctx: typer.Context,
    mount: str = typer.Argument(..., help="Mount name from the config"),
    table_path: str = typer.Argument(..., help="Table root relative to the mount"),
):
    """
    Print the newest metadata file under <table_path>/metadata/.
    """
    appctx: AppContext = ctx.obj
    try:
        spec = appctx.config.mount(mount)
    except KeyError:
        die(f"Mount '{mount}' is not in {appctx.config_path}", code=2)

    try:
        with out.status("Listing metadata..."):
            snapshot = locate_latest_metadata(appctx.storage(), spec.base_url, table_path)
    except ValueError as exc:
        exit_from_exc(exc, message=str(exc), code=2)
    except IcebridgeError as exc:
        exit_from_exc(exc, message=f"{type(exc).__name__}: {exc}", code=1)

    out.snapshot(snapshot)
