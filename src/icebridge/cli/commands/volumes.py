"""Commands for inspecting external volumes and their principals."""

from __future__ import annotations

import typer
from snowflake.connector.errors import ProgrammingError

from icebridge.cli.common.context import AppContext, build_context
from icebridge.cli.common.exits import die, exit_from_exc
from icebridge.cli.common.options import ConfigOpt, ConnectionOpt
from icebridge.cli.common.output import out
from icebridge.core.consent import required_role, role_satisfies
from icebridge.core.errors import IcebridgeError
from icebridge.core.models import AccessKind
from icebridge.core.orchestrator import workspace_for
from icebridge.core.volumes import principal_for

app = typer.Typer(
    help="Inspect external volumes",
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


@app.command("list")
def list_mounts(ctx: typer.Context):
    """
    List the configured mounts.
    """
    appctx: AppContext = ctx.obj
    out.mounts_table(appctx.config.mounts)


@app.command()
def principal(
    ctx: typer.Context,
    mount: str = typer.Argument(..., help="Mount name from the config"),
):
    """
    Show the service principal of an existing volume and its workspace access.
    """
    appctx: AppContext = ctx.obj
    config = appctx.config
    try:
        spec = config.mount(mount)
    except KeyError:
        die(f"Mount '{mount}' is not in {appctx.config_path}", code=2)

    try:
        with out.status("Describing volume..."):
            descriptor = appctx.warehouse().describe_external_volume(spec.name)
            ref = principal_for(descriptor)
        workspace = workspace_for(config, spec)
        role = required_role(spec.read_only)
        with out.status("Checking workspace access..."):
            access = appctx.storage().principal_access(workspace, ref.display_name)
    except ValueError as exc:
        exit_from_exc(exc, message=str(exc), code=2)
    except IcebridgeError as exc:
        exit_from_exc(exc, message=f"{type(exc).__name__}: {exc}", code=1)
    except ProgrammingError as exc:
        exit_from_exc(exc, message=f"Snowflake error: {exc.msg}", code=1)

    granted = access.kind is AccessKind.FOUND_WITH_ROLE and role_satisfies(access.role, role)
    out.kv(
        {
            "Volume": descriptor.name,
            "Base URL": descriptor.base_url,
            "Principal": ref.display_name,
            "Consent URL": descriptor.consent_url or "-",
            "Workspace": workspace,
            "Required role": role,
            "Current access": access.kind.value + (f" ({access.role})" if access.role else ""),
        }
    )
    if granted:
        out.success("Principal has sufficient access")
    else:
        out.warn(
            "Principal lacks access: open the consent URL, then assign "
            f"'{role}' on the workspace (or run with --auto-grant)"
        )
        raise typer.Exit(1)
