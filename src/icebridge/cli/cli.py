"""CLI application for Iceberg table registration."""

import typer

from icebridge.cli.commands.metadata import app as metadata_app
from icebridge.cli.commands.tables import app as tables_app
from icebridge.cli.commands.volumes import app as volumes_app
from icebridge.cli.common.logs import configure_logging
from icebridge.cli.common.options import VerboseOpt

app = typer.Typer(
    help="icebridge - register Iceberg tables across Snowflake and OneLake",
    no_args_is_help=True,
)


@app.callback()
def _main(verbose: bool = VerboseOpt):
    """Configure logging for every command."""
    configure_logging(verbose)


app.add_typer(tables_app, name="tables", help="Plan / run / validate / refresh table registration.")
app.add_typer(volumes_app, name="volumes", help="Inspect external volumes and their principals.")
app.add_typer(metadata_app, name="metadata", help="Locate the newest Iceberg metadata file.")


if __name__ == "__main__":
    app()
