"""Common CLI options for the CLI."""

import typer

ConfigOpt = typer.Option(
    "icebridge.yaml",
    "--config",
    "-c",
    help="Run configuration file (YAML)",
)

ConnectionOpt = typer.Option(
    None,
    "--connection",
    help="Snowflake connection name (from connections.toml); overrides the config",
)

VerboseOpt = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Show debug logging",
)

ParallelOpt = typer.Option(
    None,
    "--parallel",
    "-n",
    help="Number of tables to register in parallel (default: from config)",
)

DryRunOpt = typer.Option(
    False,
    "--dry-run",
    help="Show what would be registered, but don't touch anything",
)

YesOpt = typer.Option(
    False,
    "--yes",
    help="Skip confirmation prompt",
)

AutoGrantOpt = typer.Option(
    False,
    "--auto-grant",
    help="Assign the workspace role to the volume's principal if it is missing",
)
