"""Configuration commands for genorun CLI.

Subcommands:
- `genorun config show`  - Display the effective config as a Rich table
- `genorun config init`  - Write a config file populated with defaults
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
import yaml
from rich.table import Table

from genorun.core.config import OrchestratorConfig

from ..helpers import load_config_or_exit
from ..output import console, print_json

config_app = typer.Typer(
    name="config",
    help="Inspect and create orchestrator configuration.",
    invoke_without_command=True,
)


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    rows: list[tuple[str, Any]] = []
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            rows.extend(_flatten(value, f"{dotted}."))
        else:
            rows.append((dotted, value))
    return rows


@config_app.callback()
def config_main(
    ctx: typer.Context,
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML orchestrator configuration",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """Show the effective configuration when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        show(config_file=config_file, json_output=False)


@config_app.command()
def show(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML orchestrator configuration",
        exists=True,
        dir_okay=False,
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Display the effective configuration (defaults merged with the file)."""
    config = load_config_or_exit(config_file, console)
    data = config.model_dump(mode="json")
    if json_output:
        print_json(data)
        return

    table = Table(title="genorun configuration")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value")
    for key, value in _flatten(data):
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)
    if config_file is None:
        console.print("[dim]No config file given, showing defaults.[/dim]")


@config_app.command()
def init(
    path: Path = typer.Argument(Path("genorun.yaml"), help="Where to write the config file"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a configuration file containing every default value."""
    if path.exists() and not force:
        console.print(f"[yellow]{path} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    data = OrchestratorConfig().model_dump(mode="json")
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    console.print(f"Wrote default configuration to [cyan]{path}[/cyan]")
