"""genorun CLI.

Package structure:
    cli/
    ├── __init__.py           # This file - app assembly
    ├── helpers.py            # Logging state, config loading, --param parsing
    ├── output.py             # Rich formatting
    └── commands/
        ├── run.py            # run command
        ├── parse.py          # parse command
        └── config_cmd.py     # config show / init
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from genorun import __version__

from . import helpers as helpers
from .commands import config_app, parse, run
from .helpers import configure_global_logging, set_log_file, set_log_format, set_log_level
from .output import console

app = typer.Typer(
    name="genorun",
    help="Run and inspect containerized genome analysis jobs",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"genorun v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="GENORUN_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="GENORUN_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="GENORUN_LOG_FORMAT",
        ),
    ] = None,
) -> None:
    """genorun - orchestration engine for genome analysis jobs."""
    configure_global_logging(console)


# =============================================================================
# Command registration
# =============================================================================

app.command()(run)
app.command()(parse)
app.add_typer(config_app)


__all__ = ["app", "helpers", "main"]
