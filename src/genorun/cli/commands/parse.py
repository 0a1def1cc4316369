"""Parse command for genorun CLI.

Re-reads an existing job output directory without running anything, for
example the ``task_<id>`` directory of an earlier run.
"""

from __future__ import annotations

from pathlib import Path

import typer

from genorun.core.errors import ParseError
from genorun.core.models import AnalysisKind
from genorun.tools import get_strategy

from ..helpers import ErrorMessages, apply_config_logging, load_config_or_exit
from ..output import console, output_error, print_json, print_results


def parse(
    output_dir: Path = typer.Argument(
        ...,
        help="Job output directory to parse",
        exists=True,
        file_okay=False,
    ),
    kind: AnalysisKind = typer.Option(
        AnalysisKind.PROPHAGE,
        "--kind",
        "-k",
        help="Which tool produced the output",
        case_sensitive=False,
    ),
    input_name: str | None = typer.Option(
        None,
        "--input-name",
        "-i",
        help="Original input filename, used to locate the tool's run directory",
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML orchestrator configuration",
        exists=True,
        dir_okay=False,
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output result as JSON for machine parsing",
    ),
) -> None:
    """Parse a tool output directory and print its regions or hits."""
    config = load_config_or_exit(config_file, console)
    apply_config_logging(config, console)
    strategy = get_strategy(kind)

    try:
        parsed = strategy.parse(output_dir, input_name, config.parser)
    except ParseError as e:
        output_error(f"{ErrorMessages.PARSE_FAILED}: {e}", json_output=json_output)
        raise typer.Exit(1) from None

    if json_output:
        print_json(parsed.to_dict())
        return
    data = parsed.to_dict()
    for region in data["regions"]:
        region.pop("genes", None)
    print_results(data)
