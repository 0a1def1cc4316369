"""Antibiotic resistance gene prediction."""

from __future__ import annotations

from pathlib import Path

from genorun.core.config import OrchestratorConfig
from genorun.core.models import AnalysisKind
from genorun.parsing.resistance import parse_resistance_output
from genorun.tools.base import (
    AnalysisStrategy,
    command_prefix,
    normalize_host_path,
    split_host_path,
)


def build_resistance_command(
    input_path: str,
    output_dir: Path,
    parameters: dict[str, object],
    config: OrchestratorConfig,
) -> list[str]:
    """argv for the predictor's ``end-to-end`` entry point.

    The predictor takes no tuning parameters; ``parameters`` is ignored.
    """
    tool = config.resistance
    input_dir, input_file = split_host_path(input_path)

    cmd = command_prefix(tool.command_prefix)
    cmd += ["docker", "run", "--rm"]
    if tool.gpus:
        cmd += ["--gpus", tool.gpus]
    cmd += [
        "-v", f"{input_dir}:{tool.input_mount}:ro",
        "-v", f"{normalize_host_path(output_dir)}:{tool.output_mount}",
        tool.image,
        "end-to-end",
        f"{tool.input_mount}/{input_file}",
        tool.output_mount,
        tool.model_path,
    ]
    return cmd


RESISTANCE_STRATEGY = AnalysisStrategy(
    kind=AnalysisKind.RESISTANCE,
    display_name="ARG Prediction",
    build_command=build_resistance_command,
    parse=parse_resistance_output,
)


__all__ = ["RESISTANCE_STRATEGY", "build_resistance_command"]
