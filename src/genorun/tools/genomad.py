"""geNomad end-to-end prophage detection."""

from __future__ import annotations

import os
from pathlib import Path

from genorun.core.config import OrchestratorConfig
from genorun.core.models import AnalysisKind
from genorun.parsing.prophage import parse_prophage_output
from genorun.tools.base import AnalysisStrategy, command_prefix, split_host_path

# Mount point of the database's parent directory. geNomad writes
# version.txt next to the database, so the parent must be writable.
DATABASE_MOUNT = "/genomad_db"


def build_prophage_command(
    input_path: str,
    output_dir: Path,
    parameters: dict[str, object],
    config: OrchestratorConfig,
) -> list[str]:
    """argv for ``genomad end-to-end`` inside its container.

    The job directory's parent is mounted as the output mount and the job
    directory name is passed as the run's output directory, so the
    tool's ``<base>_find_proviruses`` tree lands directly in the job dir.
    """
    tool = config.prophage
    input_dir, input_file = split_host_path(input_path)
    output_parent, output_name = split_host_path(output_dir)
    db_parent, db_name = split_host_path(tool.database_path)

    cmd = command_prefix(tool.command_prefix)
    cmd += ["docker", "run", "--rm"]
    if tool.run_as_current_user:
        cmd += ["--user", f"{os.getuid()}:{os.getgid()}"]
    cmd += [
        "-v", f"{input_dir}:{tool.input_mount}:ro",
        "-v", f"{output_parent}:{tool.output_mount}",
        "-v", f"{db_parent}:{DATABASE_MOUNT}",
        tool.image,
        "end-to-end",
        f"{tool.input_mount}/{input_file}",
        f"{tool.output_mount}/{output_name}",
        f"{DATABASE_MOUNT}/{db_name}",
    ]
    if parameters.get("min_score") is not None:
        cmd += ["--min-score", str(parameters["min_score"])]
    if parameters.get("min_length") is not None:
        cmd += ["--min-length", str(parameters["min_length"])]
    # Without an explicit split count geNomad can exhaust memory on large genomes
    splits = parameters.get("splits") or tool.default_splits
    cmd += ["--splits", str(splits)]
    return cmd


PROPHAGE_STRATEGY = AnalysisStrategy(
    kind=AnalysisKind.PROPHAGE,
    display_name="Prophage Detection",
    build_command=build_prophage_command,
    parse=parse_prophage_output,
    has_regions=True,
)


__all__ = ["DATABASE_MOUNT", "PROPHAGE_STRATEGY", "build_prophage_command"]
