"""Strategy type for the external analysis tools.

Every ``AnalysisKind`` maps to one ``AnalysisStrategy`` bundling the
command builder and the output parser for that tool. The orchestrator
resolves the strategy once at submission time and never branches on the
kind afterwards.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from genorun.core.config import OrchestratorConfig, ParserConfig
from genorun.core.models import AnalysisKind, ParseResult

_WINDOWS_DRIVE = re.compile(r"^([A-Za-z]):[\\/]?(.*)$")

CommandBuilder = Callable[[str, Path, dict[str, object], OrchestratorConfig], list[str]]
OutputParser = Callable[[Path, str | None, ParserConfig], ParseResult]


@dataclass(frozen=True)
class AnalysisStrategy:
    """How to run one kind of analysis and read its results.

    Attributes:
        kind: The analysis kind this strategy serves.
        display_name: Human-readable tool name, used in job task names.
        build_command: ``(input_path, output_dir, parameters, config) -> argv``.
        parse: ``(output_dir, input_name, parser_config) -> ParseResult``.
        has_regions: Whether results carry regions with region detail.
    """

    kind: AnalysisKind
    display_name: str
    build_command: CommandBuilder
    parse: OutputParser
    has_regions: bool = False

    def task_name(self, input_filename: str) -> str:
        return f"{self.display_name} - {input_filename}"


def normalize_host_path(path: str | Path) -> str:
    """Host path as the container runtime expects it.

    Windows drive paths become WSL mount paths (``C:\\data`` ->
    ``/mnt/c/data``); relative paths are made absolute.
    """
    raw = str(path)
    match = _WINDOWS_DRIVE.match(raw)
    if match:
        drive, rest = match.groups()
        rest = rest.replace("\\", "/").strip("/")
        return f"/mnt/{drive.lower()}/{rest}" if rest else f"/mnt/{drive.lower()}"
    if raw.startswith("/"):
        return raw
    return str(Path(raw).absolute())


def split_host_path(path: str | Path) -> tuple[str, str]:
    """(normalized parent directory, final component) of a host path."""
    posix = PurePosixPath(normalize_host_path(path))
    return str(posix.parent), posix.name


def command_prefix(prefix: str) -> list[str]:
    """Tokens of a configured command prefix such as ``wsl``."""
    return shlex.split(prefix) if prefix.strip() else []


__all__ = [
    "AnalysisStrategy",
    "CommandBuilder",
    "OutputParser",
    "command_prefix",
    "normalize_host_path",
    "split_host_path",
]
