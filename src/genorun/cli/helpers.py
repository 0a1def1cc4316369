"""Shared utilities for genorun CLI commands.

- Logging option state and configuration
- Config loading with user-facing errors
- ``--param key=value`` parsing
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from genorun.core.config import OrchestratorConfig, load_config
from genorun.core.logging import configure_logging

# Submissions from the CLI all belong to this owner
LOCAL_OWNER_ID = 0


class ErrorMessages:
    """User-facing error strings shared by commands."""

    CONFIG_LOAD_ERROR = "Error loading config"
    INVALID_PARAM = "Invalid --param value"
    PARSE_FAILED = "Could not parse tool output"


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """Logging options collected from the global CLI flags."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    file: Path | None = None
    format: Literal["json", "console", "both"] = "console"
    explicit: bool = False
    configured: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]
    _log_config.explicit = True


def set_log_file(path: Path | None) -> None:
    _log_config.file = path
    _log_config.explicit = True


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]
    _log_config.explicit = True


def configure_global_logging(console: Console) -> None:
    """Configure logging from the global CLI options, once per session.

    Raises:
        typer.Exit: If the options are inconsistent.
    """
    if _log_config.configured:
        return
    try:
        configure_logging(
            level=_log_config.level,
            format=_log_config.format,
            file_path=_log_config.file,
        )
        _log_config.configured = True
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def apply_config_logging(config: OrchestratorConfig, console: Console) -> None:
    """Use the config file's logging settings unless CLI flags were given."""
    if _log_config.explicit:
        return
    try:
        configure_logging(
            level=config.log_level.upper(),  # type: ignore[arg-type]
            format=config.log_format,
            file_path=config.log_file,
        )
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def reset_logging_state() -> None:
    """Reset logging state (for tests)."""
    global _log_config
    _log_config = CliLoggingConfig()


# =============================================================================
# Config and parameters
# =============================================================================


def load_config_or_exit(config_file: Path | None, console: Console) -> OrchestratorConfig:
    try:
        return load_config(config_file)
    except (OSError, ValidationError, yaml.YAMLError) as e:
        console.print(f"[red]{ErrorMessages.CONFIG_LOAD_ERROR}:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def parse_param_options(values: list[str] | None) -> dict[str, Any]:
    """Turn ``["min_score=0.7", "splits=4"]`` into a parameter dict.

    Values that look numeric are converted; validation happens at submission.

    Raises:
        ValueError: An entry is not of the form key=value.
    """
    params: dict[str, Any] = {}
    for raw in values or []:
        key, sep, value = raw.partition("=")
        key = key.strip().replace("-", "_")
        if not sep or not key:
            raise ValueError(f"expected key=value, got {raw!r}")
        params[key] = _coerce(value.strip())
    return params


def _coerce(value: str) -> Any:
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            continue
    return value


__all__ = [
    "ErrorMessages",
    "LOCAL_OWNER_ID",
    "apply_config_logging",
    "configure_global_logging",
    "load_config_or_exit",
    "parse_param_options",
    "reset_logging_state",
    "set_log_file",
    "set_log_format",
    "set_log_level",
]
