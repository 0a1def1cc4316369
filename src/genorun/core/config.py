"""Configuration models for genorun.

Defines Pydantic v2 models for the orchestrator: worker pool sizing,
process supervision limits, per-tool container settings, and the output
parser's tunables. Loaded from YAML via ``load_config()``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from genorun.core.logging import get_logger

_logger = get_logger("config")


class WorkerPoolConfig(BaseModel):
    """Sizing for the bounded worker pool.

    The analysis tools are memory hungry, so the default allows a single
    execution at a time.
    """

    max_concurrent: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Maximum job bodies executing simultaneously.",
    )
    queue_capacity: int = Field(
        default=100,
        ge=1,
        description="Maximum units waiting for a worker. When the queue is "
        "full the submitting caller runs the unit itself (caller-runs).",
    )


class ProcessConfig(BaseModel):
    """Limits applied to every supervised external process."""

    timeout_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Wall-clock budget for one tool invocation. The process "
        "group is killed and the job fails when it is exceeded.",
    )
    cancel_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Seconds between SIGTERM and SIGKILL on cancellation.",
    )
    stream_drain_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to keep draining stdout/stderr after the "
        "process exits (grandchildren may hold the pipes open).",
    )
    max_output_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Per-stream capture limit. Only the tail is kept.",
    )


class ProphageToolConfig(BaseModel):
    """geNomad container settings for prophage detection."""

    image: str = Field(
        default="antoniopcamargo/genomad:latest",
        description="Container image running geNomad.",
    )
    command_prefix: str = Field(
        default="",
        description="Tokens prepended to the docker command, e.g. 'wsl'.",
    )
    input_mount: str = Field(default="/input", description="Container input mount.")
    output_mount: str = Field(default="/output", description="Container output mount.")
    database_path: Path = Field(
        default=Path("/opt/genomad_db"),
        description="Host path of the geNomad database directory. Its parent "
        "is mounted at /genomad_db because geNomad writes version.txt next to it.",
    )
    default_splits: int = Field(
        default=8,
        ge=1,
        description="--splits value when the job does not set one. Higher "
        "values lower peak memory.",
    )
    run_as_current_user: bool = Field(
        default=True,
        description="Pass --user UID:GID so output files are owned by the host user.",
    )


class ResistanceToolConfig(BaseModel):
    """Container settings for antibiotic resistance gene prediction."""

    image: str = Field(default="arg-predictor:latest", description="Container image.")
    command_prefix: str = Field(default="", description="Tokens prepended to the docker command.")
    input_mount: str = Field(default="/input", description="Container input mount.")
    output_mount: str = Field(default="/output", description="Container output mount.")
    model_path: str = Field(
        default="/app/models",
        description="Model directory inside the container.",
    )
    gpus: str | None = Field(
        default="all",
        description="Value for docker --gpus. None runs on CPU.",
    )


class ParserConfig(BaseModel):
    """Tunables for the output parser."""

    complete_length_threshold: int = Field(
        default=30_000,
        ge=0,
        description="A region longer than this that does not touch a "
        "sequence edge is classified complete.",
    )
    provirus_score_scale: float = Field(
        default=100.0,
        gt=0,
        description="Maximum of the provirus table score (confidence = score / scale).",
    )
    virus_summary_score_scale: float = Field(
        default=10.0,
        gt=0,
        description="Maximum of the virus summary table score.",
    )
    resistance_score_scale: float = Field(
        default=1.0,
        gt=0,
        description="Maximum of the resistance prediction probability.",
    )


class OrchestratorConfig(BaseModel):
    """Top-level configuration for the genorun orchestrator."""

    pool: WorkerPoolConfig = Field(default_factory=WorkerPoolConfig)
    process: ProcessConfig = Field(default_factory=ProcessConfig)
    prophage: ProphageToolConfig = Field(default_factory=ProphageToolConfig)
    resistance: ResistanceToolConfig = Field(default_factory=ResistanceToolConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    output_base_dir: Path = Field(
        default=Path("./outputs"),
        description="Parent of the per-job output directories (task_<id>).",
    )
    error_message_max_length: int = Field(
        default=1000,
        ge=64,
        description="Job error messages are truncated to this many characters.",
    )
    shutdown_timeout_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Max seconds to wait for running jobs during graceful shutdown.",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Minimum log level for structlog output.",
    )
    log_format: Literal["console", "json", "both"] = Field(default="console")
    log_file: Path | None = Field(
        default=None,
        description="Log file path. None means log to stderr only.",
    )

    @field_validator("output_base_dir")
    @classmethod
    def _expand_output_dir(cls, v: Path) -> Path:
        return v.expanduser()


def load_config(config_file: Path | None) -> OrchestratorConfig:
    """Load OrchestratorConfig from a YAML file or return defaults."""
    if config_file is None:
        return OrchestratorConfig()
    if not config_file.exists():
        _logger.warning("config.file_missing", path=str(config_file))
        return OrchestratorConfig()
    with open(config_file, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    config = OrchestratorConfig.model_validate(data)
    _logger.debug("config.loaded", path=str(config_file))
    return config


__all__ = [
    "OrchestratorConfig",
    "ParserConfig",
    "ProcessConfig",
    "ProphageToolConfig",
    "ResistanceToolConfig",
    "WorkerPoolConfig",
    "load_config",
]
