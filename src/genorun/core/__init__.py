"""Core building blocks shared by every genorun component."""

from genorun.core.config import OrchestratorConfig, load_config
from genorun.core.logging import configure_logging, get_logger
from genorun.core.models import AnalysisKind, Job, JobStatus

__all__ = [
    "AnalysisKind",
    "Job",
    "JobStatus",
    "OrchestratorConfig",
    "configure_logging",
    "get_logger",
    "load_config",
]
