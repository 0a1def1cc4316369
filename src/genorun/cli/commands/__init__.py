"""genorun CLI commands."""

from .config_cmd import config_app
from .parse import parse
from .run import run

__all__ = ["config_app", "parse", "run"]
