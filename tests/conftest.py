"""Pytest fixtures for genorun tests."""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from genorun.core.config import OrchestratorConfig, ParserConfig, ProcessConfig, WorkerPoolConfig


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    from genorun.cli import helpers

    helpers.reset_logging_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    helpers.reset_logging_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def parser_config() -> ParserConfig:
    return ParserConfig()


@pytest.fixture
def fast_config(tmp_path: Path) -> OrchestratorConfig:
    """Orchestrator config with short timeouts and outputs under tmp_path."""
    return OrchestratorConfig(
        pool=WorkerPoolConfig(max_concurrent=1, queue_capacity=10),
        process=ProcessConfig(
            timeout_seconds=10.0,
            cancel_grace_seconds=1.0,
            stream_drain_seconds=1.0,
        ),
        output_base_dir=tmp_path / "outputs",
        shutdown_timeout_seconds=5.0,
    )
