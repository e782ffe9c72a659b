"""Shared fixtures for the balancer test suite."""

import pytest

from balancer.config import BalancerConfig
from balancer.process_group import destroy_process_group
from balancer.utils.logging import reset_logging

LAUNCHER_VARS = ("RANK", "WORLD_SIZE", "LOCAL_RANK", "GROUP_RANK", "NODE_RANK", "MASTER_ADDR", "MASTER_PORT")
BL_VARS = (
    "BL_NUM_WORKERS",
    "BL_VERBOSE",
    "BL_BACKEND",
    "BL_TIMEOUT",
    "BL_ABORT_ON_COLLECTIVE_ERROR",
    "BL_LOG_DIR",
)


@pytest.fixture
def config() -> BalancerConfig:
    """Small config that raises on collective errors instead of exiting."""
    return BalancerConfig(num_workers=2, abort_on_collective_error=False)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove launcher and BL_ variables so the process runs alone."""
    for name in LAUNCHER_VARS + BL_VARS:
        monkeypatch.delenv(name, raising=False)
    destroy_process_group()
    yield monkeypatch
    destroy_process_group()
    reset_logging()
