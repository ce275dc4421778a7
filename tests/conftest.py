# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from task_runner.local.config import MergedSettings
from task_runner.local.supervisor import TaskManager

from .fakes import FakeSpawner, ManualScheduler


@pytest.fixture()
def config(tmp_path: Path) -> MergedSettings:
    """
    Settings with a per-test working directory and known credentials.

    The eviction delays are the production defaults so tests can assert on them.
    """
    return MergedSettings(
        WORKING_DIR=tmp_path,
        AUTH_USER="test_user",
        AUTH_PASSWORD="test_password",
        NODE_EXECUTABLE="node",
        COMPLETED_EVICTION_SECONDS=60,
        STOPPED_EVICTION_SECONDS=5,
        GRACEFUL_SHUTDOWN_TIMEOUT=3,
        LOKI_ENABLED=False,
    )


@pytest.fixture()
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def manager(config: MergedSettings, spawner: FakeSpawner, scheduler: ManualScheduler) -> TaskManager:
    """TaskManager wired with a fake spawner and a manually advanced clock."""
    return TaskManager(config=config, spawner=spawner, scheduler=scheduler)
