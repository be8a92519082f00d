"""Shared fixtures for taskpulse tests."""

import pytest
from datetime import datetime

from taskpulse.backend import MemoryBackend
from taskpulse.broadcast import RefreshChannel, reset_channels
from taskpulse.config import Settings, reset_settings
from taskpulse.coordinator import Coordinator
from taskpulse.models import EntityType
from taskpulse.notify import RecordingNotifier
from taskpulse.store import EntityStore

NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep config, logs and registries out of the developer's home."""
    monkeypatch.setenv("TASKPULSE_CONFIG", str(tmp_path / "no-config.yml"))
    for name in ("TASKPULSE_DATA_FILE", "TASKPULSE_TREND_MONTHS",
                 "TASKPULSE_COMPARISON_DAYS", "TASKPULSE_CHANNEL"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    reset_channels()
    yield
    reset_settings()
    reset_channels()


@pytest.fixture
def store():
    return EntityStore()

@pytest.fixture
def channel():
    return RefreshChannel("test")

@pytest.fixture
def backend():
    return MemoryBackend()

@pytest.fixture
def notifier():
    return RecordingNotifier()

@pytest.fixture
def settings():
    return Settings()

@pytest.fixture
def coordinator(store, backend, channel, notifier):
    return Coordinator(store, backend, channel, notifier, clock=lambda: NOW)


@pytest.fixture
def team(coordinator):
    """A department, a role, two members and one project with a manager."""
    dept = coordinator.create(EntityType.DEPARTMENT, {"name": "Engineering"}).entity
    role = coordinator.create(EntityType.ROLE, {"name": "Developer"}).entity
    alice = coordinator.create(EntityType.MEMBER, {
        "name": "Alice", "email": "alice@example.com", "roleId": role.id, "departmentId": dept.id,
    }).entity
    bob = coordinator.create(EntityType.MEMBER, {
        "name": "Bob", "email": "bob@example.com", "department": {"id": dept.id},
    }).entity
    project = coordinator.create(EntityType.PROJECT, {"name": "Apollo", "managerId": alice.id}).entity
    return {"department": dept, "role": role, "alice": alice, "bob": bob, "project": project}
