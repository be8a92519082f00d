"""Unit tests for persistence backends and data file handling."""

import json
import pytest
import yaml
from unittest.mock import patch

from taskpulse.backend import YAMLFileBackend
from taskpulse.coordinator import Coordinator
from taskpulse.data import atomic_write, check_schema_version, load_yaml_file, validate_document, DATA_YAML
from taskpulse.models import EntityType
from taskpulse.store import EntityStore
from taskpulse.recovery import (
    CorruptionError, FatalError, FileOperationError, MigrationNeededError, TransportFailure,
)
from taskpulse.version import APP_SCHEMA_VERSION


def document(**collections):
    data = {"schemaVersion": APP_SCHEMA_VERSION, "tasks": [], "projects": [],
            "members": [], "departments": [], "roles": []}
    data.update(collections)
    return data


class TestMemoryBackend:
    """Test the in-process backend."""

    def test_create_assigns_id_and_timestamps(self, backend):
        record = backend.create(EntityType.TASK, {"title": "a"})
        assert record["id"]
        assert "createdAt" in record and "updatedAt" in record

        role = backend.create(EntityType.ROLE, {"name": "Dev"})
        assert "createdAt" not in role

    def test_derived_fields_dropped(self, backend):
        record = backend.create(EntityType.PROJECT, {"name": "a", "taskStats": {"totalTasks": 3}})
        assert "taskStats" not in record

    def test_duplicate_and_missing(self, backend):
        backend.create(EntityType.ROLE, {"id": "r1", "name": "Dev"})
        with pytest.raises(TransportFailure, match="already exists"):
            backend.create(EntityType.ROLE, {"id": "r1", "name": "Dev"})
        with pytest.raises(TransportFailure, match="does not exist"):
            backend.update(EntityType.ROLE, "r2", {"name": "x"})

    def test_update_and_delete(self, backend):
        backend.create(EntityType.ROLE, {"id": "r1", "name": "Dev"})
        assert backend.update(EntityType.ROLE, "r1", {"name": "Ops"})["name"] == "Ops"
        assert backend.delete(EntityType.ROLE, "r1") is True
        assert backend.delete(EntityType.ROLE, "r1") is False
        assert backend.list(EntityType.ROLE) == []

    def test_list_returns_copies(self, backend):
        backend.create(EntityType.ROLE, {"id": "r1", "name": "Dev"})
        backend.list(EntityType.ROLE)[0]["name"] = "changed"
        assert backend.list(EntityType.ROLE)[0]["name"] == "Dev"


class TestYAMLFileBackend:
    """Test the file-backed workspace."""

    def test_missing_file_starts_empty(self, tmp_path):
        backend = YAMLFileBackend(tmp_path / "data.yml")
        assert not backend.exists
        assert backend.list(EntityType.TASK) == []

    def test_initialize(self, tmp_path):
        path = tmp_path / "nested" / "data.yml"
        YAMLFileBackend(path).initialize()
        assert yaml.safe_load(path.read_text()) == document()

    def test_writes_survive_reload(self, tmp_path, store, channel, notifier):
        """Everything written through the coordinator is there after reopening."""
        path = tmp_path / "data.yml"
        coordinator = Coordinator(store, YAMLFileBackend(path), channel, notifier)
        project = coordinator.create(EntityType.PROJECT, {"name": "Apollo", "tags": "a, b"}).entity
        coordinator.create(EntityType.TASK, {"title": "t", "projectId": project.id, "dueDate": "2024-07-01"})

        reopened = YAMLFileBackend(path)
        projects = reopened.list(EntityType.PROJECT)
        assert [p["name"] for p in projects] == ["Apollo"]
        assert projects[0]["tags"] == ["a", "b"]
        assert "taskStats" not in projects[0]
        task = reopened.list(EntityType.TASK)[0]
        assert task["projectId"] == project.id

        fresh = Coordinator(EntityStore(), reopened, channel, notifier)
        fresh.reload()
        assert fresh.store.get(EntityType.PROJECT, project.id).task_stats.total_tasks == 1

    def test_json_format(self, tmp_path):
        path = tmp_path / "data.json"
        backend = YAMLFileBackend(path)
        backend.create(EntityType.ROLE, {"id": "r1", "name": "Dev"})
        assert json.loads(path.read_text())["roles"] == [{"id": "r1", "name": "Dev"}]

    def test_corrupt_yaml(self, tmp_path):
        path = tmp_path / "data.yml"
        path.write_text("tasks: [unclosed\n")
        with pytest.raises(CorruptionError):
            YAMLFileBackend(path)

    def test_invalid_record(self, tmp_path):
        path = tmp_path / "data.yml"
        path.write_text(yaml.safe_dump(document(members=[{"id": "m1", "name": "x", "email": "bad"}])))
        with pytest.raises(CorruptionError, match="Invalid member record 'm1'"):
            YAMLFileBackend(path)

    def test_failed_write_rolls_back(self, tmp_path):
        """A write that cannot reach the disk changes neither file nor memory."""
        path = tmp_path / "data.yml"
        backend = YAMLFileBackend(path)
        backend.create(EntityType.ROLE, {"id": "r1", "name": "Dev"})
        before = path.read_text()

        with patch("taskpulse.backend.atomic_write", side_effect=FileOperationError("disk full")):
            with pytest.raises(TransportFailure, match="disk full"):
                backend.create(EntityType.ROLE, {"id": "r2", "name": "Ops"})

        assert [r["id"] for r in backend.list(EntityType.ROLE)] == ["r1"]
        assert path.read_text() == before


class TestDocumentValidation:
    """Test data file validation."""

    def test_valid_document(self):
        records = validate_document(document(roles=[{"id": "r1", "name": "Dev"}]))
        assert records[EntityType.ROLE] == [{"id": "r1", "name": "Dev"}]
        assert records[EntityType.TASK] == []

    def test_missing_version(self):
        with pytest.raises(CorruptionError, match="schema validation"):
            validate_document({"tasks": []})

    def test_record_without_id(self):
        with pytest.raises(CorruptionError, match="schema validation"):
            validate_document(document(tasks=[{"title": "no id"}]))

    def test_schema_versions(self):
        """Test version comparison against the application schema."""
        assert check_schema_version(APP_SCHEMA_VERSION)
        with pytest.raises(MigrationNeededError):
            check_schema_version("0.0.1")
        with pytest.raises(FatalError, match="newer than application"):
            check_schema_version("99.0.0")
        with pytest.raises(CorruptionError, match="Invalid schema version"):
            check_schema_version("not-a-version")


class TestAtomicWrite:
    """Test atomic file writes."""

    def test_round_trip(self, tmp_path):
        path = tmp_path / "out.yml"
        assert atomic_write(DATA_YAML, path, {"a": 1})
        assert load_yaml_file(path) == {"a": 1}
        assert list(tmp_path.glob(".out.yml.*")) == []

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileOperationError):
            atomic_write(DATA_YAML, tmp_path / "missing" / "out.yml", {"a": 1})

    def test_load_missing_file(self, tmp_path):
        assert load_yaml_file(tmp_path / "nope.yml") is None
