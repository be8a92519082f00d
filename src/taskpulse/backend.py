"""
Persistence collaborators.

The coordinator treats a Backend as the source of truth: every write goes to
the backend first and whatever the backend returns (id and timestamps
included) is what ends up in the entity store.
"""
import abc
import copy
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from taskpulse.data.io import DATA_JSON, DATA_YAML, atomic_write, load_json_file, load_yaml_file
from taskpulse.data.validate import validate_document
from taskpulse.logs import get_logger
from taskpulse.models import COLLECTION_KEYS, EntityType, utc_now
from taskpulse.recovery import FileOperationError, TransportFailure
from taskpulse.version import APP_SCHEMA_VERSION

log = get_logger("backend")

Record = Dict[str, Any]

# Derived fields never reach the persistence layer
_DERIVED_KEYS = {"taskStats", "task_stats", "tasks", "projects"}
_TIMESTAMPED = {EntityType.TASK, EntityType.PROJECT, EntityType.MEMBER}


class Backend(abc.ABC):
    """
    Create/read/update/delete per entity type.

    Implementations return complete records (camelCase keys, id included) and
    signal any failure with TransportFailure.
    """

    @abc.abstractmethod
    def create(self, entity_type: EntityType, record: Record) -> Record:
        pass

    @abc.abstractmethod
    def update(self, entity_type: EntityType, entity_id: str, record: Record) -> Record:
        pass

    @abc.abstractmethod
    def delete(self, entity_type: EntityType, entity_id: str) -> bool:
        pass

    @abc.abstractmethod
    def list(self, entity_type: EntityType) -> List[Record]:
        pass


def _timestamp() -> str:
    return utc_now().isoformat()

def _strip_derived(record: Record) -> Record:
    return {k: v for k, v in record.items() if k not in _DERIVED_KEYS}


class MemoryBackend(Backend):
    """Process-local backend; assigns uuid ids and server-side timestamps."""

    def __init__(self, records: Optional[Dict[EntityType, List[Record]]] = None):
        self._records: Dict[EntityType, Dict[str, Record]] = {t: {} for t in EntityType}
        for entity_type, items in (records or {}).items():
            for item in items:
                self._records[EntityType(entity_type)][str(item["id"])] = _strip_derived(dict(item))

    def _commit(self):
        """Hook for subclasses that persist after every write."""
        pass

    def _guarded(self, operation):
        before = copy.deepcopy(self._records)
        try:
            result = operation()
            self._commit()
            return result
        except FileOperationError as e:
            self._records = before
            raise TransportFailure(str(e)) from e

    def create(self, entity_type: EntityType, record: Record) -> Record:
        entity_type = EntityType(entity_type)

        def operation():
            stored = _strip_derived(dict(record))
            stored["id"] = str(stored.get("id") or uuid.uuid4())
            if stored["id"] in self._records[entity_type]:
                raise TransportFailure(f"{entity_type.value} {stored['id']} already exists")
            if entity_type in _TIMESTAMPED:
                now = _timestamp()
                stored.setdefault("createdAt", now)
                stored["updatedAt"] = now
            self._records[entity_type][stored["id"]] = stored
            return copy.deepcopy(stored)

        return self._guarded(operation)

    def update(self, entity_type: EntityType, entity_id: str, record: Record) -> Record:
        entity_type = EntityType(entity_type)

        def operation():
            if entity_id not in self._records[entity_type]:
                raise TransportFailure(f"{entity_type.value} {entity_id} does not exist")
            stored = dict(self._records[entity_type][entity_id])
            stored.update(_strip_derived(record))
            stored["id"] = entity_id
            if entity_type in _TIMESTAMPED:
                stored["updatedAt"] = _timestamp()
            self._records[entity_type][entity_id] = stored
            return copy.deepcopy(stored)

        return self._guarded(operation)

    def delete(self, entity_type: EntityType, entity_id: str) -> bool:
        entity_type = EntityType(entity_type)
        return self._guarded(lambda: self._records[entity_type].pop(entity_id, None) is not None)

    def list(self, entity_type: EntityType) -> List[Record]:
        return [copy.deepcopy(r) for r in self._records[EntityType(entity_type)].values()]


class YAMLFileBackend(MemoryBackend):
    """
    Workspace data kept in a single YAML (or JSON) document.

    The document is validated on load and rewritten atomically after every
    successful write; a failed write leaves both the file and the in-memory
    records as they were.
    """

    def __init__(self, file_path: Union[Path, str]):
        self.file_path = Path(file_path)
        self._format = DATA_JSON if self.file_path.suffix == ".json" else DATA_YAML
        super().__init__()
        self._load()

    @property
    def exists(self) -> bool:
        return self.file_path.exists()

    def _load(self):
        if self._format == DATA_JSON:
            data = load_json_file(self.file_path)
        else:
            data = load_yaml_file(self.file_path)
        if data is None:
            log.debug(f"No data file at {self.file_path}; starting empty")
            return
        records = validate_document(data)
        for entity_type, items in records.items():
            self._records[entity_type] = {str(item["id"]): _strip_derived(dict(item)) for item in items}
        log.info(f"Loaded workspace data from {self.file_path}")

    def document(self) -> Record:
        document = {"schemaVersion": APP_SCHEMA_VERSION}
        for entity_type, key in COLLECTION_KEYS.items():
            document[key] = list(self._records[entity_type].values())
        return document

    def _commit(self):
        atomic_write(self._format, self.file_path, self.document(), create_dirs=True)

    def initialize(self):
        """Write an empty document if none exists yet."""
        if not self.exists:
            self._guarded(lambda: None)
