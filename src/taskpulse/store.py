"""
EntityStore - the authoritative in-memory state for one client session.

The store owns every Task, Project, TeamMember, Department and Role instance.
Reads hand out deep copies so callers can never mutate live state; writes go
through ``upsert``/``remove``, which only the coordinator is meant to call.
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from taskpulse.logs import get_logger
from taskpulse.models import (
    Department, Entity, EntityType, Project, Role, Task, TeamMember, model_for,
)
from taskpulse.recovery import ConstraintViolation

log = get_logger("store")

EntityInput = Union[Entity, Mapping[str, Any]]


@dataclass(frozen=True)
class Snapshot:
    """Read-only copy of every collection, taken at one point in time."""

    tasks: Tuple[Task, ...] = ()
    projects: Tuple[Project, ...] = ()
    members: Tuple[TeamMember, ...] = ()
    departments: Tuple[Department, ...] = ()
    roles: Tuple[Role, ...] = ()
    _index: Dict[EntityType, Dict[str, Entity]] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        index = {
            EntityType.TASK: {t.id: t for t in self.tasks},
            EntityType.PROJECT: {p.id: p for p in self.projects},
            EntityType.MEMBER: {m.id: m for m in self.members},
            EntityType.DEPARTMENT: {d.id: d for d in self.departments},
            EntityType.ROLE: {r.id: r for r in self.roles},
        }
        object.__setattr__(self, '_index', index)

    def lookup(self, entity_type: EntityType) -> Dict[str, Entity]:
        return dict(self._index[EntityType(entity_type)])

    def find(self, entity_type: EntityType, entity_id: Optional[str]) -> Optional[Entity]:
        if entity_id is None:
            return None
        return self._index[EntityType(entity_type)].get(entity_id)

    def tasks_for_project(self, project_id: str) -> List[Task]:
        return [t for t in self.tasks if t.project_id == project_id]

    def tasks_for_member(self, member_id: str) -> List[Task]:
        return [t for t in self.tasks if t.assignee_id == member_id]


class EntityStore:
    """Synchronous, in-memory collections keyed by entity type and id."""

    def __init__(self):
        self._collections: Dict[EntityType, Dict[str, Entity]] = {
            entity_type: {} for entity_type in EntityType
        }
        self._lock = threading.RLock()

    @contextmanager
    def writer(self):
        """Hold the single-writer lock across a multi-step write."""
        with self._lock:
            yield self

    def _normalize(self, entity_type: EntityType, entity: EntityInput) -> Entity:
        model = model_for(entity_type)
        if isinstance(entity, model):
            data = entity.model_dump()
        elif isinstance(entity, Entity):
            raise ConstraintViolation(
                f"Cannot store {type(entity).__name__} as {entity_type.value}"
            )
        else:
            data = dict(entity)
        try:
            # Re-validate so every stored instance has the canonical shape
            return model.model_validate(data)
        except ValidationError as e:
            raise ConstraintViolation(f"Invalid {entity_type.value}: {e}") from e

    def upsert(self, entity_type: EntityType, entity: EntityInput) -> Entity:
        """
        Insert or replace an entity by id.

        The entity must be complete: callers merge changes first and then
        upsert the merged object. Returns a copy of what was stored.
        """
        entity_type = EntityType(entity_type)
        normalized = self._normalize(entity_type, entity)
        with self._lock:
            self._collections[entity_type][normalized.id] = normalized
        log.debug(f"Upserted {entity_type.value} {normalized.id}")
        return normalized.model_copy(deep=True)

    def remove(self, entity_type: EntityType, entity_id: str) -> bool:
        """Remove an entity if present. Returns False when there was nothing to remove."""
        entity_type = EntityType(entity_type)
        with self._lock:
            removed = self._collections[entity_type].pop(entity_id, None)
        if removed is None:
            return False
        log.debug(f"Removed {entity_type.value} {entity_id}")
        return True

    def get(self, entity_type: EntityType, entity_id: Optional[str]) -> Optional[Entity]:
        if entity_id is None:
            return None
        with self._lock:
            entity = self._collections[EntityType(entity_type)].get(entity_id)
            return entity.model_copy(deep=True) if entity is not None else None

    def exists(self, entity_type: EntityType, entity_id: Optional[str]) -> bool:
        if entity_id is None:
            return False
        with self._lock:
            return entity_id in self._collections[EntityType(entity_type)]

    def list(self, entity_type: EntityType) -> List[Entity]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._collections[EntityType(entity_type)].values()]

    def count(self, entity_type: EntityType) -> int:
        with self._lock:
            return len(self._collections[EntityType(entity_type)])

    def snapshot(self) -> Snapshot:
        """Consistent copy of every collection, suitable as aggregation input."""
        with self._lock:
            return Snapshot(
                tasks=tuple(self.list(EntityType.TASK)),
                projects=tuple(self.list(EntityType.PROJECT)),
                members=tuple(self.list(EntityType.MEMBER)),
                departments=tuple(self.list(EntityType.DEPARTMENT)),
                roles=tuple(self.list(EntityType.ROLE)),
            )

    def clear(self):
        with self._lock:
            for collection in self._collections.values():
                collection.clear()

    def replace_all(self, records: Mapping[EntityType, Iterable[EntityInput]]):
        """Swap in a complete new state; nothing changes if any record is invalid."""
        staged = {}
        for entity_type, entities in records.items():
            entity_type = EntityType(entity_type)
            staged[entity_type] = {e.id: e for e in (self._normalize(entity_type, raw) for raw in entities)}
        with self._lock:
            for entity_type in EntityType:
                self._collections[entity_type] = staged.get(entity_type, {})
        log.info("Replaced store contents: " + ", ".join(
            f"{t.value}={len(c)}" for t, c in staged.items()
        ))
