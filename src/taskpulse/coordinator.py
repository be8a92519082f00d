"""
Consistency Coordinator - the single entry point for every mutation.

Each mutation moves through the same stages:

  1. requested             references validated against the store
  2. (remote write)        the backend persists and returns the entity
  3. applied-to-store      the persisted entity replaces the local copy
  4. dependents-recomputed project task_stats / member counts refreshed
  5. broadcast-emitted     one refresh signal for the whole cascade

Anything that fails before stage 3 leaves the store untouched. Stages 3 and 4
run under the store's writer lock and the whole mutation runs under the
coordinator's lock, so no other component observes a half-applied cascade.
"""
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Set

from pydantic import ValidationError

from taskpulse.analytics.metrics import member_project_ids, project_progress, project_team
from taskpulse.backend import Backend, Record
from taskpulse.broadcast import RefreshChannel, get_channel
from taskpulse.logs import get_logger
from taskpulse.models import (
    Entity, EntityType, TaskStatus, model_for, utc_now,
)
from taskpulse.notify import LogNotifier, Notifier
from taskpulse.recovery import (
    ConstraintViolation, EntityNotFound, ReferenceNotFound, StaleWriteDiscarded, TransportFailure,
)
from taskpulse.store import EntityStore

log = get_logger("coordinator")

_DRAFT_ID = "draft"

# (field, referenced type) checked before a write is attempted
REFERENCES: Dict[EntityType, tuple] = {
    EntityType.TASK: (("project_id", EntityType.PROJECT), ("assignee_id", EntityType.MEMBER)),
    EntityType.PROJECT: (("manager_id", EntityType.MEMBER), ("department_id", EntityType.DEPARTMENT)),
    EntityType.MEMBER: (("role_id", EntityType.ROLE), ("department_id", EntityType.DEPARTMENT)),
    EntityType.DEPARTMENT: (),
    EntityType.ROLE: (),
}


class MutationStatus(Enum):
    APPLIED = "applied"
    NOT_FOUND = "not-found"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class MutationResult:
    status: MutationStatus
    entity_type: EntityType
    entity_id: Optional[str]
    entity: Optional[Entity] = None
    affected: FrozenSet[EntityType] = field(default_factory=frozenset)

    @property
    def applied(self) -> bool:
        return self.status == MutationStatus.APPLIED


class Scope:
    """Liveness flag for whoever started a mutation (a dialog, a view, a command)."""

    def __init__(self):
        self.alive = True

    def close(self):
        self.alive = False


def display_name(entity: Entity) -> str:
    return getattr(entity, 'title', None) or getattr(entity, 'name', None) or entity.id


class Coordinator:
    """Applies mutations to the store together with everything that depends on them."""

    def __init__(self, store: EntityStore, backend: Backend,
                 channel: Optional[RefreshChannel] = None,
                 notifier: Optional[Notifier] = None,
                 clock: Callable = utc_now):
        self._store = store
        self._backend = backend
        self._channel = channel or get_channel()
        self._notifier = notifier or LogNotifier()
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def store(self) -> EntityStore:
        return self._store

    @property
    def channel(self) -> RefreshChannel:
        return self._channel

    def batch(self):
        """Coalesce the refresh signals of several mutations into one."""
        return self._channel.batch()

    # -- Public API ---------------------------------------------------------

    def create(self, entity_type: EntityType, data: Mapping[str, Any],
               scope: Optional[Scope] = None) -> MutationResult:
        entity_type = EntityType(entity_type)
        with self._lock:
            draft = self._draft(entity_type, dict(data))
            self._apply_rules(entity_type, None, draft)
            self._validate(entity_type, draft, previous=None)

            outgoing = draft.to_record()
            if outgoing["id"] == _DRAFT_ID:
                del outgoing["id"]
            record = self._remote(entity_type, "create", lambda: self._backend.create(entity_type, outgoing))
            return self._commit(entity_type, record, None, scope, "created")

    def update(self, entity_type: EntityType, entity_id: str, changes: Mapping[str, Any],
               scope: Optional[Scope] = None) -> MutationResult:
        """Merge ``changes`` onto the stored entity, then write the merged whole."""
        entity_type = EntityType(entity_type)
        with self._lock:
            previous = self._store.get(entity_type, entity_id)
            if previous is None:
                raise EntityNotFound(entity_type, entity_id)

            model = model_for(entity_type)
            try:
                canonical = model.canonical_changes(dict(changes))
            except ValueError as e:
                raise ConstraintViolation(str(e)) from e
            merged = previous.model_dump()
            merged.update(canonical)
            draft = self._validated(entity_type, merged)
            self._apply_rules(entity_type, previous, draft)
            self._validate(entity_type, draft, previous=previous)

            outgoing = draft.to_record()
            record = self._remote(entity_type, "update",
                                  lambda: self._backend.update(entity_type, entity_id, outgoing))
            return self._commit(entity_type, record, previous, scope, "updated")

    def delete(self, entity_type: EntityType, entity_id: str,
               scope: Optional[Scope] = None) -> MutationResult:
        """
        Delete an entity. Deleting an id that is not in the store reports
        NOT_FOUND without touching the backend, the store or any derived stats.

        Dependents are never deleted along with it; their references dangle
        and display as "Unknown".
        """
        entity_type = EntityType(entity_type)
        with self._lock:
            previous = self._store.get(entity_type, entity_id)
            if previous is None:
                log.info(f"Delete of unknown {entity_type.value} {entity_id}; nothing to do")
                return MutationResult(MutationStatus.NOT_FOUND, entity_type, entity_id)

            self._remote(entity_type, "delete", lambda: self._backend.delete(entity_type, entity_id))

            try:
                self._check_alive(scope, entity_type, entity_id)
            except StaleWriteDiscarded as e:
                log.info(str(e))
                return MutationResult(MutationStatus.DISCARDED, entity_type, entity_id, previous)

            with self._store.writer():
                self._store.remove(entity_type, entity_id)
                affected = self._cascade(entity_type, previous, None)

            self._channel.emit()
        self._notify_success(f"{entity_type.value.capitalize()} '{display_name(previous)}' deleted")
        return MutationResult(MutationStatus.APPLIED, entity_type, entity_id, previous, frozenset(affected))

    def set_task_status(self, task_id: str, status: TaskStatus,
                        scope: Optional[Scope] = None) -> MutationResult:
        return self.update(EntityType.TASK, task_id, {"status": TaskStatus(status)}, scope)

    def add_project_member(self, project_id: str, member_id: str,
                           scope: Optional[Scope] = None) -> MutationResult:
        """Put a member on a project's team; a member joins a team only once."""
        with self._lock:
            project = self._team_project(project_id)
            if member_id in project.member_ids:
                raise ConstraintViolation(f"Member {member_id} is already on the team of {project.name}")
            return self.update(EntityType.PROJECT, project_id,
                               {"member_ids": project.member_ids + [member_id]}, scope)

    def remove_project_member(self, project_id: str, member_id: str,
                              scope: Optional[Scope] = None) -> MutationResult:
        with self._lock:
            project = self._team_project(project_id)
            if member_id not in project.member_ids:
                raise ConstraintViolation(f"Member {member_id} is not on the team of {project.name}")
            remaining = [m for m in project.member_ids if m != member_id]
            return self.update(EntityType.PROJECT, project_id, {"member_ids": remaining}, scope)

    def reload(self) -> Dict[EntityType, int]:
        """
        Pull every collection from the backend and make it the store's state.

        Derived fields are recomputed from scratch before the refresh signal.
        """
        with self._lock:
            records = {}
            for entity_type in EntityType:
                records[entity_type] = self._remote(entity_type, "list",
                                                    lambda t=entity_type: self._backend.list(t))
            with self._store.writer():
                self._store.replace_all(records)
                for project in self._store.list(EntityType.PROJECT):
                    self._refresh_project(project.id)
                for member in self._store.list(EntityType.MEMBER):
                    self._refresh_member(member.id)
            counts = {entity_type: len(items) for entity_type, items in records.items()}
            self._channel.emit()
        return counts

    def _team_project(self, project_id: str):
        project = self._store.get(EntityType.PROJECT, project_id)
        if project is None:
            raise EntityNotFound(EntityType.PROJECT, project_id)
        return project

    # -- Stages -------------------------------------------------------------

    def _validated(self, entity_type: EntityType, data: Dict[str, Any]) -> Entity:
        try:
            return model_for(entity_type).model_validate(data)
        except ValidationError as e:
            raise ConstraintViolation(f"Invalid {entity_type.value}: {e}") from e

    def _draft(self, entity_type: EntityType, data: Dict[str, Any]) -> Entity:
        if not data.get("id"):
            data["id"] = _DRAFT_ID
        return self._validated(entity_type, data)

    def _apply_rules(self, entity_type: EntityType, previous: Optional[Entity], draft: Entity):
        """Field rules that depend on the transition, not just the new value."""
        if entity_type != EntityType.TASK:
            return
        was_done = previous is not None and previous.is_done
        if draft.is_done and not was_done:
            draft.completed_at = draft.completed_at or self._clock()
        elif not draft.is_done:
            draft.completed_at = None

    def _validate(self, entity_type: EntityType, draft: Entity, previous: Optional[Entity]):
        """
        Every non-null reference must resolve. On update only references that
        change are checked, so an entity whose reference already dangles can
        still be edited.
        """
        for field_name, target in REFERENCES[entity_type]:
            value = getattr(draft, field_name)
            if value is None:
                continue
            if previous is not None and getattr(previous, field_name) == value:
                continue
            if not self._store.exists(target, value):
                raise ReferenceNotFound(target, value, field=field_name)

        if entity_type == EntityType.PROJECT:
            known = set(previous.member_ids) if previous is not None else set()
            for member_id in draft.member_ids:
                if member_id not in known and not self._store.exists(EntityType.MEMBER, member_id):
                    raise ReferenceNotFound(EntityType.MEMBER, member_id, field="member_ids")

        if entity_type == EntityType.MEMBER:
            email = draft.email.lower()
            for member in self._store.list(EntityType.MEMBER):
                if member.id != draft.id and member.email.lower() == email:
                    raise ConstraintViolation(f"Email {draft.email} is already used by {member.name}")

    def _remote(self, entity_type: EntityType, action: str, call: Callable):
        try:
            return call()
        except TransportFailure as e:
            log.error(f"Backend {action} of {entity_type.value} failed: {e}")
            self._notify_error(f"Failed to {action} {entity_type.value}")
            raise
        except (ConnectionError, TimeoutError, OSError) as e:
            log.error(f"Backend {action} of {entity_type.value} failed: {e}")
            self._notify_error(f"Failed to {action} {entity_type.value}")
            raise TransportFailure(str(e)) from e

    def _check_alive(self, scope: Optional[Scope], entity_type: EntityType, entity_id: Optional[str]):
        if scope is not None and not scope.alive:
            raise StaleWriteDiscarded(entity_type, entity_id)

    def _commit(self, entity_type: EntityType, record: Record, previous: Optional[Entity],
                scope: Optional[Scope], verb: str) -> MutationResult:
        try:
            self._check_alive(scope, entity_type, record.get("id"))
        except StaleWriteDiscarded as e:
            log.info(str(e))
            return MutationResult(MutationStatus.DISCARDED, entity_type, record.get("id"))

        with self._store.writer():
            stored = self._store.upsert(entity_type, record)
            affected = self._cascade(entity_type, previous, stored)
            current = self._store.get(entity_type, stored.id)

        self._channel.emit()
        self._notify_success(f"{entity_type.value.capitalize()} '{display_name(current)}' {verb}")
        return MutationResult(MutationStatus.APPLIED, entity_type, current.id, current, frozenset(affected))

    # -- Cascade ------------------------------------------------------------

    def _cascade(self, entity_type: EntityType, previous: Optional[Entity],
                 current: Optional[Entity]) -> Set[EntityType]:
        """Recompute every derived field the mutation can have changed."""
        affected = {entity_type}
        projects: Set[str] = set()
        members: Set[str] = set()
        versions = [e for e in (previous, current) if e is not None]

        if entity_type == EntityType.TASK:
            for task in versions:
                projects.add(task.project_id)
                members.add(task.assignee_id)
            for project_id in projects:
                project = self._store.get(EntityType.PROJECT, project_id)
                if project is not None:
                    members.add(project.manager_id)
        elif entity_type == EntityType.PROJECT:
            project_id = versions[0].id
            if current is not None:
                projects.add(project_id)
            for project in versions:
                members.add(project.manager_id)
                members.update(project.member_ids)
            # Members only count projects that exist
            members.update(t.assignee_id for t in self._store.list(EntityType.TASK)
                           if t.project_id == project_id)
        elif entity_type == EntityType.MEMBER:
            member_id = versions[0].id
            members.add(member_id)
            # Team sizes only count members that exist
            projects.update(p.id for p in self._store.list(EntityType.PROJECT) if member_id in p.member_ids)

        projects.discard(None)
        members.discard(None)
        for project_id in sorted(projects):
            if self._refresh_project(project_id):
                affected.add(EntityType.PROJECT)
        for member_id in sorted(members):
            if self._refresh_member(member_id):
                affected.add(EntityType.MEMBER)
        log.debug(f"Cascade for {entity_type.value}: projects={sorted(projects)} members={sorted(members)}")
        return affected

    def _refresh_project(self, project_id: str) -> bool:
        project = self._store.get(EntityType.PROJECT, project_id)
        if project is None:
            # Dangling project reference: nothing to recompute
            return False
        tasks = [t for t in self._store.list(EntityType.TASK) if t.project_id == project_id]
        team = project_team(project, self._store.list(EntityType.MEMBER))
        stats = project_progress(tasks, self._clock(), len(team))
        self._store.upsert(EntityType.PROJECT, project.model_copy(update={"task_stats": stats}))
        return True

    def _refresh_member(self, member_id: str) -> bool:
        member = self._store.get(EntityType.MEMBER, member_id)
        if member is None:
            return False
        tasks = self._store.list(EntityType.TASK)
        projects = self._store.list(EntityType.PROJECT)
        existing = {p.id for p in projects}
        involved = member_project_ids(member_id, tasks, projects) & existing
        assigned = sum(1 for t in tasks if t.assignee_id == member_id)
        self._store.upsert(EntityType.MEMBER, member.model_copy(update={"tasks": assigned, "projects": len(involved)}))
        return True

    # -- Notifications ------------------------------------------------------

    def _notify_success(self, message: str):
        try:
            self._notifier.success(message)
        except Exception:
            log.exception("Notifier failed")

    def _notify_error(self, message: str):
        try:
            self._notifier.error(message)
        except Exception:
            log.exception("Notifier failed")
