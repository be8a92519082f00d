"""
taskpulse - task, project and team management core.

The package keeps several independent views consistent with one in-memory
entity store: every mutation goes through the Coordinator, which updates the
store, recomputes derived stats and emits a refresh signal that the views
(and the analytics built on them) recompute from.
"""

from .version import VERSION, APP_SCHEMA_VERSION
from .models import (
    EntityType,
    TaskStatus,
    Priority,
    ProjectStatus,
    Task,
    Project,
    TeamMember,
    Department,
    Role,
    TaskStats,
)
from .store import EntityStore, Snapshot
from .broadcast import RefreshChannel, get_channel
from .coordinator import Coordinator, MutationResult, MutationStatus, Scope

__version__ = VERSION

__all__ = [
    "VERSION",
    "APP_SCHEMA_VERSION",
    "EntityType",
    "TaskStatus",
    "Priority",
    "ProjectStatus",
    "Task",
    "Project",
    "TeamMember",
    "Department",
    "Role",
    "TaskStats",
    "EntityStore",
    "Snapshot",
    "RefreshChannel",
    "get_channel",
    "Coordinator",
    "MutationResult",
    "MutationStatus",
    "Scope",
]
