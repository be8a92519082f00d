"""
Independent read-side views.

Each view subscribes to the refresh channel and, on every signal, rebuilds
its own data from a fresh store snapshot. Views never write to the store; a
closed view doubles as a dead scope so late mutation results are dropped.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from taskpulse.analytics import (
    AnalyticsFilter, DashboardMetrics, MemberPerformance, MonthBucket,
    dashboard_metrics, monthly_trend_for, project_progress, project_team, team_performance_for,
)
from taskpulse.analytics.metrics import member_project_ids
from taskpulse.broadcast import RefreshChannel, get_channel
from taskpulse.config import Settings, get_settings
from taskpulse.logs import get_logger
from taskpulse.models import EntityType, Project, Task, TaskStats, TaskStatus, TeamMember, utc_now
from taskpulse.store import EntityStore, Snapshot

log = get_logger("views")

UNKNOWN = "Unknown"


def resolve_name(lookup: Mapping[str, Any], entity_id: Optional[str], unknown: str = UNKNOWN) -> Optional[str]:
    """Display name for a reference; dangling ids show as ``unknown``, no id as None."""
    if entity_id is None:
        return None
    entity = lookup.get(entity_id)
    if entity is None:
        return unknown
    return getattr(entity, 'name', None) or getattr(entity, 'title', None) or unknown


class TaskRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    task: Task
    assignee_name: Optional[str] = None
    project_name: Optional[str] = None

class ProjectSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    project: Project
    stats: TaskStats
    manager_name: Optional[str] = None
    department_name: Optional[str] = None

class MemberRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    member: TeamMember
    role_name: Optional[str] = None
    department_name: Optional[str] = None


def task_rows(snapshot: Snapshot, tasks, unknown: str = UNKNOWN) -> List[TaskRow]:
    members = snapshot.lookup(EntityType.MEMBER)
    projects = snapshot.lookup(EntityType.PROJECT)
    return [
        TaskRow(task=t,
                assignee_name=resolve_name(members, t.assignee_id, unknown),
                project_name=resolve_name(projects, t.project_id, unknown))
        for t in tasks
    ]

def member_rows(snapshot: Snapshot, members, unknown: str = UNKNOWN) -> List[MemberRow]:
    roles = snapshot.lookup(EntityType.ROLE)
    departments = snapshot.lookup(EntityType.DEPARTMENT)
    return [
        MemberRow(member=m,
                  role_name=resolve_name(roles, m.role_id, unknown),
                  department_name=resolve_name(departments, m.department_id, unknown))
        for m in members
    ]

def project_summary(snapshot: Snapshot, project: Project, unknown: str = UNKNOWN) -> ProjectSummary:
    """Stats are recomputed from the snapshot's tasks, never read off the project."""
    team = project_team(project, snapshot.members)
    return ProjectSummary(
        project=project,
        stats=project_progress(snapshot.tasks_for_project(project.id), team_members=len(team)),
        manager_name=resolve_name(snapshot.lookup(EntityType.MEMBER), project.manager_id, unknown),
        department_name=resolve_name(snapshot.lookup(EntityType.DEPARTMENT), project.department_id, unknown),
    )


class View:
    """Base class: subscribe on creation, recompute on every refresh signal."""

    def __init__(self, store: EntityStore, channel: Optional[RefreshChannel] = None,
                 settings: Optional[Settings] = None):
        self._store = store
        self._channel = channel or get_channel()
        self._settings = settings or get_settings()
        self.alive = True
        self.refresh_count = 0
        self._unsubscribe: Optional[Callable[[], None]] = self._channel.subscribe(self.refresh)
        self.refresh()

    @property
    def unknown(self) -> str:
        return self._settings.unknown_label

    def refresh(self):
        if not self.alive:
            return
        self._recompute(self._store.snapshot())
        self.refresh_count += 1
        log.debug(f"{type(self).__name__} recomputed ({self.refresh_count})")

    def _recompute(self, snapshot: Snapshot):
        raise NotImplementedError

    def close(self):
        """Stop listening; in-flight mutations started from this view are dropped."""
        self.alive = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


class DashboardView(View):
    RECENT_LIMIT = 5

    def _recompute(self, snapshot: Snapshot):
        self.status_counts: Dict[TaskStatus, int] = {status: 0 for status in TaskStatus}
        for task in snapshot.tasks:
            self.status_counts[task.status] += 1
        recent = sorted(snapshot.tasks, key=lambda t: t.updated_at, reverse=True)[:self.RECENT_LIMIT]
        self.recent_tasks = task_rows(snapshot, recent, self.unknown)
        self.projects = [project_summary(snapshot, p, self.unknown) for p in snapshot.projects]


class AnalyticsView(View):
    """The analytics page: dashboard cards, monthly trend and team performance."""

    def __init__(self, store: EntityStore, channel: Optional[RefreshChannel] = None,
                 settings: Optional[Settings] = None, flt: Optional[AnalyticsFilter] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.filter = flt
        self._clock = clock
        super().__init__(store, channel, settings)

    def set_filter(self, flt: Optional[AnalyticsFilter]):
        self.filter = flt
        self.refresh()

    def _recompute(self, snapshot: Snapshot):
        now = self._clock()
        settings = self._settings
        self.metrics: DashboardMetrics = dashboard_metrics(
            snapshot, now, self.filter,
            comparison_days=settings.comparison_days,
            hours_by_priority=settings.hours_by_priority,
        )
        self.trend: List[MonthBucket] = monthly_trend_for(snapshot, now, settings.trend_months, self.filter)
        self.team: List[MemberPerformance] = team_performance_for(
            snapshot, self.filter, settings.hours_by_priority)


class ProjectDetailView(View):
    """One project with its tasks and team; a deleted project still renders, as "Unknown"."""

    def __init__(self, store: EntityStore, project_id: str, channel: Optional[RefreshChannel] = None,
                 settings: Optional[Settings] = None):
        self.project_id = project_id
        super().__init__(store, channel, settings)

    def _recompute(self, snapshot: Snapshot):
        project = snapshot.find(EntityType.PROJECT, self.project_id)
        tasks = snapshot.tasks_for_project(self.project_id)
        self.exists = project is not None
        self.name = project.name if project is not None else self.unknown
        self.summary = project_summary(snapshot, project, self.unknown) if project is not None else None
        team = project_team(project, snapshot.members) if project is not None else []
        self.stats = project_progress(tasks, team_members=len(team))
        self.tasks = task_rows(snapshot, tasks, self.unknown)
        self.team = member_rows(snapshot, [snapshot.find(EntityType.MEMBER, m) for m in team], self.unknown)


class TeamDashboardView(View):
    def _recompute(self, snapshot: Snapshot):
        existing = {p.id for p in snapshot.projects}
        counted = [
            m.model_copy(update={
                "tasks": len(snapshot.tasks_for_member(m.id)),
                "projects": len(member_project_ids(m.id, snapshot.tasks, snapshot.projects) & existing),
            })
            for m in sorted(snapshot.members, key=lambda m: m.name.lower())
        ]
        self.members = member_rows(snapshot, counted, self.unknown)

    def member(self, member_id: str) -> Optional[MemberRow]:
        return next((row for row in self.members if row.member.id == member_id), None)
