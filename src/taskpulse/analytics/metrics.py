"""
Aggregation Engine - pure metric functions over entity snapshots.

Nothing in this module mutates its input or raises on degenerate data: empty
lists and zero denominators map to 0 (or "0.0" for fields displayed as
one-decimal strings). The results are rendered straight to end users, so NaN
and Infinity must never escape.
"""
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from taskpulse.models import Project, Task, TaskStats, TeamMember, utc_now
from .periods import DateRange, Moment, as_date, in_preceding, month_start, shift_month

DEFAULT_HOURS_BY_PRIORITY = {"high": 4.0, "medium": 2.0, "low": 1.0}


def percent(part: int, whole: int) -> int:
    """``part / whole * 100`` rounded half-up; 0 for an empty whole."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)

def percent_change(current: float, previous: float) -> str:
    """
    Period-over-period change as a one-decimal string.

    With nothing in the previous period the current value itself is scaled
    (as if the previous period had one), and two empty periods give "0.0".
    """
    if previous == 0:
        return f"{current * 100:.1f}" if current else "0.0"
    return f"{(current - previous) / previous * 100:.1f}"

def task_hours(task: Task, hours_by_priority: Optional[Mapping[str, float]] = None) -> float:
    """Explicit estimate when present, otherwise a guess from the priority."""
    if task.estimated_hours is not None:
        return float(task.estimated_hours)
    table = hours_by_priority or DEFAULT_HOURS_BY_PRIORITY
    return float(table.get(task.priority.value, 0.0))


class CompletionMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    completed: int = 0
    previous_completed: int = 0
    percent_change: str = "0.0"

class DayBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: str = Field(description="Short weekday name, e.g. Mon")
    date: date
    tasks: int = 0
    hours: float = 0.0

class MonthBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: str = Field(description="Short month name, e.g. Jan")
    start: date = Field(description="First day of the month")
    completed: int = 0
    created: int = 0

class CategoryShare(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: int
    percentage: str = "0.0"

class TimeMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    average_days: str = "0.0"
    days_change: str = "0.0"
    tasks_analyzed: int = 0

class MemberPerformance(BaseModel):
    model_config = ConfigDict(frozen=True)

    member_id: str
    name: str
    tasks: int = 0
    hours: float = 0.0
    efficiency: int = 0


def project_progress(tasks: Iterable[Task], now: Optional[Moment] = None, team_members: int = 0) -> TaskStats:
    """Completion stats for one project's tasks; overdue is judged against ``now``."""
    tasks = tuple(tasks)
    total = len(tasks)
    completed = sum(1 for t in tasks if t.is_done)
    return TaskStats(
        total_tasks=total,
        completed_tasks=completed,
        progress=percent(completed, total),
        pending_tasks=total - completed,
        overdue_tasks=len(overdue_tasks(tasks, now if now is not None else utc_now())),
        team_members=team_members,
    )

def project_team(project: Project, members: Iterable[TeamMember]) -> List[str]:
    """Ids on the project's team that still resolve to a member, in join order."""
    existing = {m.id for m in members}
    return [member_id for member_id in project.member_ids if member_id in existing]

def task_completion(tasks: Iterable[Task], period: DateRange) -> CompletionMetrics:
    """Tasks completed within ``period`` against the equally long period before it."""
    current = 0
    previous = 0
    for task in tasks:
        finished = task.completion_time
        if period.contains(finished):
            current += 1
        elif in_preceding(period, finished):
            previous += 1
    return CompletionMetrics(
        completed=current,
        previous_completed=previous,
        percent_change=percent_change(current, previous),
    )

def _on_time(task: Task) -> bool:
    return task.due_date is None or task.completion_time.date() <= task.due_date

def efficiency(tasks: Iterable[Task]) -> int:
    """Share of completed tasks finished on or before their due date."""
    done = [t for t in tasks if t.is_done]
    return percent(sum(1 for t in done if _on_time(t)), len(done))

def overdue_tasks(tasks: Iterable[Task], now: Moment) -> List[Task]:
    today = as_date(now)
    return [t for t in tasks if not t.is_done and t.due_date is not None and t.due_date < today]

def overdue_rate(tasks: Iterable[Task], now: Moment) -> int:
    """Share of open tasks whose due date has passed."""
    open_tasks = [t for t in tasks if not t.is_done]
    return percent(len(overdue_tasks(open_tasks, now)), len(open_tasks))


class WeeklyActivity:
    """
    Seven daily completion buckets ending on ``now``'s day.

    Iterating computes the buckets on demand; the object can be iterated any
    number of times and always yields exactly seven buckets, oldest first.
    """

    DAYS = 7

    def __init__(self, tasks: Iterable[Task], now: Moment,
                 hours_by_priority: Optional[Mapping[str, float]] = None):
        self._tasks = tuple(tasks)
        self._end = as_date(now)
        self._hours = hours_by_priority

    def __len__(self) -> int:
        return self.DAYS

    def __iter__(self) -> Iterator[DayBucket]:
        for offset in range(self.DAYS - 1, -1, -1):
            day = self._end - timedelta(days=offset)
            finished = [t for t in self._tasks
                        if t.completion_time is not None and t.completion_time.date() == day]
            yield DayBucket(
                day=day.strftime('%a'),
                date=day,
                tasks=len(finished),
                hours=sum(task_hours(t, self._hours) for t in finished),
            )

    def to_list(self) -> List[DayBucket]:
        return list(self)

def weekly_activity(tasks: Iterable[Task], now: Moment,
                    hours_by_priority: Optional[Mapping[str, float]] = None) -> WeeklyActivity:
    return WeeklyActivity(tasks, now, hours_by_priority)

def monthly_trend(tasks: Iterable[Task], now: Moment, months: int = 6) -> List[MonthBucket]:
    """Completed and created counts for ``months`` calendar months ending with now's month."""
    if months < 1:
        return []
    tasks = tuple(tasks)
    today = as_date(now)
    buckets = []
    for delta in range(-(months - 1), 1):
        year, month = shift_month(today.year, today.month, delta)
        key = (year, month)
        completed = sum(1 for t in tasks if t.completion_time is not None
                        and (t.completion_time.year, t.completion_time.month) == key)
        created = sum(1 for t in tasks if (t.created_at.year, t.created_at.month) == key)
        start = month_start(year, month)
        buckets.append(MonthBucket(month=start.strftime('%b'), start=start,
                                   completed=completed, created=created))
    return buckets

def category_distribution(tasks: Iterable[Task]) -> List[CategoryShare]:
    """Tag frequencies (case-insensitive) in order of first appearance."""
    counts: Dict[str, int] = {}
    for task in tasks:
        for tag in task.tags:
            key = tag.lower()
            counts[key] = counts.get(key, 0) + 1
    total = sum(counts.values())
    return [
        CategoryShare(
            name=name[:1].upper() + name[1:],
            value=value,
            percentage=f"{value / total * 100:.1f}" if total else "0.0",
        )
        for name, value in counts.items()
    ]

def _average_days(tasks: Sequence[Task]) -> float:
    if not tasks:
        return 0.0
    seconds = sum(max((t.completion_time - t.created_at).total_seconds(), 0.0) for t in tasks)
    return seconds / len(tasks) / 86400

def time_metrics(tasks: Iterable[Task], period: DateRange) -> TimeMetrics:
    """Average creation-to-completion time in days, against the previous period."""
    tasks = tuple(tasks)
    current = [t for t in tasks if period.contains(t.completion_time)]
    previous = [t for t in tasks if in_preceding(period, t.completion_time)]
    current_days = _average_days(current)
    return TimeMetrics(
        average_days=f"{current_days:.1f}",
        days_change=f"{current_days - _average_days(previous):.1f}",
        tasks_analyzed=len(current),
    )

def team_performance(tasks: Iterable[Task], members: Iterable[TeamMember],
                     hours_by_priority: Optional[Mapping[str, float]] = None) -> List[MemberPerformance]:
    """Per-member completions, hour estimate and completion ratio, busiest first."""
    tasks = tuple(tasks)
    results = []
    for member in members:
        assigned = [t for t in tasks if t.assignee_id == member.id]
        done = [t for t in assigned if t.is_done]
        results.append(MemberPerformance(
            member_id=member.id,
            name=member.name,
            tasks=len(done),
            hours=sum(task_hours(t, hours_by_priority) for t in done),
            efficiency=percent(len(done), len(assigned)),
        ))
    return sorted(results, key=lambda r: r.tasks, reverse=True)

def member_project_ids(member_id: str, tasks: Iterable[Task], projects: Iterable) -> set:
    """Projects a member manages, belongs to, or has assigned work in."""
    involved = {p.id for p in projects if p.manager_id == member_id or member_id in p.member_ids}
    involved.update(t.project_id for t in tasks if t.assignee_id == member_id and t.project_id)
    return involved
