from typing import List, Mapping, Optional
from pydantic import BaseModel, ConfigDict

from taskpulse.store import Snapshot
from .filters import AnalyticsFilter, filter_tasks
from .metrics import (
    CategoryShare, CompletionMetrics, DayBucket, MemberPerformance, MonthBucket, TimeMetrics,
    category_distribution, efficiency, monthly_trend, overdue_tasks, overdue_rate,
    task_completion, team_performance, time_metrics, weekly_activity,
)
from .periods import DateRange, Moment, as_datetime


class EfficiencyMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    efficiency: int = 0
    efficiency_change: str = "0.0"
    total_tasks: int = 0
    completed_tasks: int = 0

class OverdueMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    overdue_rate: int = 0
    overdue_tasks: int = 0
    open_tasks: int = 0

class DashboardMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_completion: CompletionMetrics
    time_metrics: TimeMetrics
    category_distribution: List[CategoryShare]
    weekly_activity: List[DayBucket]
    efficiency: EfficiencyMetrics
    overdue: OverdueMetrics


def dashboard_metrics(snapshot: Snapshot, now: Moment, flt: Optional[AnalyticsFilter] = None,
                      comparison_days: int = 30,
                      hours_by_priority: Optional[Mapping[str, float]] = None) -> DashboardMetrics:
    """
    Every dashboard card computed from one snapshot.

    The period-over-period cards compare the trailing ``comparison_days``
    ending at ``now`` (or the filter's date range, when set) with the period
    of equal length before it.
    """
    tasks = filter_tasks(snapshot, flt)
    if flt is not None and flt.date_range is not None:
        period = flt.date_range
    else:
        period = DateRange.trailing(as_datetime(now), comparison_days)
    previous = period.preceding()

    done = [t for t in tasks if t.is_done]
    current_efficiency = efficiency(tasks)
    previous_efficiency = efficiency(t for t in done if previous.start <= t.completion_time < previous.end)
    open_count = len(tasks) - len(done)

    return DashboardMetrics(
        task_completion=task_completion(tasks, period),
        time_metrics=time_metrics(tasks, period),
        category_distribution=category_distribution(tasks),
        weekly_activity=weekly_activity(tasks, now, hours_by_priority).to_list(),
        efficiency=EfficiencyMetrics(
            efficiency=current_efficiency,
            efficiency_change=f"{current_efficiency - previous_efficiency:.1f}",
            total_tasks=len(tasks),
            completed_tasks=len(done),
        ),
        overdue=OverdueMetrics(
            overdue_rate=overdue_rate(tasks, now),
            overdue_tasks=len(overdue_tasks(tasks, now)),
            open_tasks=open_count,
        ),
    )

def monthly_trend_for(snapshot: Snapshot, now: Moment, months: int = 6,
                      flt: Optional[AnalyticsFilter] = None) -> List[MonthBucket]:
    return monthly_trend(filter_tasks(snapshot, flt), now, months)

def team_performance_for(snapshot: Snapshot, flt: Optional[AnalyticsFilter] = None,
                         hours_by_priority: Optional[Mapping[str, float]] = None) -> List[MemberPerformance]:
    """Team performance; a user filter is ignored here since every member is listed."""
    members = snapshot.members
    if flt is not None and flt.department_id:
        members = [m for m in members if m.department_id == flt.department_id]
    if flt is not None:
        flt = flt.model_copy(update={'user_id': None, 'department_id': None})
    return team_performance(filter_tasks(snapshot, flt), members, hours_by_priority)
