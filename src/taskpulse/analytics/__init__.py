"""
Aggregation Engine: derived analytics computed from entity store snapshots.
"""

from .periods import DateRange, comparison_periods
from .metrics import (
    CategoryShare,
    CompletionMetrics,
    DayBucket,
    MemberPerformance,
    MonthBucket,
    TimeMetrics,
    WeeklyActivity,
    category_distribution,
    efficiency,
    monthly_trend,
    overdue_rate,
    percent,
    project_progress,
    project_team,
    task_completion,
    team_performance,
    time_metrics,
    weekly_activity,
)
from .filters import AnalyticsFilter, filter_tasks
from .dashboard import DashboardMetrics, dashboard_metrics, monthly_trend_for, team_performance_for

__all__ = [
    'DateRange',
    'comparison_periods',
    'CategoryShare',
    'CompletionMetrics',
    'DayBucket',
    'MemberPerformance',
    'MonthBucket',
    'TimeMetrics',
    'WeeklyActivity',
    'category_distribution',
    'efficiency',
    'monthly_trend',
    'overdue_rate',
    'percent',
    'project_progress',
    'project_team',
    'task_completion',
    'team_performance',
    'time_metrics',
    'weekly_activity',
    'AnalyticsFilter',
    'filter_tasks',
    'DashboardMetrics',
    'dashboard_metrics',
    'monthly_trend_for',
    'team_performance_for',
]
