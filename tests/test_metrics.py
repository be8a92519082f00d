"""Unit tests for the aggregation engine."""

import itertools
import pytest
from datetime import date, datetime, timedelta, timezone

from taskpulse.analytics import (
    AnalyticsFilter, DateRange, WeeklyActivity, category_distribution, comparison_periods, dashboard_metrics,
    efficiency, filter_tasks, monthly_trend, overdue_rate, percent, project_progress,
    task_completion, team_performance, time_metrics, weekly_activity,
)
from taskpulse.analytics.metrics import member_project_ids, percent_change, project_team, task_hours
from taskpulse.analytics.periods import in_preceding, shift_month
from taskpulse.models import EntityType, Project, Task, TeamMember
from taskpulse.store import EntityStore

NOW = datetime(2024, 6, 15, 12, 0, 0)
# NOW seen from a clock thirteen hours ahead of UTC, already on the next day
NOW_AHEAD = datetime(2024, 6, 16, 1, 0, 0, tzinfo=timezone(timedelta(hours=13)))

_ids = itertools.count(1)


def make_task(**fields):
    fields.setdefault("id", f"t{next(_ids)}")
    fields.setdefault("title", "task")
    fields.setdefault("created_at", NOW - timedelta(days=2))
    fields.setdefault("updated_at", fields["created_at"])
    return Task(**fields)

def done_task(completed_at, **fields):
    return make_task(status="done", completed_at=completed_at, **fields)


class TestPercent:
    """Test the rounding helpers."""

    def test_half_up(self):
        assert percent(1, 2) == 50
        assert percent(1, 3) == 33
        assert percent(2, 3) == 67
        assert percent(1, 8) == 13

    def test_empty_whole(self):
        assert percent(0, 0) == 0
        assert percent(3, 0) == 0

    def test_always_in_range(self):
        """Any completed/total pair stays within 0..100."""
        for total in range(0, 25):
            for part in range(0, total + 1):
                assert 0 <= percent(part, total) <= 100

    def test_percent_change(self):
        """Test period-over-period change strings."""
        assert percent_change(0, 0) == "0.0"
        assert percent_change(3, 0) == "300.0"
        assert percent_change(3, 2) == "50.0"
        assert percent_change(1, 2) == "-50.0"


class TestProjectProgress:
    """Test project progress stats."""

    def test_empty(self):
        stats = project_progress([])
        assert (stats.total_tasks, stats.completed_tasks, stats.progress) == (0, 0, 0)

    def test_partial(self):
        tasks = [make_task(), make_task(), done_task(NOW), done_task(NOW)]
        stats = project_progress(tasks)
        assert stats.total_tasks == 4
        assert stats.completed_tasks == 2
        assert stats.progress == 50

    def test_all_done(self):
        assert project_progress([done_task(NOW)]).progress == 100

    def test_pending_overdue_and_team(self):
        tasks = [
            make_task(due_date=date(2024, 6, 1)),
            make_task(due_date=date(2024, 6, 15)),
            make_task(),
            done_task(NOW, due_date=date(2024, 6, 1)),
        ]
        stats = project_progress(tasks, NOW, team_members=2)
        assert (stats.pending_tasks, stats.overdue_tasks, stats.team_members) == (3, 1, 2)
        assert project_progress(tasks, date(2024, 5, 1)).overdue_tasks == 0

    def test_project_team_skips_deleted_members(self):
        project = Project(id="p1", name="a", member_ids=["m2", "gone", "m1"])
        members = [TeamMember(id="m1", name="A", email="a@x.io"), TeamMember(id="m2", name="B", email="b@x.io")]
        assert project_team(project, members) == ["m2", "m1"]


class TestTaskCompletion:
    """Test completion counts against the previous period."""

    def test_current_and_previous(self):
        period = DateRange.trailing(NOW, 30)
        tasks = [
            done_task(NOW - timedelta(days=1)),
            done_task(NOW - timedelta(days=2)),
            done_task(NOW - timedelta(days=40)),
            done_task(NOW - timedelta(days=90)),
            make_task(),
        ]
        metrics = task_completion(tasks, period)
        assert metrics.completed == 2
        assert metrics.previous_completed == 1
        assert metrics.percent_change == "100.0"

    def test_nothing_completed(self):
        metrics = task_completion([make_task()], DateRange.trailing(NOW, 30))
        assert metrics.completed == 0
        assert metrics.percent_change == "0.0"

    def test_falls_back_to_updated_at(self):
        """Done tasks without completed_at count by their last update."""
        task = make_task(status="done", updated_at=NOW - timedelta(hours=3))
        assert task_completion([task], DateRange.trailing(NOW, 30)).completed == 1

    def test_timezone_aware_now(self):
        tasks = [done_task(NOW - timedelta(days=1)), done_task(NOW - timedelta(days=40))]
        metrics = task_completion(tasks, DateRange.trailing(NOW.replace(tzinfo=timezone.utc), 30))
        assert (metrics.completed, metrics.previous_completed) == (1, 1)
        assert task_completion(tasks, DateRange.trailing(NOW_AHEAD, 30)) == metrics


class TestEfficiencyAndOverdue:
    """Test on-time and overdue ratios."""

    def test_efficiency(self):
        tasks = [
            done_task(datetime(2024, 6, 14, 18, 0), due_date=date(2024, 6, 14)),
            done_task(datetime(2024, 6, 14, 18, 0), due_date=date(2024, 6, 13)),
            done_task(datetime(2024, 6, 14, 18, 0)),
            make_task(due_date=date(2024, 1, 1)),
        ]
        assert efficiency(tasks) == 67

    def test_efficiency_without_done_tasks(self):
        assert efficiency([make_task()]) == 0
        assert efficiency([]) == 0

    def test_overdue_rate(self):
        tasks = [
            make_task(due_date=date(2024, 6, 14)),
            make_task(due_date=date(2024, 6, 15)),
            make_task(),
            done_task(NOW, due_date=date(2024, 1, 1)),
        ]
        assert overdue_rate(tasks, NOW) == 33

    def test_overdue_rate_without_open_tasks(self):
        assert overdue_rate([], NOW) == 0
        assert overdue_rate([done_task(NOW)], NOW) == 0


class TestWeeklyActivity:
    """Test the seven-day activity buckets."""

    def test_always_seven_buckets(self):
        activity = weekly_activity([], NOW)
        assert isinstance(activity, WeeklyActivity)
        assert len(activity) == 7
        buckets = activity.to_list()
        assert len(buckets) == 7
        assert all(b.tasks == 0 and b.hours == 0 for b in buckets)

    def test_oldest_first(self):
        buckets = weekly_activity([], NOW).to_list()
        assert buckets[0].date == date(2024, 6, 9)
        assert buckets[-1].date == date(2024, 6, 15)
        assert buckets[0].day == "Sun"
        assert buckets[-1].day == "Sat"

    def test_counts_and_hours(self):
        tasks = [
            done_task(NOW - timedelta(hours=1), priority="high"),
            done_task(NOW - timedelta(hours=2), estimated_hours="2.5"),
            done_task(NOW - timedelta(days=3), priority="low"),
            done_task(NOW - timedelta(days=10)),
            make_task(),
        ]
        buckets = weekly_activity(tasks, NOW).to_list()
        assert buckets[-1].tasks == 2
        assert buckets[-1].hours == 6.5
        assert buckets[3].date == date(2024, 6, 12)
        assert buckets[3].tasks == 1
        assert sum(b.tasks for b in buckets) == 3

    def test_restartable(self):
        """Iterating twice yields the same buckets."""
        activity = weekly_activity([done_task(NOW)], NOW)
        assert list(activity) == list(activity)


class TestMonthlyTrend:
    """Test monthly created/completed buckets."""

    def test_empty_input(self):
        """No tasks still gives one zero bucket per month, consecutive and oldest first."""
        buckets = monthly_trend([], NOW)
        assert [b.month for b in buckets] == ["Jan", "Feb", "Mar", "Apr", "May", "Jun"]
        assert [b.start for b in buckets] == [date(2024, m, 1) for m in range(1, 7)]
        assert all(b.completed == 0 and b.created == 0 for b in buckets)

    def test_year_boundary(self):
        buckets = monthly_trend([], datetime(2024, 2, 10), months=3)
        assert [b.start for b in buckets] == [date(2023, 12, 1), date(2024, 1, 1), date(2024, 2, 1)]

    def test_no_months(self):
        assert monthly_trend([], NOW, months=0) == []

    def test_counts(self):
        tasks = [
            done_task(datetime(2024, 6, 2), created_at=datetime(2024, 5, 20)),
            done_task(datetime(2024, 5, 25), created_at=datetime(2024, 5, 1)),
            make_task(created_at=datetime(2024, 6, 1)),
            make_task(created_at=datetime(2023, 6, 1)),
        ]
        buckets = {b.month: b for b in monthly_trend(tasks, NOW)}
        assert (buckets["May"].created, buckets["May"].completed) == (2, 1)
        assert (buckets["Jun"].created, buckets["Jun"].completed) == (1, 1)

    def test_shift_month(self):
        assert shift_month(2024, 1, -1) == (2023, 12)
        assert shift_month(2024, 12, 1) == (2025, 1)
        assert shift_month(2024, 6, -18) == (2022, 12)


class TestSupplementaryMetrics:
    """Test categories, completion time and team performance."""

    def test_category_distribution(self):
        tasks = [make_task(tags=["UI", "bug"]), make_task(tags="ui")]
        shares = category_distribution(tasks)
        assert [(s.name, s.value, s.percentage) for s in shares] == [
            ("Ui", 2, "66.7"), ("Bug", 1, "33.3"),
        ]
        assert category_distribution([make_task()]) == []

    def test_time_metrics(self):
        period = DateRange.trailing(NOW, 30)
        tasks = [
            done_task(NOW - timedelta(days=1), created_at=NOW - timedelta(days=3)),
            done_task(NOW - timedelta(days=1), created_at=NOW - timedelta(days=5)),
            done_task(NOW - timedelta(days=40), created_at=NOW - timedelta(days=45)),
        ]
        metrics = time_metrics(tasks, period)
        assert metrics.average_days == "3.0"
        assert metrics.days_change == "-2.0"
        assert metrics.tasks_analyzed == 2

    def test_time_metrics_empty(self):
        metrics = time_metrics([], DateRange.trailing(NOW, 30))
        assert (metrics.average_days, metrics.days_change) == ("0.0", "0.0")

    def test_team_performance(self):
        alice = TeamMember(id="m1", name="Alice", email="a@example.com")
        bob = TeamMember(id="m2", name="Bob", email="b@example.com")
        tasks = [
            done_task(NOW, assignee_id="m1", priority="high"),
            done_task(NOW, assignee_id="m1", priority="low"),
            done_task(NOW, assignee_id="m2"),
            make_task(assignee_id="m2"),
            make_task(assignee_id="m2"),
            make_task(assignee_id="m2"),
        ]
        rows = team_performance(tasks, [bob, alice])
        assert [r.name for r in rows] == ["Alice", "Bob"]
        assert (rows[0].tasks, rows[0].hours, rows[0].efficiency) == (2, 5.0, 100)
        assert (rows[1].tasks, rows[1].hours, rows[1].efficiency) == (1, 2.0, 25)

    def test_task_hours(self):
        assert task_hours(make_task(estimated_hours="1.5")) == 1.5
        assert task_hours(make_task(priority="high")) == 4.0
        assert task_hours(make_task(priority="high"), {"high": 8}) == 8.0

    def test_member_project_ids(self):
        projects = [Project(id="p1", name="a", manager_id="m1"), Project(id="p2", name="b")]
        tasks = [make_task(assignee_id="m1", project_id="p2"), make_task(assignee_id="m1", project_id="gone")]
        assert member_project_ids("m1", tasks, projects) == {"p1", "p2", "gone"}

        projects.append(Project(id="p3", name="c", member_ids=["m1"]))
        assert member_project_ids("m1", [], projects) == {"p1", "p3"}


class TestPeriods:
    """Test comparison windows."""

    def test_comparison_periods(self):
        current, previous = comparison_periods(NOW, 30)
        assert current.end == NOW
        assert current.start == NOW - timedelta(days=30)
        assert previous.end == current.start
        assert previous.length == current.length

    def test_preceding_end_is_exclusive(self):
        period = DateRange.trailing(NOW, 30)
        assert period.contains(period.start)
        assert not in_preceding(period, period.start)
        assert in_preceding(period, period.start - timedelta(seconds=1))

    def test_invalid_range(self):
        with pytest.raises(ValueError, match="end must not be before start"):
            DateRange(start=NOW, end=NOW - timedelta(days=1))

    def test_aware_bounds_become_naive_utc(self):
        period = DateRange(start=NOW_AHEAD - timedelta(days=1), end=NOW_AHEAD)
        assert period.end == NOW
        assert period.end.tzinfo is None
        assert period.contains(NOW - timedelta(hours=1))
        assert period.contains(NOW_AHEAD)
        assert in_preceding(period, NOW_AHEAD - timedelta(days=1, seconds=1))


class TestFilterTasks:
    """Test analytics filters."""

    @pytest.fixture
    def snapshot(self):
        store = EntityStore()
        store.upsert(EntityType.MEMBER, {"id": "m1", "name": "Alice", "email": "a@example.com", "departmentId": "d1"})
        store.upsert(EntityType.MEMBER, {"id": "m2", "name": "Bob", "email": "b@example.com", "departmentId": "d2"})
        store.upsert(EntityType.TASK, make_task(id="a", assignee_id="m1", project_id="p1"))
        store.upsert(EntityType.TASK, make_task(id="b", assignee_id="m2", project_id="p1"))
        store.upsert(EntityType.TASK, make_task(id="c", assignee_id="gone",
                                                created_at=NOW - timedelta(days=100)))
        store.upsert(EntityType.TASK, make_task(id="d"))
        return store.snapshot()

    def ids(self, tasks):
        return sorted(t.id for t in tasks)

    def test_no_filter(self, snapshot):
        assert self.ids(filter_tasks(snapshot)) == ["a", "b", "c", "d"]
        assert self.ids(filter_tasks(snapshot, AnalyticsFilter())) == ["a", "b", "c", "d"]

    def test_user_and_project(self, snapshot):
        assert self.ids(filter_tasks(snapshot, AnalyticsFilter(user_id="m1"))) == ["a"]
        assert self.ids(filter_tasks(snapshot, AnalyticsFilter(project_id="p1"))) == ["a", "b"]

    def test_department_drops_dangling_assignees(self, snapshot):
        assert self.ids(filter_tasks(snapshot, AnalyticsFilter(department_id="d2"))) == ["b"]

    def test_date_range(self, snapshot):
        flt = AnalyticsFilter(date_range=DateRange.trailing(NOW, 30))
        assert self.ids(filter_tasks(snapshot, flt)) == ["a", "b", "d"]

    def test_aware_date_range(self, snapshot):
        flt = AnalyticsFilter(date_range=DateRange.trailing(NOW_AHEAD, 30))
        assert self.ids(filter_tasks(snapshot, flt)) == ["a", "b", "d"]


class TestDashboardMetrics:
    """Test the combined dashboard cards."""

    @pytest.fixture
    def snapshot(self):
        store = EntityStore()
        store.upsert(EntityType.TASK, done_task(NOW - timedelta(days=1), due_date=date(2024, 6, 20), tags=["ui"]))
        store.upsert(EntityType.TASK, make_task(due_date=date(2024, 6, 1)))
        store.upsert(EntityType.TASK, make_task(due_date=date(2024, 6, 15)))
        return store.snapshot()

    def test_cards(self, snapshot):
        metrics = dashboard_metrics(snapshot, NOW)
        assert metrics.task_completion.completed == 1
        assert metrics.efficiency.efficiency == 100
        assert (metrics.overdue.overdue_tasks, metrics.overdue.open_tasks, metrics.overdue.overdue_rate) == (1, 2, 50)
        assert metrics.weekly_activity[-1].date == date(2024, 6, 15)
        assert metrics.weekly_activity[-2].tasks == 1

    def test_timezone_aware_now(self, snapshot):
        """Aware clocks are read in UTC, so the local calendar day does not leak in."""
        expected = dashboard_metrics(snapshot, NOW)
        assert dashboard_metrics(snapshot, NOW.replace(tzinfo=timezone.utc)) == expected
        assert dashboard_metrics(snapshot, NOW_AHEAD) == expected

    def test_aware_filter_range(self, snapshot):
        flt = AnalyticsFilter(date_range=DateRange.trailing(NOW_AHEAD, 30))
        metrics = dashboard_metrics(snapshot, NOW_AHEAD, flt)
        assert metrics.efficiency.total_tasks == 3
        assert metrics.task_completion.completed == 1
