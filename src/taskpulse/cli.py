"""
Command Line Interface for taskpulse.
"""

import click
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path

from .version import VERSION
from .analytics import AnalyticsFilter, DateRange
from .analytics.periods import as_datetime
from .backend import YAMLFileBackend
from .config import get_settings
from .coordinator import MutationResult
from .models import EntityType, Priority, ProjectStatus, TaskStatus, utc_now
from .notify import EchoNotifier
from .recovery import TaskPulseError
from .views import AnalyticsView, DashboardView, ProjectDetailView, TeamDashboardView, task_rows
from .workspace import Workspace

STATUS_ICONS = {
    TaskStatus.TODO: "⬜",
    TaskStatus.IN_PROGRESS: "🔄",
    TaskStatus.DONE: "✅",
}

DATE = click.DateTime(formats=["%Y-%m-%d"])


def _workspace(ctx) -> Workspace:
    data_file = ctx.obj.get("data_file") if ctx.obj else None
    return Workspace(notifier=EchoNotifier(), data_file=data_file)

@contextmanager
def _opened(ctx):
    """An opened workspace; load and write errors end the command with exit code 1."""
    try:
        with _workspace(ctx) as workspace:
            yield workspace
    except TaskPulseError as e:
        _fail(str(e))

def _fail(message: str):
    click.echo(f"❌ {message}", err=True)
    raise SystemExit(1)

def _mutate(ctx, action):
    """Run one coordinator mutation inside an opened workspace."""
    with _opened(ctx) as workspace:
        result: MutationResult = action(workspace.coordinator)
    if result.entity_id and result.applied:
        click.echo(f"   🆔 {result.entity_id}")
    elif not result.applied:
        click.echo(f"📭 Nothing to do ({result.status.value})")
    return result

def _options(**values):
    """Drop options the user did not pass so updates only touch what was given."""
    return {k: v for k, v in values.items() if v is not None}

def _day(value):
    return value.date() if value is not None else None


@click.group()
@click.version_option(version=VERSION, prog_name="taskpulse")
@click.option('--data-file', type=click.Path(path_type=Path), default=None,
              help='Workspace data file (default: .taskpulse/data.yml)')
@click.pass_context
def main(ctx, data_file):
    """
    taskpulse - task, project and team tracking with live analytics.
    """
    ctx.ensure_object(dict)
    ctx.obj["data_file"] = data_file


@main.command()
@click.pass_context
def init(ctx):
    """Initialize a new workspace in the current directory."""
    data_file = Path(ctx.obj.get("data_file") or get_settings().data_file)
    if data_file.exists():
        click.echo(f"❌ Workspace already initialized ({data_file} exists)")
        return

    click.echo(f"🚀 Initializing workspace in {data_file.parent.resolve()}")
    try:
        YAMLFileBackend(data_file).initialize()
    except TaskPulseError as e:
        _fail(f"Error initializing workspace: {e}")
    click.echo(f"📋 Created {data_file.name}")
    click.echo("💡 Use 'taskpulse status' to verify your workspace")


@main.command()
@click.pass_context
def status(ctx):
    """Show what the workspace contains."""
    click.echo("🔧 taskpulse")
    click.echo(f"📦 Version: {VERSION}")
    with _opened(ctx) as workspace:
        click.echo(f"📍 Data file: {workspace.data_file}")
        for entity_type in EntityType:
            click.echo(f"   {entity_type.value:<11} {workspace.store.count(entity_type)}")


# -- Tasks ------------------------------------------------------------------

@main.group()
def task():
    """Manage tasks."""
    pass


@task.command("add")
@click.argument('title')
@click.option('--description', default="", help='Task details')
@click.option('--status', type=click.Choice([s.value for s in TaskStatus]), default=TaskStatus.TODO.value)
@click.option('--priority', type=click.Choice([p.value for p in Priority]), default=Priority.MEDIUM.value)
@click.option('--assignee', help='Team member id')
@click.option('--project', help='Project id')
@click.option('--due', type=DATE, help='Due date (YYYY-MM-DD)')
@click.option('--tags', help='Comma-separated tags')
@click.option('--hours', help='Estimated hours')
@click.pass_context
def task_add(ctx, title, description, status, priority, assignee, project, due, tags, hours):
    """Create a task."""
    data = _options(title=title, description=description, status=status, priority=priority,
                    assignee_id=assignee, project_id=project, due_date=_day(due),
                    tags=tags, estimated_hours=hours)
    _mutate(ctx, lambda c: c.create(EntityType.TASK, data))


@task.command("update")
@click.argument('task_id')
@click.option('--title')
@click.option('--description')
@click.option('--status', type=click.Choice([s.value for s in TaskStatus]))
@click.option('--priority', type=click.Choice([p.value for p in Priority]))
@click.option('--assignee', help='Team member id ("" to unassign)')
@click.option('--project', help='Project id ("" to detach)')
@click.option('--due', type=DATE)
@click.option('--tags')
@click.option('--hours')
@click.pass_context
def task_update(ctx, task_id, title, description, status, priority, assignee, project, due, tags, hours):
    """Change fields of a task."""
    changes = _options(title=title, description=description, status=status, priority=priority,
                       assignee_id=assignee, project_id=project, due_date=_day(due),
                       tags=tags, estimated_hours=hours)
    if not changes:
        click.echo("💡 Nothing to change")
        return
    _mutate(ctx, lambda c: c.update(EntityType.TASK, task_id, changes))


@task.command("done")
@click.argument('task_id')
@click.pass_context
def task_done(ctx, task_id):
    """Mark a task as done."""
    _mutate(ctx, lambda c: c.set_task_status(task_id, TaskStatus.DONE))


@task.command("delete")
@click.argument('task_id')
@click.pass_context
def task_delete(ctx, task_id):
    """Delete a task."""
    _mutate(ctx, lambda c: c.delete(EntityType.TASK, task_id))


@task.command("list")
@click.option('--project', help='Only tasks of this project')
@click.option('--assignee', help='Only tasks of this member')
@click.pass_context
def task_list(ctx, project, assignee):
    """List tasks."""
    with _opened(ctx) as workspace:
        snapshot = workspace.store.snapshot()
        tasks = [t for t in snapshot.tasks
                 if (project is None or t.project_id == project)
                 and (assignee is None or t.assignee_id == assignee)]
        if not tasks:
            click.echo("📭 No tasks found")
            return
        for row in task_rows(snapshot, tasks, workspace.settings.unknown_label):
            t = row.task
            click.echo(f"{STATUS_ICONS[t.status]} {t.title}  [{t.priority.value}]  🆔 {t.id}")
            if row.project_name:
                click.echo(f"   📁 {row.project_name}")
            if row.assignee_name:
                click.echo(f"   👤 {row.assignee_name}")
            if t.due_date:
                click.echo(f"   📅 {t.due_date.isoformat()}")
            if t.tags:
                click.echo(f"   🏷️  {', '.join(t.tags)}")


# -- Projects ---------------------------------------------------------------

@main.group()
def project():
    """Manage projects."""
    pass


@project.command("add")
@click.argument('name')
@click.option('--description', default="")
@click.option('--status', type=click.Choice([s.value for s in ProjectStatus]), default=ProjectStatus.PLANNING.value)
@click.option('--priority', type=click.Choice([p.value for p in Priority]), default=Priority.MEDIUM.value)
@click.option('--manager', help='Team member id')
@click.option('--department', help='Department id')
@click.option('--start', type=DATE, help='Start date (YYYY-MM-DD)')
@click.option('--end', type=DATE, help='End date (YYYY-MM-DD)')
@click.option('--budget')
@click.option('--tags')
@click.pass_context
def project_add(ctx, name, description, status, priority, manager, department, start, end, budget, tags):
    """Create a project."""
    data = _options(name=name, description=description, status=status, priority=priority,
                    manager_id=manager, department_id=department, start_date=_day(start),
                    end_date=_day(end), budget=budget, tags=tags)
    _mutate(ctx, lambda c: c.create(EntityType.PROJECT, data))


@project.command("update")
@click.argument('project_id')
@click.option('--name')
@click.option('--description')
@click.option('--status', type=click.Choice([s.value for s in ProjectStatus]))
@click.option('--priority', type=click.Choice([p.value for p in Priority]))
@click.option('--manager')
@click.option('--department')
@click.option('--end', type=DATE)
@click.option('--budget')
@click.pass_context
def project_update(ctx, project_id, name, description, status, priority, manager, department, end, budget):
    """Change fields of a project."""
    changes = _options(name=name, description=description, status=status, priority=priority,
                       manager_id=manager, department_id=department, end_date=_day(end), budget=budget)
    if not changes:
        click.echo("💡 Nothing to change")
        return
    _mutate(ctx, lambda c: c.update(EntityType.PROJECT, project_id, changes))


@project.command("delete")
@click.argument('project_id')
@click.pass_context
def project_delete(ctx, project_id):
    """Delete a project; its tasks are kept."""
    _mutate(ctx, lambda c: c.delete(EntityType.PROJECT, project_id))


@project.command("join")
@click.argument('project_id')
@click.argument('member_id')
@click.pass_context
def project_join(ctx, project_id, member_id):
    """Add a member to a project's team."""
    _mutate(ctx, lambda c: c.add_project_member(project_id, member_id))


@project.command("leave")
@click.argument('project_id')
@click.argument('member_id')
@click.pass_context
def project_leave(ctx, project_id, member_id):
    """Remove a member from a project's team."""
    _mutate(ctx, lambda c: c.remove_project_member(project_id, member_id))


@project.command("list")
@click.pass_context
def project_list(ctx):
    """List projects with their progress."""
    with _opened(ctx) as workspace:
        dashboard = workspace.open_view(DashboardView)
        if not dashboard.projects:
            click.echo("📭 No projects found")
            return
        for summary in dashboard.projects:
            stats = summary.stats
            click.echo(f"📁 {summary.project.name}  [{summary.project.status.value}]  🆔 {summary.project.id}")
            click.echo(f"   📊 {stats.completed_tasks}/{stats.total_tasks} tasks ({stats.progress}%)")
            if summary.manager_name:
                click.echo(f"   👤 {summary.manager_name}")


@project.command("show")
@click.argument('project_id')
@click.pass_context
def project_show(ctx, project_id):
    """Show one project and its tasks."""
    with _opened(ctx) as workspace:
        detail = workspace.open_view(ProjectDetailView, project_id)
        click.echo(f"📁 {detail.name}")
        if detail.summary is not None:
            click.echo(f"   📍 Status: {detail.summary.project.status.value}")
            if detail.summary.manager_name:
                click.echo(f"   👤 Manager: {detail.summary.manager_name}")
            if detail.summary.department_name:
                click.echo(f"   🏢 Department: {detail.summary.department_name}")
        click.echo(f"   📊 Progress: {detail.stats.progress}% "
                   f"({detail.stats.completed_tasks}/{detail.stats.total_tasks})")
        click.echo(f"   ⏳ Pending: {detail.stats.pending_tasks}, overdue: {detail.stats.overdue_tasks}")
        if detail.team:
            click.echo("   👥 Team: " + ", ".join(row.member.name for row in detail.team))
        for row in detail.tasks:
            click.echo(f"   {STATUS_ICONS[row.task.status]} {row.task.title}"
                       + (f"  👤 {row.assignee_name}" if row.assignee_name else ""))


# -- Team -------------------------------------------------------------------

@main.group()
def member():
    """Manage team members."""
    pass


@member.command("add")
@click.argument('name')
@click.argument('email')
@click.option('--role', help='Role id')
@click.option('--department', help='Department id')
@click.option('--phone')
@click.option('--skills')
@click.option('--bio')
@click.pass_context
def member_add(ctx, name, email, role, department, phone, skills, bio):
    """Add a team member."""
    data = _options(name=name, email=email, role_id=role, department_id=department,
                    phone=phone, skills=skills, bio=bio)
    _mutate(ctx, lambda c: c.create(EntityType.MEMBER, data))


@member.command("update")
@click.argument('member_id')
@click.option('--name')
@click.option('--email')
@click.option('--role')
@click.option('--department')
@click.pass_context
def member_update(ctx, member_id, name, email, role, department):
    """Change fields of a team member."""
    changes = _options(name=name, email=email, role_id=role, department_id=department)
    if not changes:
        click.echo("💡 Nothing to change")
        return
    _mutate(ctx, lambda c: c.update(EntityType.MEMBER, member_id, changes))


@member.command("delete")
@click.argument('member_id')
@click.pass_context
def member_delete(ctx, member_id):
    """Remove a team member; their tasks stay assigned to an unknown member."""
    _mutate(ctx, lambda c: c.delete(EntityType.MEMBER, member_id))


@member.command("list")
@click.pass_context
def member_list(ctx):
    """List the team."""
    with _opened(ctx) as workspace:
        team = workspace.open_view(TeamDashboardView)
        if not team.members:
            click.echo("📭 No team members found")
            return
        for row in team.members:
            m = row.member
            click.echo(f"👤 {m.name} <{m.email}>  🆔 {m.id}")
            click.echo(f"   🎭 {row.role_name or '-'}   🏢 {row.department_name or '-'}")
            click.echo(f"   📋 {m.tasks} tasks in {m.projects} projects")


@main.group()
def department():
    """Manage departments."""
    pass


@department.command("add")
@click.argument('name')
@click.option('--description', default="")
@click.pass_context
def department_add(ctx, name, description):
    """Create a department."""
    _mutate(ctx, lambda c: c.create(EntityType.DEPARTMENT, {"name": name, "description": description}))


@department.command("delete")
@click.argument('department_id')
@click.pass_context
def department_delete(ctx, department_id):
    """Delete a department; members and projects keep an unknown department."""
    _mutate(ctx, lambda c: c.delete(EntityType.DEPARTMENT, department_id))


@main.group()
def role():
    """Manage roles."""
    pass


@role.command("add")
@click.argument('name')
@click.option('--description', default="")
@click.pass_context
def role_add(ctx, name, description):
    """Create a role."""
    _mutate(ctx, lambda c: c.create(EntityType.ROLE, {"name": name, "description": description}))


@role.command("delete")
@click.argument('role_id')
@click.pass_context
def role_delete(ctx, role_id):
    """Delete a role; members keep an unknown role."""
    _mutate(ctx, lambda c: c.delete(EntityType.ROLE, role_id))


# -- Analytics --------------------------------------------------------------

@main.group()
def analytics():
    """Derived metrics."""
    pass


def _filter(user, department, project, start, end, days):
    """A missing range end means now; a missing start means `days` before the end."""
    date_range = None
    if start or end:
        end = as_datetime(end.date()) if end else utc_now()
        date_range = DateRange(start=start or end - timedelta(days=days), end=end)
    return AnalyticsFilter(user_id=user, department_id=department, project_id=project, date_range=date_range)

def _analytics_options(f):
    f = click.option('--user', help='Only tasks of this member')(f)
    f = click.option('--department', help='Only tasks of members in this department')(f)
    f = click.option('--project', help='Only tasks of this project')(f)
    f = click.option('--start', type=DATE, help='Created on or after (YYYY-MM-DD)')(f)
    f = click.option('--end', type=DATE, help='Created on or before (YYYY-MM-DD)')(f)
    return f


@analytics.command("dashboard")
@_analytics_options
@click.pass_context
def analytics_dashboard(ctx, user, department, project, start, end):
    """Completion, efficiency, overdue and weekly activity."""
    try:
        flt = _filter(user, department, project, start, end, get_settings().comparison_days)
    except ValueError as e:
        _fail(f"Invalid filter: {e}")
    with _opened(ctx) as workspace:
        metrics = workspace.open_view(AnalyticsView, flt=flt).metrics
        completion = metrics.task_completion
        click.echo("📊 Dashboard")
        click.echo(f"   ✅ Completed: {completion.completed} ({completion.percent_change}% vs previous period)")
        click.echo(f"   ⏱️  Average completion: {metrics.time_metrics.average_days} days "
                   f"({metrics.time_metrics.days_change} change)")
        click.echo(f"   ⚡ Efficiency: {metrics.efficiency.efficiency}% "
                   f"({metrics.efficiency.completed_tasks}/{metrics.efficiency.total_tasks} done)")
        click.echo(f"   ⏰ Overdue: {metrics.overdue.overdue_rate}% "
                   f"({metrics.overdue.overdue_tasks} of {metrics.overdue.open_tasks} open)")
        click.echo("   📅 Last 7 days:")
        for bucket in metrics.weekly_activity:
            click.echo(f"      {bucket.day} {bucket.date.isoformat()}  {'█' * bucket.tasks} {bucket.tasks}")
        if metrics.category_distribution:
            click.echo("   🏷️  Categories:")
            for share in metrics.category_distribution:
                click.echo(f"      {share.name}: {share.value} ({share.percentage}%)")


@analytics.command("trend")
@click.option('--months', type=int, default=None, help='Number of months (default from config)')
@_analytics_options
@click.pass_context
def analytics_trend(ctx, months, user, department, project, start, end):
    """Monthly created/completed counts."""
    try:
        flt = _filter(user, department, project, start, end, get_settings().comparison_days)
    except ValueError as e:
        _fail(f"Invalid filter: {e}")
    with _opened(ctx) as workspace:
        if months is not None:
            workspace.settings = workspace.settings.model_copy(update={"trend_months": months})
        view = workspace.open_view(AnalyticsView, flt=flt)
        click.echo("📈 Monthly trend")
        for bucket in view.trend:
            click.echo(f"   {bucket.month} {bucket.start.year}  created {bucket.created:>3}  completed {bucket.completed:>3}")


@analytics.command("team")
@_analytics_options
@click.pass_context
def analytics_team(ctx, user, department, project, start, end):
    """Per-member completions and efficiency."""
    try:
        flt = _filter(user, department, project, start, end, get_settings().comparison_days)
    except ValueError as e:
        _fail(f"Invalid filter: {e}")
    with _opened(ctx) as workspace:
        view = workspace.open_view(AnalyticsView, flt=flt)
        if not view.team:
            click.echo("📭 No team members found")
            return
        click.echo("👥 Team performance")
        for row in view.team:
            click.echo(f"   {row.name}: {row.tasks} done, ~{row.hours:g}h, {row.efficiency}% efficiency")


if __name__ == "__main__":
    main()
