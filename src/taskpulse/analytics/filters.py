from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from taskpulse.models import EntityType, Task
from taskpulse.store import Snapshot
from .periods import DateRange


class AnalyticsFilter(BaseModel):
    """Narrows the task set every analytics function sees."""

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = Field(default=None, description="Only tasks assigned to this member")
    department_id: Optional[str] = Field(default=None, description="Only tasks whose assignee is in this department")
    project_id: Optional[str] = Field(default=None, description="Only tasks of this project")
    date_range: Optional[DateRange] = Field(default=None, description="Only tasks created in this range")

    @property
    def is_empty(self) -> bool:
        return not (self.user_id or self.department_id or self.project_id or self.date_range)


def filter_tasks(snapshot: Snapshot, flt: Optional[AnalyticsFilter] = None) -> List[Task]:
    """Apply a filter to the snapshot's tasks. No filter keeps everything."""
    tasks = list(snapshot.tasks)
    if flt is None or flt.is_empty:
        return tasks

    if flt.user_id:
        tasks = [t for t in tasks if t.assignee_id == flt.user_id]
    if flt.department_id:
        # Department is a property of the assignee; unassigned or dangling assignees drop out
        members = snapshot.lookup(EntityType.MEMBER)
        tasks = [t for t in tasks
                 if t.assignee_id in members and members[t.assignee_id].department_id == flt.department_id]
    if flt.project_id:
        tasks = [t for t in tasks if t.project_id == flt.project_id]
    if flt.date_range:
        tasks = [t for t in tasks if flt.date_range.contains(t.created_at)]
    return tasks
