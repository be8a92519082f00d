from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type, Union


def utc_now() -> datetime:
    """Naive UTC timestamp; every datetime in the store uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaskStatus(Enum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"

class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class ProjectStatus(Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"

class EntityType(Enum):
    TASK = "task"
    PROJECT = "project"
    MEMBER = "member"
    DEPARTMENT = "department"
    ROLE = "role"


def normalize_tags(value: Union[str, List[str], None]) -> List[str]:
    """Accept a comma-joined string or a sequence of strings; always return a list."""
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(',')
    else:
        parts = [str(part) for part in value]
    return [part.strip() for part in parts if part and part.strip()]


def _numeric_string(value: Any, field_name: str) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be numeric, got {value!r}")
    if isinstance(value, (int, float)):
        return str(value)
    text = str(value).strip()
    try:
        float(text)
    except ValueError:
        raise ValueError(f"{field_name} must be numeric, got {value!r}")
    return text


def _naive_utc(value):
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _reference_id(value: Any) -> Optional[str]:
    """An id given as a string, an object carrying an id, or nothing."""
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        ref = value.get('id')
        return str(ref) if ref not in (None, "") else None
    if isinstance(value, BaseModel):
        return getattr(value, 'id', None)
    return str(value)


class Entity(BaseModel):
    """Common base for everything the entity store holds."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    # Union-shaped inputs collapsed onto their *_id field: {input key: field}
    _references: ClassVar[Dict[str, str]] = {}
    # Fields that are snapshots of other entities and never persisted
    _derived: ClassVar[tuple] = ()

    id: str = Field(description="Unique identifier")

    @model_validator(mode='before')
    @classmethod
    def collapse_references(cls, data):
        if not isinstance(data, dict):
            return data
        references = cls._references
        if not references:
            return data
        data = dict(data)
        for key, field_name in references.items():
            if key not in data:
                continue
            shaped = data.pop(key)
            alias = to_camel(field_name)
            if data.get(field_name) is None and data.get(alias) is None:
                data[field_name] = _reference_id(shaped)
        return data

    @field_validator('id', mode='before')
    @classmethod
    def validate_id(cls, v):
        if v is None or str(v).strip() == "":
            raise ValueError("id must not be empty")
        return str(v)

    @classmethod
    def canonical_changes(cls, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Rewrite a partial update onto python field names.

        Accepts field names, camelCase aliases and the union-shaped reference
        keys. Derived fields and the id cannot be changed.
        """
        by_alias = {to_camel(name): name for name in cls.model_fields}
        canonical = {}
        for key, value in changes.items():
            if key in cls._references:
                field_name = cls._references[key]
                if field_name not in changes and to_camel(field_name) not in changes:
                    canonical[field_name] = _reference_id(value)
                continue
            field_name = key if key in cls.model_fields else by_alias.get(key)
            if field_name is None:
                raise ValueError(f"Unknown field for {cls.__name__}: {key}")
            if field_name == 'id' or field_name in cls._derived:
                raise ValueError(f"Field {key} of {cls.__name__} cannot be changed")
            canonical[field_name] = value
        return canonical

    def to_record(self) -> Dict[str, Any]:
        """Wire/file form: camelCase keys, derived fields stripped."""
        return self.model_dump(mode='json', by_alias=True, exclude=set(self._derived))


class Timestamped(Entity):
    created_at: datetime = Field(default_factory=utc_now, description="When the entity was created")
    updated_at: datetime = Field(default_factory=utc_now, description="When the entity was last changed")

    @field_validator('created_at', 'updated_at', mode='after')
    @classmethod
    def validate_timestamps(cls, v):
        return _naive_utc(v)


class TaskStats(BaseModel):
    """Derived per-project completion snapshot."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    total_tasks: int = 0
    completed_tasks: int = 0
    progress: int = Field(default=0, ge=0, le=100)
    pending_tasks: int = 0
    overdue_tasks: int = 0
    team_members: int = 0


class Task(Timestamped):
    _references: ClassVar[Dict[str, str]] = {'assignee': 'assignee_id', 'project': 'project_id'}

    title: str = Field(description="Short task title")
    description: str = Field(default="", description="Task details")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Workflow status")
    priority: Priority = Field(default=Priority.MEDIUM, description="Task priority")
    assignee_id: Optional[str] = Field(default=None, description="Assigned team member")
    project_id: Optional[str] = Field(default=None, description="Owning project")
    due_date: Optional[date] = Field(default=None, description="Day the task is due")
    tags: List[str] = Field(default_factory=list, description="Free-form labels")
    estimated_hours: Optional[str] = Field(default=None, description="Estimate as a numeric string")
    completed_at: Optional[datetime] = Field(default=None, description="When the task reached done")

    @field_validator('tags', mode='before')
    @classmethod
    def validate_tags(cls, v):
        return normalize_tags(v)

    @field_validator('estimated_hours', mode='before')
    @classmethod
    def validate_estimated_hours(cls, v):
        return _numeric_string(v, 'estimated_hours')

    @field_validator('assignee_id', 'project_id', mode='before')
    @classmethod
    def validate_reference(cls, v):
        return _reference_id(v)

    @field_validator('due_date', mode='before')
    @classmethod
    def validate_due_date(cls, v):
        if v == "":
            return None
        if isinstance(v, datetime):
            return _naive_utc(v).date()
        if isinstance(v, str) and 'T' in v:
            return _naive_utc(datetime.fromisoformat(v.replace('Z', '+00:00'))).date()
        return v

    @field_validator('completed_at', mode='after')
    @classmethod
    def validate_completed_at(cls, v):
        return _naive_utc(v)

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    @property
    def completion_time(self) -> Optional[datetime]:
        """When the task was completed; older records only carry updated_at."""
        if not self.is_done:
            return None
        return self.completed_at or self.updated_at


class Project(Timestamped):
    _references: ClassVar[Dict[str, str]] = {'manager': 'manager_id', 'department': 'department_id'}
    _derived: ClassVar[tuple] = ('task_stats',)

    name: str = Field(description="Project name")
    description: str = Field(default="", description="Project summary")
    status: ProjectStatus = Field(default=ProjectStatus.PLANNING, description="Lifecycle status")
    priority: Priority = Field(default=Priority.MEDIUM, description="Project priority")
    start_date: date = Field(default_factory=lambda: utc_now().date(), description="Planned start")
    end_date: Optional[date] = Field(default=None, description="Planned end")
    manager_id: Optional[str] = Field(default=None, description="Managing team member")
    department_id: Optional[str] = Field(default=None, description="Owning department")
    budget: Optional[str] = Field(default=None, description="Budget as a numeric string")
    tags: List[str] = Field(default_factory=list, description="Free-form labels")
    member_ids: List[str] = Field(default_factory=list, description="Team members, in join order")
    task_stats: TaskStats = Field(default_factory=TaskStats, description="Derived completion stats")

    @field_validator('tags', mode='before')
    @classmethod
    def validate_tags(cls, v):
        return normalize_tags(v)

    @field_validator('budget', mode='before')
    @classmethod
    def validate_budget(cls, v):
        return _numeric_string(v, 'budget')

    @field_validator('manager_id', 'department_id', mode='before')
    @classmethod
    def validate_reference(cls, v):
        return _reference_id(v)

    @field_validator('member_ids', mode='before')
    @classmethod
    def validate_member_ids(cls, v):
        if v is None:
            return []
        if isinstance(v, (str, dict, BaseModel)):
            v = [v]
        ids = []
        for item in v:
            ref = _reference_id(item)
            if ref is not None and ref not in ids:
                ids.append(ref)
        return ids

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def validate_dates(cls, v):
        if v == "":
            return None
        if isinstance(v, datetime):
            return v.date()
        return v

    @model_validator(mode='after')
    def validate_date_range(self):
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TeamMember(Timestamped):
    _references: ClassVar[Dict[str, str]] = {'role': 'role_id', 'department': 'department_id'}
    _derived: ClassVar[tuple] = ('tasks', 'projects')

    name: str = Field(description="Display name")
    email: str = Field(description="Unique contact address")
    role_id: Optional[str] = Field(default=None, description="Assigned role")
    department_id: Optional[str] = Field(default=None, description="Home department")
    avatar: Optional[str] = Field(default=None, description="Avatar URL")
    bio: str = Field(default="", description="Short biography")
    phone: str = Field(default="", description="Phone number")
    skills: str = Field(default="", description="Comma separated skills")
    tasks: int = Field(default=0, ge=0, description="Derived count of assigned tasks")
    projects: int = Field(default=0, ge=0, description="Derived count of involved projects")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        v = v.strip()
        if '@' not in v:
            raise ValueError(f"Invalid email address: {v}")
        return v

    @field_validator('role_id', 'department_id', mode='before')
    @classmethod
    def validate_reference(cls, v):
        return _reference_id(v)

    @field_validator('bio', 'phone', 'skills', mode='before')
    @classmethod
    def validate_text(cls, v):
        return "" if v is None else v


class Department(Entity):
    name: str = Field(description="Department name")
    description: str = Field(default="", description="What the department does")

    @field_validator('description', mode='before')
    @classmethod
    def validate_description(cls, v):
        return "" if v is None else v


class Role(Entity):
    name: str = Field(description="Role name")
    description: str = Field(default="", description="What the role covers")

    @field_validator('description', mode='before')
    @classmethod
    def validate_description(cls, v):
        return "" if v is None else v


ENTITY_MODELS: Dict[EntityType, Type[Entity]] = {
    EntityType.TASK: Task,
    EntityType.PROJECT: Project,
    EntityType.MEMBER: TeamMember,
    EntityType.DEPARTMENT: Department,
    EntityType.ROLE: Role,
}

def model_for(entity_type: EntityType) -> Type[Entity]:
    return ENTITY_MODELS[EntityType(entity_type)]


class WorkspaceDocument(BaseModel):
    """On-disk layout of a workspace data file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schema_version: str = Field(description="Schema version the file was written with")
    tasks: List[Dict[str, Any]] = Field(default_factory=list, description="Task records")
    projects: List[Dict[str, Any]] = Field(default_factory=list, description="Project records")
    members: List[Dict[str, Any]] = Field(default_factory=list, description="Team member records")
    departments: List[Dict[str, Any]] = Field(default_factory=list, description="Department records")
    roles: List[Dict[str, Any]] = Field(default_factory=list, description="Role records")

COLLECTION_KEYS: Dict[EntityType, str] = {
    EntityType.TASK: "tasks",
    EntityType.PROJECT: "projects",
    EntityType.MEMBER: "members",
    EntityType.DEPARTMENT: "departments",
    EntityType.ROLE: "roles",
}
