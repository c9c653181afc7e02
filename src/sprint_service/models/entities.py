"""Task, Sprint and Project records."""

from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from sprint_service.models.base import ENTITY_CONFIG, TaskPriority, TaskStatus


def new_id() -> str:
    """Generate an opaque entity identifier."""
    return str(uuid4())


class Task(BaseModel):
    """A unit of work, either in the backlog or in exactly one sprint."""

    model_config = ENTITY_CONFIG

    id: str = Field(default_factory=new_id, min_length=1, description="Opaque unique identifier")
    title: str = Field(..., min_length=1, description="Short task title")
    description: str = Field(default="", description="Free-form details")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Priority level")
    points: int = Field(default=1, ge=1, description="Story points")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Workflow status")
    assignees: list[str] = Field(default_factory=list, description="Assigned user identifiers")
    project_id: str | None = Field(default=None, description="Owning project (relational store)")

    @field_validator("description", mode="before")
    @classmethod
    def coerce_missing_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("priority", mode="before")
    @classmethod
    def default_blank_priority(cls, v: Any) -> Any:
        """Blank priority falls back to medium; names are case-insensitive."""
        if v is None or (isinstance(v, str) and not v.strip()):
            return TaskPriority.MEDIUM
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("points", mode="before")
    @classmethod
    def default_blank_points(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return 1
        return v

    @field_validator("assignees")
    @classmethod
    def dedupe_assignees(cls, v: list[str]) -> list[str]:
        """Assignees are a set; keep first occurrence of each id."""
        return list(dict.fromkeys(a for a in v if a))

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    def to_row(self) -> dict[str, Any]:
        """Convert to a storage row / JSON object."""
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Task":
        return cls.model_validate(row)


def _calendar_date(v: Any) -> Any:
    """Truncate timestamps to their calendar date."""
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, str) and "T" in v:
        return v.split("T", 1)[0]
    return v


class Sprint(BaseModel):
    """A time-boxed iteration holding an ordered list of task ids.

    Stored with the wire names ``startDate``, ``endDate`` and ``tasks``.
    ``end_date`` preceding ``start_date`` is stored as given.
    """

    model_config = ENTITY_CONFIG

    id: str = Field(default_factory=new_id, min_length=1, description="Opaque unique identifier")
    name: str = Field(..., min_length=1, description="Sprint name")
    start_date: date = Field(..., alias="startDate", description="First calendar day")
    end_date: date = Field(..., alias="endDate", description="Last calendar day")
    task_ids: list[str] = Field(default_factory=list, alias="tasks", description="Ordered member task ids")
    project_id: str | None = Field(default=None, description="Owning project (relational store)")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def truncate_to_date(cls, v: Any) -> Any:
        return _calendar_date(v)

    @field_validator("task_ids", mode="before")
    @classmethod
    def coerce_missing_tasks(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("task_ids")
    @classmethod
    def reject_duplicate_ids(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        for task_id in v:
            if task_id in seen:
                raise ValueError(f"Duplicate task id in sprint: {task_id}")
            seen.add(task_id)
        return v

    def contains(self, task_id: str) -> bool:
        return task_id in self.task_ids

    def with_task_ids(self, task_ids: list[str]) -> "Sprint":
        """Return a copy holding ``task_ids`` (validated)."""
        data = self.model_dump()
        data["task_ids"] = list(task_ids)
        return Sprint.model_validate(data)

    def to_row(self) -> dict[str, Any]:
        """Convert to a storage row / JSON object using wire names."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Sprint":
        return cls.model_validate(row)


class Project(BaseModel):
    """A container scoping tasks and sprints in the relational store."""

    model_config = ENTITY_CONFIG

    id: str = Field(default_factory=new_id, min_length=1)
    title: str = Field(..., min_length=1, description="Project title")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str = Field(..., min_length=1, description="Owner user id")
    assignees: list[str] = Field(default_factory=list, description="Project members")

    @field_validator("assignees", mode="before")
    @classmethod
    def split_assignees(cls, v: Any) -> Any:
        """Accept a comma-separated string as entered in forms."""
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return [] if v is None else v

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Project":
        return cls.model_validate(row)


class UserProfile(BaseModel):
    """Display data for an assignee."""

    id: str
    name: str
    email: str | None = None
    avatar_url: str | None = None
