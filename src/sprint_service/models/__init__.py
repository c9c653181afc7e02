"""Data models for the sprint board."""

from sprint_service.models.base import TaskPriority, TaskStatus
from sprint_service.models.entities import Project, Sprint, Task, UserProfile, new_id

__all__ = [
    "TaskPriority",
    "TaskStatus",
    "Task",
    "Sprint",
    "Project",
    "UserProfile",
    "new_id",
]
