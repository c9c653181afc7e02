"""Enumerations and shared model configuration."""

from enum import Enum

from pydantic import ConfigDict


class TaskStatus(str, Enum):
    """Workflow status of a task."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"


class TaskPriority(str, Enum):
    """Task priority levels."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


ENTITY_CONFIG = ConfigDict(
    str_strip_whitespace=True,
    validate_assignment=True,
    use_enum_values=True,
    populate_by_name=True,
)
