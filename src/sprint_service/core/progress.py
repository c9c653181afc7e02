"""Derived sprint metrics: duration, story points and progress."""

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Sequence

from sprint_service.models import Sprint, Task, TaskStatus

STATUS_ORDER: tuple[str, ...] = tuple(s.value for s in TaskStatus)


def duration_days(sprint: Sprint) -> int:
    """Calendar days from start to end; non-positive when end precedes start."""
    return math.ceil((sprint.end_date - sprint.start_date).days)


def total_points(tasks: Iterable[Task]) -> int:
    return sum(t.points for t in tasks)


def completed_points(tasks: Iterable[Task]) -> int:
    return sum(t.points for t in tasks if t.status == TaskStatus.DONE)


def progress_percentage(tasks: Sequence[Task]) -> int:
    """Completed share of story points as a whole percentage.

    Rounds half up. Zero when there are no points at all.
    """
    total = total_points(tasks)
    if total <= 0:
        return 0
    return math.floor(completed_points(tasks) / total * 100 + 0.5)


def tasks_by_status(tasks: Iterable[Task]) -> dict[str, list[Task]]:
    """Bucket tasks by status, keeping input order within each bucket."""
    buckets: dict[str, list[Task]] = {status: [] for status in STATUS_ORDER}
    for task in tasks:
        buckets[TaskStatus(task.status).value].append(task)
    return buckets


def is_active(sprint: Sprint, today: date | None = None) -> bool:
    today = today or date.today()
    return sprint.start_date <= today <= sprint.end_date


def active_sprint_count(sprints: Iterable[Sprint], today: date | None = None) -> int:
    today = today or date.today()
    return sum(1 for s in sprints if is_active(s, today))


@dataclass
class SprintSummary:
    """Everything the sprint details view shows above the task list."""

    sprint_id: str
    name: str
    duration_days: int
    total_points: int
    completed_points: int
    progress_percentage: int
    status_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "sprint_id": self.sprint_id,
            "name": self.name,
            "duration_days": self.duration_days,
            "total_points": self.total_points,
            "completed_points": self.completed_points,
            "progress_percentage": self.progress_percentage,
            "status_counts": dict(self.status_counts),
        }


def summarize(sprint: Sprint, tasks: Sequence[Task]) -> SprintSummary:
    """Build a summary for ``sprint`` from its member ``tasks``."""
    buckets = tasks_by_status(tasks)
    return SprintSummary(
        sprint_id=sprint.id,
        name=sprint.name,
        duration_days=duration_days(sprint),
        total_points=total_points(tasks),
        completed_points=completed_points(tasks),
        progress_percentage=progress_percentage(tasks),
        status_counts={status: len(items) for status, items in buckets.items()},
    )
