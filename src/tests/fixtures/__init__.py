"""Test fixtures including task and sprint data factories."""

from tests.fixtures.factories import (
    BoardFactory,
    ProjectFactory,
    SprintFactory,
    TaskFactory,
)

__all__ = [
    "BoardFactory",
    "ProjectFactory",
    "SprintFactory",
    "TaskFactory",
]
