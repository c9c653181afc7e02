"""Core board logic."""

from sprint_service.core.board import BoardService, OperationResult
from sprint_service.core.membership import MembershipCoordinator, derive_backlog
from sprint_service.core.ordering import move_index, reorder
from sprint_service.core import progress

__all__ = [
    "BoardService",
    "OperationResult",
    "MembershipCoordinator",
    "derive_backlog",
    "move_index",
    "reorder",
    "progress",
]
